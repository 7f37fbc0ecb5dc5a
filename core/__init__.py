"""Core application for the clinic backend.

This package contains the models, services, serializers, views and route
registrations for patient families, the receipt ledger and scheduling.
"""
