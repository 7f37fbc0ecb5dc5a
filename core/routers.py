"""
URL mappings for the clinic API.

Trailing slashes are omitted to match the paths the front-end calls.
Patient ids are captured as strings so that malformed ids surface as a
400 validation error rather than an unmatched route.
"""
from django.urls import include, path

from .auth_views import jwt_refresh_view, login_view
from .views import health, patients, receipts

urlpatterns = [
    path('', include('django_prometheus.urls')),
    path('healthz', health.healthz),
    # Authentication
    path('api/auth/login', login_view, name='login_view'),
    path('api/auth/refresh', jwt_refresh_view, name='jwt_refresh'),
    # Guest kiosk
    path('api/patients/guest-submit', patients.guest_submit, name='guest_submit'),
    path('api/patients/guest-family-submit', patients.guest_family_submit, name='guest_family_submit'),
    path('api/patients/returning-guest-visit', patients.returning_guest_visit, name='returning_guest_visit'),
    # Patients & families
    path('api/patients/debtors', patients.debtors, name='debtors'),
    path('api/patients/dental-records/<str:record_id>', patients.dental_record_detail, name='dental_record_detail'),
    path('api/patients/<str:head_id>/members', patients.add_family_member, name='add_family_member'),
    path('api/patients/<str:pk>/schedule-appointment', patients.schedule_appointment, name='schedule_appointment'),
    path('api/patients/<str:pk>/send-reminder', patients.send_reminder, name='send_reminder'),
    path('api/patients/<str:pk>/outstanding', patients.adjust_outstanding, name='adjust_outstanding'),
    path('api/patients/<str:pk>/reminders/<str:reminder_type>', patients.send_procedure_reminder,
         name='send_procedure_reminder'),
    path('api/patients/<str:pk>/dental-records', patients.dental_records, name='dental_records'),
    path('api/patients/<str:pk>/dental-records/<str:record_id>', patients.patient_dental_record,
         name='patient_dental_record'),
    path('api/patients/<str:pk>', patients.patient_detail, name='patient_detail'),
    # Receipts
    path('api/receipts/send', receipts.send_receipt, name='send_receipt'),
]
