"""
Custom authentication backend for token-based auth.

Kept apart from the login views so that DRF can import the
authentication class during initialization without pulling in views.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """Token authentication using the ``Token`` keyword.

    Front-desk clients send ``Authorization: Token <key>``; JWT bearer
    tokens are accepted by the second configured authentication class.
    """

    keyword = 'Token'
