"""
Token authentication for the API.

Clients send ``Authorization: Bearer <token>`` where the token is a DRF
``authtoken`` key.  Kept in its own module so settings can reference it
without importing any views.
"""
from __future__ import annotations

from rest_framework import authentication


class TokenAuthentication(authentication.TokenAuthentication):
    """DRF token authentication with the ``Bearer`` keyword."""

    keyword = 'Bearer'
