"""
WSGI entry point for the carehub project.

HTTP only; websocket payment updates need the ASGI application in
``carehub.asgi``.
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'carehub.settings')

application = get_wsgi_application()
