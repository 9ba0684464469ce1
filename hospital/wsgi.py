"""
WSGI config for the hospital project.

Exposes the WSGI callable as ``application``.  The WebSocket feed needs
the ASGI entry point instead (``hospital.asgi``).
"""
import os

from django.core.wsgi import get_wsgi_application  # type: ignore

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'hospital.settings')

application = get_wsgi_application()
