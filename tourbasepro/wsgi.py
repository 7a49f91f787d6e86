"""
WSGI config for tourbasepro project.
"""
import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "tourbasepro.settings")

application = get_wsgi_application()
