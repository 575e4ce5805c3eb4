"""
WSGI config for the wedding photo backend.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "weddingai.settings")

application = get_wsgi_application()
