"""
WSGI config for grumming_project project.
"""

import os

from django.core.wsgi import get_wsgi_application

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'grumming_project.settings')

application = get_wsgi_application()
