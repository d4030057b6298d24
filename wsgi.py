"""
WSGI entry point for the certification workflow service.

Usage:
    gunicorn wsgi:app
    FLASK_APP=wsgi.py flask db upgrade    # apply migrations/
"""

import os

from app import create_app

app = create_app(os.getenv("APP_ENV", "development"))
