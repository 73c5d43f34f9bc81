"""
WSGI entry point.

Usage:
    flask --app wsgi run
    flask --app wsgi clear-data
    gunicorn wsgi:app
"""

from prioritizer import create_app

app = create_app()
