"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi recompute-costs --tenant 1
    gunicorn wsgi:app
"""

from millflow import create_app

app = create_app()
