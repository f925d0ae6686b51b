"""
Flask-Migrate / Alembic / WSGI entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi seed-priorities
    gunicorn wsgi:app
"""

from fieldops import create_app

app = create_app()
