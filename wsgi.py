"""
WSGI / Flask-Migrate entry point.

Usage:
    gunicorn wsgi:app
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
"""

from customer_registry import create_app

app = create_app()
