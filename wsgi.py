"""
WSGI entry point and Flask-Migrate / Alembic target.

Usage:
    flask --app wsgi db init       # first time only (creates migrations/)
    flask --app wsgi db migrate -m "description"
    flask --app wsgi db upgrade
    flask --app wsgi seed-checklist
"""

from certflow import create_app

app = create_app()
