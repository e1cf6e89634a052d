"""One-time database initialization for local development.
Run with: python init_db.py
In production, use Flask-Migrate: flask --app app:create_app db upgrade
"""
from app import create_app
from models import db

app = create_app()

with app.app_context():
    db.create_all()
    print("Database tables created.")
