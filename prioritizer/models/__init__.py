"""
CD3 Prioritizer
Domain models and the shared Flask-SQLAlchemy handle.

Usage:
    from prioritizer.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
