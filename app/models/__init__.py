"""
Certification Workflow Service
SQLAlchemy extension instance shared by all models.

Usage:
    from app.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
