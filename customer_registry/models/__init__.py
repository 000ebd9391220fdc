"""
Customer Registry
SQLAlchemy extension instance shared by every model module.

Usage:
    from customer_registry.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
