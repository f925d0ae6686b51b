"""
Field Maintenance Ticketing
Model package: shared SQLAlchemy handle.

Usage:
    from fieldops.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
