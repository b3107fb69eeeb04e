"""
Evidence Hub
SQLAlchemy extension handle shared by every model module.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
