"""
MillFlow domain models.

The shared SQLAlchemy instance lives here so every model module (and the
store gateway) binds to the same metadata.
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
