"""
Floortrack — shared SQLAlchemy handle.

Every model module imports ``db`` from here:

    from floortrack.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
