# backend/app/db/__init__.py

"""
Database Module

SQLAlchemy engine, session factory and the case/evidence ORM models.
"""

from app.db.database import Base, engine, SessionLocal, get_db, init_db
from app.db import models

__all__ = [
    'Base',
    'engine',
    'SessionLocal',
    'get_db',
    'init_db',
    'models',
]
