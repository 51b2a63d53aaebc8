"""
Database package initialization
"""
from .models import Base, Blob, Part
from .db_config import get_db_session, init_db, close_db

__all__ = ['Base', 'Blob', 'Part', 'get_db_session', 'init_db', 'close_db']
