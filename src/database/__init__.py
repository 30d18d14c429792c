"""
Database access for the ingestion pipeline.
All catalog reads and writes go through the CatalogStore class.
"""

from .session import Session, get_session, get_session_factory, get_engine, init_db
from .models import Base
from .manager import CatalogStore

__all__ = [
    'Session',
    'get_session',
    'get_session_factory',
    'get_engine',
    'init_db',
    'Base',
    'CatalogStore'
]
