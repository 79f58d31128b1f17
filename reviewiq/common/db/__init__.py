"""
Database Layer

Async SQLAlchemy engine, table models and the relational review store.
"""

from .base import Base, ModelBase, metadata
from .session import create_engine, create_session_factory, get_engine_kwargs, init_models
from .store import SQLAlchemyReviewStore

__all__ = [
    'Base',
    'ModelBase',
    'metadata',
    'create_engine',
    'create_session_factory',
    'get_engine_kwargs',
    'init_models',
    'SQLAlchemyReviewStore',
]
