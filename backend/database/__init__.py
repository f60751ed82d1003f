from .connection import get_db, get_engine, init_db

__all__ = ['get_db', 'get_engine', 'init_db']
