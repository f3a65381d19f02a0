"""
Database package: schema, adapters, adapter factory and facade.
"""

from .base import DatabaseAdapter
from .exceptions import (
    DatabaseError,
    DatabaseUnavailableError,
    ImmutableFieldError,
    SchemaMismatchError,
    UnknownFieldError,
)
from .factory import AdapterFactory, close_database_adapter, get_database_adapter
from .facade import ProctoringDatabase, get_db
from .oracle_adapter import OracleAdapter
from .relational_adapter import RelationalAdapter

__all__ = [
    'DatabaseAdapter',
    'DatabaseError',
    'DatabaseUnavailableError',
    'ImmutableFieldError',
    'SchemaMismatchError',
    'UnknownFieldError',
    'AdapterFactory',
    'close_database_adapter',
    'get_database_adapter',
    'ProctoringDatabase',
    'get_db',
    'OracleAdapter',
    'RelationalAdapter',
]
