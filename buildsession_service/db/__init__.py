from .connection import OracleConnectionManager
from .schema import init_schema

__all__ = [
    "OracleConnectionManager",
    "init_schema",
]
