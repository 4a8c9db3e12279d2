"""Database module for FunnelForge."""

from .connection import get_connection, init_db
from .funnel_storage import FunnelStore

__all__ = [
    "FunnelStore",
    "get_connection",
    "init_db",
]
