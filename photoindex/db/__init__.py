"""
Database module for the SQLite image index.

Single embedded database file; writes during a rebuild go through
DBWriteQueue, readers open the finished file read-only.
"""

from .sqlite_client import SQLiteDB
from .write_queue import DBWriteQueue

__all__ = ['SQLiteDB', 'DBWriteQueue']
