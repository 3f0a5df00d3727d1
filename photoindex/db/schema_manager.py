"""
Schema manager - creates the index tables on every open.

The schema is versioned through the IndexMeta table. A database written by
another schema version is never migrated in place: the freshness evaluator
sees the mismatch and schedules a full rebuild.
"""

import logging
import sqlite3
from pathlib import Path
from typing import Optional

from photoindex.errors import ErrorKind, ImageIndexError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
SCHEMA_PATH = Path(__file__).parent / "sqlite_schema.sql"

REQUIRED_TABLES = (
    "IndexMeta", "Images", "ImageKeywords", "ImagePeople",
    "ImageObjects", "ImageScenes", "ExifMetadata",
)


def ensure_schema(conn: sqlite3.Connection) -> None:
    """
    Create tables and indexes if absent. Safe to call on every open.

    Raises:
        ImageIndexError(SCHEMA_ERROR): schema could not be created; there is
        no degraded mode.
    """
    try:
        with open(SCHEMA_PATH, encoding="utf-8") as f:
            schema_sql = f.read()
    except OSError as e:
        logger.error(f"❌ Schema file not readable: {SCHEMA_PATH}: {e}")
        raise ImageIndexError(ErrorKind.SCHEMA_ERROR, f"schema file not readable: {e}", e) from e

    try:
        conn.executescript(schema_sql)
        conn.execute(
            "INSERT OR IGNORE INTO IndexMeta (key, value) VALUES ('schema_version', ?)",
            (str(SCHEMA_VERSION),),
        )
        conn.commit()
    except sqlite3.Error as e:
        try:
            conn.rollback()
        except sqlite3.Error:
            pass
        logger.error(f"❌ Schema initialization failed: {e}")
        raise ImageIndexError(ErrorKind.SCHEMA_ERROR, str(e), e) from e

    logger.debug("SQLite schema ensured")


def missing_tables(conn: sqlite3.Connection) -> list:
    rows = conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'").fetchall()
    present = {r[0] for r in rows}
    return [t for t in REQUIRED_TABLES if t not in present]


def stored_schema_version(conn: sqlite3.Connection) -> Optional[int]:
    """Schema version recorded in the database, None if absent or unreadable."""
    try:
        row = conn.execute("SELECT value FROM IndexMeta WHERE key = 'schema_version'").fetchone()
    except sqlite3.Error:
        return None
    if row is None:
        return None
    try:
        return int(row[0])
    except (TypeError, ValueError):
        return None
