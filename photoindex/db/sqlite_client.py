"""
SQLite client for the photo index.

Owns one connection, registers the haversine_m() SQL function used by the
geo filter, and provides the row-level writes the indexer needs.
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Tuple

from photoindex.db.schema_manager import ensure_schema
from photoindex.errors import ErrorKind, ImageIndexError
from photoindex.parser.schema import DescriptionInfo, ImageRecord, dedupe_detections
from photoindex.utils.geo import haversine_m

logger = logging.getLogger(__name__)


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat(timespec="seconds") if value is not None else None


def _casefold(value):
    """SQL casefold(): full Unicode case folding for LIKE comparisons."""
    return value.casefold() if isinstance(value, str) else value


class SQLiteDB:
    """SQLite database client for the image index."""

    def __init__(self, db_path, read_only: bool = False, create_schema: bool = True):
        """
        Open (and unless read-only, initialize) the index database.

        Args:
            db_path: Path to the SQLite database file
            read_only: Open with mode=ro; no schema creation, no pragmas that write
            create_schema: Run ensure_schema() after connecting (writable only)
        """
        self.db_path = str(db_path)
        self.read_only = read_only
        self.conn: Optional[sqlite3.Connection] = None
        self._connect()
        if create_schema and not read_only:
            ensure_schema(self.conn)

    def _connect(self):
        """Establish database connection."""
        try:
            if self.read_only:
                uri = Path(self.db_path).resolve().as_uri() + "?mode=ro"
                self.conn = sqlite3.connect(uri, uri=True, check_same_thread=False, timeout=10.0)
                self.conn.execute("PRAGMA query_only = ON")
            else:
                self.conn = sqlite3.connect(self.db_path, check_same_thread=False, timeout=10.0)
                self.conn.execute("PRAGMA journal_mode = WAL")
                self.conn.execute("PRAGMA synchronous = NORMAL")
            self.conn.row_factory = sqlite3.Row
            self.conn.execute("PRAGMA foreign_keys = ON")
            self.conn.execute("PRAGMA cache_size = -64000")  # 64MB cache
            self.conn.create_function("haversine_m", 4, haversine_m, deterministic=True)
            self.conn.create_function("casefold", 1, _casefold, deterministic=True)
            logger.debug(f"Connected to SQLite database: {self.db_path} (read_only={self.read_only})")
        except sqlite3.Error as e:
            logger.error(f"❌ Failed to open SQLite database {self.db_path}: {e}")
            if self.conn is not None:
                self.conn.close()
                self.conn = None
            raise ImageIndexError(ErrorKind.DATABASE_UNAVAILABLE, f"cannot open {self.db_path}: {e}", e) from e

    # ── IndexMeta ───────────────────────────────────────

    def get_meta(self, key: str, default: Optional[str] = None) -> Optional[str]:
        row = self.conn.execute("SELECT value FROM IndexMeta WHERE key = ?", (key,)).fetchone()
        return row[0] if row is not None else default

    def get_all_meta(self) -> Dict[str, str]:
        return {r["key"]: r["value"] for r in self.conn.execute("SELECT key, value FROM IndexMeta")}

    def set_meta(self, values: Dict[str, Any], commit: bool = True) -> None:
        self.conn.executemany(
            "INSERT INTO IndexMeta (key, value) VALUES (?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            [(k, None if v is None else str(v)) for k, v in values.items()],
        )
        if commit:
            self.conn.commit()

    # ── writes ──────────────────────────────────────────

    def insert_image(self, record: ImageRecord, commit: bool = True) -> int:
        """
        Insert one Images row plus its junction and EXIF rows.

        Returns:
            The new image id.
        """
        sidecar = record.sidecar
        requested = sidecar.description
        default = sidecar.default_description or DescriptionInfo()
        effective = sidecar.effective_description

        cursor = self.conn.execute(
            """
            INSERT INTO Images (
                path, file_name, folder_path, file_size, modified_at, width, height,
                short_description, long_description, description_language,
                default_short_description, default_long_description, default_language,
                has_nudity, has_explicit_content, picture_type, style_type, overall_mood,
                image_data, indexed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.path, record.file_name, record.folder_path, record.file_size,
                _iso(record.modified_at), record.width, record.height,
                requested.short_description, requested.long_description, sidecar.language,
                default.short_description, default.long_description, default.language,
                int(effective.has_nudity), int(effective.has_explicit_content),
                effective.picture_type, effective.style_type, effective.overall_mood,
                record.image_data, _iso(datetime.now()),
            ),
        )
        image_id = cursor.lastrowid

        keyword_rows = [(image_id, k, sidecar.language) for k in requested.keywords]
        if sidecar.default_description is not None and default.language != sidecar.language:
            keyword_rows += [(image_id, k, default.language) for k in default.keywords]
        self._insert_many("INSERT OR IGNORE INTO ImageKeywords (image_id, keyword, language) VALUES (?, ?, ?)",
                          keyword_rows)
        self._insert_many("INSERT OR IGNORE INTO ImagePeople (image_id, name, confidence) VALUES (?, ?, ?)",
                          self._detection_rows(image_id, sidecar.people))
        self._insert_many("INSERT OR IGNORE INTO ImageObjects (image_id, label, confidence) VALUES (?, ?, ?)",
                          self._detection_rows(image_id, sidecar.objects))
        self._insert_many("INSERT OR IGNORE INTO ImageScenes (image_id, scene, confidence) VALUES (?, ?, ?)",
                          self._detection_rows(image_id, sidecar.scenes))

        exif = sidecar.exif
        if exif is not None and not exif.is_empty:
            self.conn.execute(
                """
                INSERT INTO ExifMetadata (
                    image_id, camera_make, camera_model, gps_latitude, gps_longitude,
                    gps_altitude, exposure_time, f_number, iso, focal_length, date_taken
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    image_id, exif.camera_make, exif.camera_model, exif.gps_latitude,
                    exif.gps_longitude, exif.gps_altitude, exif.exposure_time, exif.f_number,
                    exif.iso, exif.focal_length, _iso(exif.date_taken),
                ),
            )

        if commit:
            self.conn.commit()
        return image_id

    @staticmethod
    def _detection_rows(image_id: int, detections) -> list:
        return [(image_id, label, conf) for label, conf in dedupe_detections(detections).items()]

    def _insert_many(self, sql: str, rows: Iterable[Tuple]) -> None:
        rows = list(rows)
        if rows:
            self.conn.executemany(sql, rows)

    def finalize_for_readers(self) -> None:
        """Fold the WAL back into the main file so read-only opens need no -wal/-shm."""
        self.conn.commit()
        self.conn.execute("PRAGMA wal_checkpoint(TRUNCATE)")
        self.conn.execute("PRAGMA journal_mode = DELETE")

    # ── reads ───────────────────────────────────────────

    def count_images(self) -> int:
        return self.conn.execute("SELECT COUNT(*) FROM Images").fetchone()[0]

    def get_image_paths(self) -> list:
        return [r[0] for r in self.conn.execute("SELECT path FROM Images ORDER BY path")]

    def get_stats(self) -> Dict[str, Any]:
        """Row counts for the status report."""
        cursor = self.conn.cursor()
        stats = {}
        for name, sql in (
            ("images", "SELECT COUNT(*) FROM Images"),
            ("keywords", "SELECT COUNT(DISTINCT keyword) FROM ImageKeywords"),
            ("people", "SELECT COUNT(DISTINCT name) FROM ImagePeople"),
            ("objects", "SELECT COUNT(DISTINCT label) FROM ImageObjects"),
            ("scenes", "SELECT COUNT(DISTINCT scene) FROM ImageScenes"),
            ("exif_rows", "SELECT COUNT(*) FROM ExifMetadata"),
            ("gps_rows", "SELECT COUNT(*) FROM ExifMetadata WHERE gps_latitude IS NOT NULL"),
            ("embedded_images", "SELECT COUNT(*) FROM Images WHERE image_data IS NOT NULL"),
        ):
            stats[name] = cursor.execute(sql).fetchone()[0]
        cursor.close()
        return stats

    def close(self):
        """Close database connection."""
        if self.conn:
            self.conn.close()
            self.conn = None
            logger.debug("Database connection closed")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
