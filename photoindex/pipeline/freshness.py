"""
Freshness Evaluator - decides whether the index can be reused or must be rebuilt.

Decision order:
    live rebuild lock                     -> REBUILD_IN_PROGRESS error
    database file missing                 -> rebuild (never_rebuild: unavailable)
    force_rebuild                         -> rebuild
    unreadable file / other schema version -> rebuild (never_rebuild: unavailable)
    build_state != complete               -> rebuild (never_rebuild: unavailable)
    fingerprint differs                   -> rebuild (never_rebuild: reuse + warning)
    older than max_age_hours              -> rebuild (never_rebuild: reuse + warning)
    otherwise                             -> reuse
"""

import logging
import sqlite3
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from photoindex.db.schema_manager import SCHEMA_VERSION, missing_tables, stored_schema_version
from photoindex.db.sqlite_client import SQLiteDB
from photoindex.errors import ErrorKind, ImageIndexError
from photoindex.pipeline.fingerprint import DatabaseFingerprint
from photoindex.pipeline.ingest_engine import Indexer, RebuildResult
from photoindex.pipeline.rebuild_lock import RebuildLock
from photoindex.utils.settings import IndexSettings

logger = logging.getLogger(__name__)


class FreshnessAction(str, Enum):
    REUSE = "reuse"
    REBUILD = "rebuild"
    UNAVAILABLE = "unavailable"
    IN_PROGRESS = "in_progress"


@dataclass
class FreshnessDecision:
    action: FreshnessAction
    reason: str


class FreshnessEvaluator:
    """Hands out a ready-to-query database, rebuilding it when stale."""

    def __init__(self, settings: IndexSettings, indexer: Optional[Indexer] = None):
        self.settings = settings
        self.indexer = indexer or Indexer(settings)
        self.db_path = Path(settings.database_path)
        self.last_rebuild: Optional[RebuildResult] = None

    def evaluate(
        self,
        fingerprint: Optional[DatabaseFingerprint] = None,
        force_rebuild: bool = False,
        never_rebuild: bool = False,
    ) -> FreshnessDecision:
        """Apply the decision table without side effects (stale locks aside)."""
        fingerprint = fingerprint or DatabaseFingerprint.from_settings(self.settings)

        if force_rebuild and never_rebuild:
            logger.warning("force_rebuild and never_rebuild both set; force_rebuild wins")
            never_rebuild = False

        if RebuildLock(self.db_path).is_locked():
            return FreshnessDecision(FreshnessAction.IN_PROGRESS, "rebuild in progress")

        def stale(reason: str, reusable: bool) -> FreshnessDecision:
            if not never_rebuild:
                return FreshnessDecision(FreshnessAction.REBUILD, reason)
            if reusable:
                logger.warning(f"[FRESHNESS] {reason}; reusing because never_rebuild is set")
                return FreshnessDecision(FreshnessAction.REUSE, f"{reason} (never_rebuild)")
            return FreshnessDecision(FreshnessAction.UNAVAILABLE, reason)

        if not self.db_path.exists():
            return stale("database file missing", reusable=False)
        if force_rebuild:
            return FreshnessDecision(FreshnessAction.REBUILD, "rebuild forced")

        meta, problem = self._inspect()
        if problem:
            return stale(problem, reusable=False)
        if meta.get("build_state") != "complete":
            return stale("previous build did not complete", reusable=False)
        if meta.get("fingerprint") != fingerprint.digest:
            return stale("configuration fingerprint changed", reusable=True)

        max_age = self.settings.max_age_hours
        if max_age is not None:
            built_at = _parse_time(meta.get("built_at"))
            if built_at is None or datetime.now() - built_at > timedelta(hours=max_age):
                return stale(f"index older than {max_age}h", reusable=True)

        return FreshnessDecision(FreshnessAction.REUSE, "index is fresh")

    def get_ready_database(
        self,
        fingerprint: Optional[DatabaseFingerprint] = None,
        force_rebuild: bool = False,
        never_rebuild: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> SQLiteDB:
        """
        Return a read-only handle on an up-to-date database.

        Raises:
            ImageIndexError(REBUILD_IN_PROGRESS): another process is rebuilding
            ImageIndexError(DATABASE_UNAVAILABLE): no usable database and
                rebuilding is not allowed, or the rebuild was cancelled
        """
        fingerprint = fingerprint or DatabaseFingerprint.from_settings(self.settings)
        decision = self.evaluate(fingerprint, force_rebuild, never_rebuild)
        logger.info(f"[FRESHNESS] {decision.action.value}: {decision.reason}")

        if decision.action == FreshnessAction.IN_PROGRESS:
            raise ImageIndexError(ErrorKind.REBUILD_IN_PROGRESS, str(self.db_path))
        if decision.action == FreshnessAction.UNAVAILABLE:
            raise ImageIndexError(ErrorKind.DATABASE_UNAVAILABLE, decision.reason)

        if decision.action == FreshnessAction.REBUILD:
            self.last_rebuild = self.indexer.rebuild(
                roots=fingerprint.roots,
                path_filters=fingerprint.path_filters,
                language=fingerprint.language,
                embed_images=fingerprint.embed_images,
                cancel_event=cancel_event,
                fingerprint=fingerprint,
            )
            if self.last_rebuild.cancelled:
                raise ImageIndexError(ErrorKind.DATABASE_UNAVAILABLE, "rebuild was cancelled")

        return SQLiteDB(self.db_path, read_only=True)

    def status(self, fingerprint: Optional[DatabaseFingerprint] = None) -> Dict[str, Any]:
        """Freshness decision plus stored metadata and row counts, for reporting."""
        decision = self.evaluate(fingerprint, never_rebuild=True)
        report: Dict[str, Any] = {
            "database_path": str(self.db_path),
            "exists": self.db_path.exists(),
            "decision": decision.action.value,
            "reason": decision.reason,
        }
        if report["exists"] and decision.action != FreshnessAction.IN_PROGRESS:
            try:
                with SQLiteDB(self.db_path, read_only=True) as db:
                    report["meta"] = {
                        k: v for k, v in db.get_all_meta().items() if k != "fingerprint_json"
                    }
                    report["stats"] = db.get_stats()
            except (ImageIndexError, sqlite3.Error) as e:
                report["error"] = str(e)
        return report

    def _inspect(self):
        """Read IndexMeta. Returns (meta, problem) where problem is None when compatible."""
        try:
            with SQLiteDB(self.db_path, read_only=True) as db:
                missing = missing_tables(db.conn)
                if missing:
                    return {}, f"incompatible schema (missing tables: {', '.join(missing)})"
                version = stored_schema_version(db.conn)
                if version != SCHEMA_VERSION:
                    return {}, f"incompatible schema version {version} (expected {SCHEMA_VERSION})"
                return db.get_all_meta(), None
        except (ImageIndexError, sqlite3.Error) as e:
            return {}, f"database unreadable: {e}"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
