"""
Directory watcher - keeps the index in step with the image folders.

Any change to an image or one of its sidecar streams marks the index dirty.
Once no further event arrives for ``quiet_period_s`` a forced rebuild runs
through the FreshnessEvaluator (full-rebuild semantics, no incremental
updates).
"""

import logging
import threading
import time
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from photoindex.errors import ErrorKind, ImageIndexError
from photoindex.parser.sidecar_reader import ALL_STREAMS
from photoindex.pipeline.freshness import FreshnessEvaluator

logger = logging.getLogger(__name__)


class IndexChangeHandler(FileSystemEventHandler):
    """Watchdog handler that records relevant changes."""

    def __init__(self, extensions, separator: str, ignore_prefix: str):
        super().__init__()
        self.extensions = {e.lower() for e in extensions}
        self.sidecar_suffixes = tuple(f"{separator}{s}" for s in ALL_STREAMS)
        # Database, -wal/-shm and .lock files may live under a watched root
        self.ignore_prefix = ignore_prefix
        self._lock = threading.Lock()
        self._last_event: Optional[float] = None

    def is_relevant(self, path: str) -> bool:
        if not path or path.startswith(self.ignore_prefix):
            return False
        lower = path.lower()
        if lower.endswith(self.sidecar_suffixes):
            return True
        return Path(lower).suffix in self.extensions

    def on_any_event(self, event: FileSystemEvent):
        if event.is_directory:
            return
        paths = [event.src_path, getattr(event, "dest_path", "")]
        if any(self.is_relevant(str(p)) for p in paths):
            logger.debug(f"[WATCH] {event.event_type}: {event.src_path}")
            with self._lock:
                self._last_event = time.monotonic()

    def take_if_quiet(self, quiet_period_s: float) -> bool:
        """Clear and return True when dirty and quiet for long enough."""
        with self._lock:
            if self._last_event is None:
                return False
            if time.monotonic() - self._last_event < quiet_period_s:
                return False
            self._last_event = None
            return True

    def mark_dirty(self) -> None:
        with self._lock:
            self._last_event = time.monotonic()

    @property
    def dirty(self) -> bool:
        return self._last_event is not None


class IndexWatcher:
    """Observe the configured roots and rebuild after changes settle."""

    def __init__(self, evaluator: FreshnessEvaluator, quiet_period_s: float = 2.0):
        self.evaluator = evaluator
        self.settings = evaluator.settings
        self.quiet_period_s = quiet_period_s
        self.handler = IndexChangeHandler(
            self.settings.extensions,
            self.settings.sidecar_separator,
            str(Path(self.settings.database_path).absolute()),
        )
        self._observer = None

    def start(self) -> None:
        observer = Observer()
        scheduled = 0
        for root in self.settings.roots:
            if not root.is_dir():
                logger.warning(f"[WATCH] Directory not found: {root}")
                continue
            observer.schedule(self.handler, str(root), recursive=self.settings.recurse)
            scheduled += 1
        observer.start()
        self._observer = observer
        logger.info(f"[WATCH] Now watching {scheduled} directories")

    def stop(self) -> None:
        if self._observer is not None:
            self._observer.stop()
            self._observer.join()
            self._observer = None

    def run_pending(self) -> bool:
        """Rebuild if changes have settled. Returns True when a rebuild ran."""
        if not self.handler.take_if_quiet(self.quiet_period_s):
            return False
        logger.info("[WATCH] Changes settled, rebuilding index")
        try:
            db = self.evaluator.get_ready_database(force_rebuild=True)
        except ImageIndexError as e:
            if e.kind != ErrorKind.REBUILD_IN_PROGRESS:
                raise
            logger.warning("[WATCH] Rebuild already in progress, retrying later")
            self.handler.mark_dirty()
            return False
        db.close()
        return True

    def run_forever(self, stop_event: Optional[threading.Event] = None, poll_s: float = 0.5) -> None:
        """Initial freshness check, then watch until interrupted."""
        self.evaluator.get_ready_database().close()
        self.start()
        try:
            while stop_event is None or not stop_event.is_set():
                time.sleep(poll_s)
                self.run_pending()
        except KeyboardInterrupt:
            logger.info("[WATCH] Interrupted")
        finally:
            self.stop()
