"""
Ingest Engine - full rebuild of the image index.

Pipeline per rebuild:
    1. Take the rebuild lock, delete and recreate the database file
    2. DFS discovery of image files (extension allow-list, path filters)
    3. Parallel sidecar parsing in a bounded ThreadPool
    4. Batched inserts through the single DBWriteQueue writer
    5. Finalize IndexMeta (fingerprint, build_state=complete)

A failure on one file is recorded and the rebuild continues. Cancellation
is checked between batches; a cancelled build keeps build_state=building
and no fingerprint, so the next access rebuilds.
"""

import base64
import logging
import os
import threading
import time
import unicodedata
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Iterable, List, Optional, Sequence, Tuple

from PIL import Image

from photoindex.db.sqlite_client import SQLiteDB
from photoindex.db.write_queue import DBWriteQueue
from photoindex.errors import ErrorKind, ImageIndexError
from photoindex.parser.schema import ImageRecord
from photoindex.parser.sidecar_reader import SidecarReader
from photoindex.pipeline.fingerprint import DatabaseFingerprint
from photoindex.pipeline.rebuild_lock import RebuildLock
from photoindex.search.wildcard import path_matches
from photoindex.utils.settings import DEFAULT_EXTENSIONS, IndexSettings, normalize_language

logger = logging.getLogger(__name__)

_SKIP_DIRS = {".git", "__pycache__", "node_modules", ".venv", "venv", ".idea", ".vs"}
_DB_SUFFIXES = ("", "-wal", "-shm", "-journal")


def _nfc(path) -> str:
    """NFC-normalize a path string (macOS returns NFD file names)."""
    return unicodedata.normalize("NFC", str(path))


def discover_files(
    roots: Iterable,
    recurse: bool = True,
    extensions: Sequence[str] = DEFAULT_EXTENSIONS,
    path_filters: Sequence[str] = (),
) -> List[Path]:
    """
    DFS discovery of supported image files.

    Args:
        roots: Root directories to scan (missing roots are logged and skipped)
        recurse: Descend into sub-directories
        extensions: Lower-case, dotted extension allow-list
        path_filters: When non-empty, keep only paths matching at least one filter

    Returns:
        Absolute NFC-normalized paths, de-duplicated, in discovery order
    """
    allowed = {e.lower() for e in extensions}
    discovered: List[Path] = []
    seen = set()

    def _dfs(current_dir: Path):
        try:
            entries = sorted(current_dir.iterdir(), key=lambda e: (not e.is_dir(), e.name.lower()))
        except (PermissionError, OSError) as e:
            logger.warning(f"Cannot read directory: {current_dir}: {e}")
            return

        for entry in entries:
            if entry.is_dir():
                if recurse and not entry.name.startswith(".") and entry.name not in _SKIP_DIRS:
                    _dfs(entry)
            elif entry.is_file() and entry.suffix.lower() in allowed:
                normalized = _nfc(entry)
                if normalized in seen:
                    continue
                if path_filters and not any(path_matches(f, normalized) for f in path_filters):
                    continue
                seen.add(normalized)
                # Keep the on-disk spelling where the NFC form does not resolve (Linux)
                if normalized != str(entry) and not os.path.exists(normalized):
                    discovered.append(entry)
                else:
                    discovered.append(Path(normalized))

    for root in roots:
        root_path = Path(_nfc(Path(root).expanduser().absolute()))
        if not root_path.is_dir():
            logger.warning(f"[DISCOVER] Directory not found: {root}")
            continue
        _dfs(root_path)

    return discovered


def read_dimensions(file_path: Path) -> Tuple[Optional[int], Optional[int]]:
    """Width/height from the image header; (None, None) when unreadable."""
    try:
        with Image.open(file_path) as img:
            return img.size
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.debug(f"Cannot read dimensions of {file_path.name}: {e}")
        return None, None


@dataclass
class ParsedImage:
    """Outcome of parsing one discovered file."""
    file_path: Path
    record: Optional[ImageRecord] = None
    error: Optional[str] = None


@dataclass
class RebuildResult:
    record_count: int = 0
    discovered: int = 0
    failures: List[Tuple[str, str]] = field(default_factory=list)
    cancelled: bool = False
    duration_s: float = 0.0

    @property
    def failure_count(self) -> int:
        return len(self.failures)

    def to_dict(self) -> dict:
        return {
            "record_count": self.record_count,
            "discovered": self.discovered,
            "failure_count": self.failure_count,
            "failures": [{"path": p, "error": e} for p, e in self.failures],
            "cancelled": self.cancelled,
            "duration_s": round(self.duration_s, 3),
        }


class Indexer:
    """Rebuilds the index database from the image directories."""

    def __init__(self, settings: IndexSettings, sidecar_reader: Optional[SidecarReader] = None):
        self.settings = settings
        self.sidecar_reader = sidecar_reader or SidecarReader.from_settings(settings)

    def parse_image(self, file_path: Path, language: str, embed_images: bool) -> ParsedImage:
        """Build an ImageRecord for one file. Never raises; errors land in ParsedImage.error."""
        try:
            stat = file_path.stat()
        except OSError as e:
            return ParsedImage(file_path=file_path, error=f"stat failed: {e}")

        try:
            sidecar = self.sidecar_reader.read(file_path, language)
            width, height = read_dimensions(file_path)
            record = ImageRecord(
                path=str(file_path),
                file_name=file_path.name,
                folder_path=str(file_path.parent),
                file_size=stat.st_size,
                modified_at=datetime.fromtimestamp(stat.st_mtime),
                width=width,
                height=height,
                sidecar=sidecar,
                image_data=self._embed(file_path, stat.st_size) if embed_images else None,
            )
        except Exception as e:
            return ParsedImage(file_path=file_path, error=f"parse error: {e}")
        return ParsedImage(file_path=file_path, record=record)

    def _embed(self, file_path: Path, size: int) -> Optional[str]:
        if size > self.settings.max_embed_bytes:
            logger.info(
                f"  [EMBED] skipping {file_path.name}: {size} bytes exceeds "
                f"{self.settings.max_embed_bytes}"
            )
            return None
        return base64.b64encode(file_path.read_bytes()).decode("ascii")

    def rebuild(
        self,
        roots=None,
        path_filters=None,
        language: Optional[str] = None,
        embed_images: Optional[bool] = None,
        cancel_event: Optional[threading.Event] = None,
        fingerprint: Optional[DatabaseFingerprint] = None,
    ) -> RebuildResult:
        """
        Delete and recreate the database, then index every discovered image.

        Args:
            roots / path_filters / language / embed_images: override settings
            cancel_event: checked between batches
            fingerprint: stored on success (derived from the arguments if None)

        Returns:
            RebuildResult with the record count and per-file failures

        Raises:
            ImageIndexError(REBUILD_IN_PROGRESS): another writer holds the lock
            ImageIndexError(SCHEMA_ERROR / DATABASE_UNAVAILABLE): database setup failed
        """
        settings = self.settings
        roots = list(settings.image_directories if roots is None else roots)
        path_filters = list(settings.path_filters if path_filters is None else path_filters)
        language = normalize_language(language or settings.language)
        embed_images = settings.embed_images if embed_images is None else embed_images
        fingerprint = fingerprint or DatabaseFingerprint.from_settings(
            settings, roots=roots, path_filters=path_filters, language=language, embed_images=embed_images,
        )
        db_path = Path(settings.database_path)

        t0 = time.perf_counter()
        result = RebuildResult()
        with RebuildLock(db_path):
            logger.info(f"[REBUILD] {db_path} (language={language}, embed={embed_images})")
            self._delete_database(db_path)
            db_path.parent.mkdir(parents=True, exist_ok=True)

            db = SQLiteDB(db_path)
            try:
                db.set_meta({"build_state": "building", "language": language})

                logger.info(f"[DISCOVER] Scanning {len(roots)} roots")
                files = discover_files(roots, settings.recurse, settings.extensions, path_filters)
                result.discovered = len(files)
                logger.info(f"[DISCOVER] Found {len(files)} supported files")

                self._index_files(db_path, files, language, embed_images, cancel_event, result)

                if result.cancelled:
                    logger.warning(
                        f"[REBUILD] cancelled after {result.record_count} records; index left incomplete"
                    )
                else:
                    db.set_meta({
                        "fingerprint": fingerprint.digest,
                        "fingerprint_json": fingerprint.to_json(),
                        "record_count": result.record_count,
                        "failure_count": result.failure_count,
                        "built_at": datetime.now().isoformat(timespec="seconds"),
                        "build_state": "complete",
                    })
                db.finalize_for_readers()
            finally:
                db.close()

        result.duration_s = time.perf_counter() - t0
        logger.info(
            f"[DONE] {result.record_count} indexed, {result.failure_count} failed "
            f"in {result.duration_s:.1f}s"
        )
        return result

    def _index_files(
        self,
        db_path: Path,
        files: List[Path],
        language: str,
        embed_images: bool,
        cancel_event: Optional[threading.Event],
        result: RebuildResult,
    ) -> None:
        batch_size = self.settings.batch_size
        workers = self.settings.worker_count
        total = len(files)

        with DBWriteQueue(db_path, batch_size=batch_size) as writer, \
                ThreadPoolExecutor(max_workers=workers) as executor:
            for start in range(0, total, batch_size):
                if cancel_event is not None and cancel_event.is_set():
                    result.cancelled = True
                    break

                chunk = files[start:start + batch_size]
                parsed = list(executor.map(
                    lambda fp: self.parse_image(fp, language, embed_images), chunk
                ))

                futures = []
                for item in parsed:
                    if item.error:
                        logger.warning(f"  [FAIL] {item.file_path.name}: {item.error}")
                        result.failures.append((str(item.file_path), item.error))
                        continue
                    futures.append((item.file_path, writer.submit_image(item.record)))
                writer.flush()

                for file_path, fut in futures:
                    try:
                        fut.result()
                        result.record_count += 1
                    except Exception as e:
                        logger.warning(f"  [FAIL] {file_path.name}: insert failed: {e}")
                        result.failures.append((str(file_path), f"insert failed: {e}"))

                logger.info(f"[BATCH] {min(start + batch_size, total)}/{total} files")

    @staticmethod
    def _delete_database(db_path: Path) -> None:
        for suffix in _DB_SUFFIXES:
            target = db_path.with_name(db_path.name + suffix)
            try:
                target.unlink()
            except FileNotFoundError:
                continue
            except OSError as e:
                raise ImageIndexError(
                    ErrorKind.DATABASE_UNAVAILABLE, f"cannot remove {target}: {e}", e
                ) from e
