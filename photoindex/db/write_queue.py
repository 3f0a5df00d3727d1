"""
Single-writer queue used during a rebuild.

Parser threads hand finished ImageRecords to DBWriteQueue.submit_image();
one background thread owns the write connection and inserts them in
BEGIN IMMEDIATE batches. A batch that fails is rolled back and replayed one
record at a time, so a bad record only fails its own future.

Batches are committed when batch_size records are pending, on flush(), and
on close(). There is no background timer: the indexer flushes after every
parse batch.
"""

import logging
import queue
import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import List, Optional

from photoindex.db.sqlite_client import SQLiteDB
from photoindex.parser.schema import ImageRecord

logger = logging.getLogger(__name__)

_INSERT = "insert"
_COMMIT = "commit"
_STOP = "stop"


@dataclass
class _Request:
    kind: str
    future: Future
    record: Optional[ImageRecord] = None


class DBWriteQueue:
    """Funnels image inserts through one thread and one write connection."""

    def __init__(self, db_path, batch_size: int = 500, max_queue_size: int = 1024):
        self.db = SQLiteDB(db_path, create_schema=False)
        self.batch_size = max(1, int(batch_size))
        self._requests: "queue.Queue[_Request]" = queue.Queue(maxsize=max(1, int(max_queue_size)))
        self._closed = False
        self._worker = threading.Thread(target=self._write_loop, name="DBWriteQueue", daemon=True)
        self._worker.start()
        logger.debug(f"[DBQ] writer started for {db_path} (batch_size={self.batch_size})")

    def submit_image(self, record: ImageRecord) -> Future:
        """Queue one image insert. The future resolves to the new image id."""
        return self._enqueue(_INSERT, record)

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Commit everything queued so far; blocks until the commit is done."""
        return bool(self._enqueue(_COMMIT).result(timeout=timeout))

    def close(self, timeout: Optional[float] = 30.0) -> None:
        """Commit what is pending, stop the writer thread and close the connection."""
        if self._closed:
            return
        done = self._enqueue(_STOP)
        self._closed = True
        try:
            done.result(timeout=timeout)
        finally:
            self._worker.join(timeout=timeout)
            self.db.close()
            logger.debug("[DBQ] writer stopped")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _enqueue(self, kind: str, record: Optional[ImageRecord] = None) -> Future:
        future: Future = Future()
        if self._closed:
            future.set_exception(RuntimeError("DBWriteQueue is closed"))
            return future
        self._requests.put(_Request(kind=kind, future=future, record=record))
        return future

    def _write_loop(self) -> None:
        pending: List[_Request] = []
        while True:
            request = self._requests.get()
            if request.kind == _INSERT:
                pending.append(request)
                if len(pending) >= self.batch_size:
                    self._commit(pending)
                continue

            self._commit(pending)
            if not request.future.cancelled():
                request.future.set_result(True)
            if request.kind == _STOP:
                return

    def _commit(self, pending: List[_Request]) -> None:
        batch = [r for r in pending if not r.future.cancelled()]
        pending.clear()
        if not batch:
            return

        conn = self.db.conn
        try:
            conn.execute("BEGIN IMMEDIATE")
            image_ids = [self.db.insert_image(r.record, commit=False) for r in batch]
            conn.commit()
        except Exception as batch_error:
            conn.rollback()
            logger.warning(
                f"[DBQ] batch of {len(batch)} failed ({batch_error}); retrying records one by one"
            )
            self._insert_each(batch)
            return

        for request, image_id in zip(batch, image_ids):
            request.future.set_result(image_id)

    def _insert_each(self, batch: List[_Request]) -> None:
        for request in batch:
            try:
                image_id = self.db.insert_image(request.record, commit=True)
            except Exception as e:
                self.db.conn.rollback()
                request.future.set_exception(e)
            else:
                request.future.set_result(image_id)
