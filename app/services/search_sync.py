"""Background delivery of inventory changes to the search backends.

Mutations enqueue one :class:`SyncTask` per enabled backend and return
immediately. A daemon worker applies the tasks; failures caused by a lost
connection are retried with backoff up to ``SEARCH_SYNC_MAX_ATTEMPTS`` and
then dropped with a log line. Every upsert re-reads the item from the
database and uses the item id as document id, so a task may be delivered
more than once without changing the outcome.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import dataclass, replace

from flask import current_app

from database import SessionLocal
from helpers import parse_float, parse_int
from app.services.search_indexer import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_UPDATE,
    sync_backend_names,
    try_sync,
)


MODE_THREAD = "thread"
MODE_INLINE = "inline"


@dataclass(frozen=True)
class SyncTask:
    action: str
    item_id: int
    backend: str
    attempt: int = 1


class SearchSyncQueue:
    def __init__(self, app=None):
        self.app = None
        self._queue: queue.Queue[SyncTask] = queue.Queue()
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self.delivered = 0
        self.dropped = 0
        if app is not None:
            self.init_app(app)

    def init_app(self, app):
        self.app = app
        app.extensions["search_sync"] = self

    @property
    def mode(self) -> str:
        return (self.app.config.get("SEARCH_SYNC_MODE") or MODE_THREAD).lower()

    def on_item_created(self, item_id: int):
        self.enqueue(ACTION_CREATE, item_id)

    def on_item_updated(self, item_id: int):
        self.enqueue(ACTION_UPDATE, item_id)

    def on_item_deleted(self, item_id: int):
        self.enqueue(ACTION_DELETE, item_id)

    def enqueue(self, action: str, item_id: int):
        for backend in sync_backend_names(self.app):
            task = SyncTask(action=action, item_id=int(item_id), backend=backend)
            if self.mode == MODE_INLINE:
                self._deliver_inline(task)
            else:
                self._ensure_worker()
                self._queue.put(task)

    def pending(self) -> int:
        return self._queue.qsize()

    def join(self):
        """Block until every queued task, including retries, has been handled."""
        self._queue.join()

    def _ensure_worker(self):
        with self._lock:
            if self._worker is not None and self._worker.is_alive():
                return
            self._worker = threading.Thread(target=self._work, name="search-sync", daemon=True)
            self._worker.start()

    def _work(self):
        while True:
            task = self._queue.get()
            try:
                with self.app.app_context():
                    retry = self._attempt(task)
                    if retry is not None:
                        time.sleep(self._backoff(task))
                        self._queue.put(retry)
            finally:
                SessionLocal.remove()
                self._queue.task_done()

    def _deliver_inline(self, task: SyncTask):
        while task is not None:
            retry = self._attempt(task)
            if retry is not None:
                time.sleep(self._backoff(task))
            task = retry

    def _backoff(self, task: SyncTask) -> float:
        base = parse_float(self.app.config.get("SEARCH_SYNC_RETRY_DELAY"), 2.0)
        return base * (2 ** (task.attempt - 1))

    def _attempt(self, task: SyncTask) -> SyncTask | None:
        """Apply one task; return the follow-up task when it should be retried."""
        failure = try_sync(task.action, task.item_id, task.backend)
        if failure is None:
            self.delivered += 1
            return None
        if failure.retryable:
            return self._retry_or_drop(task, failure.error)
        self._drop(task, failure.error)
        return None

    def _retry_or_drop(self, task: SyncTask, exc: BaseException) -> SyncTask | None:
        max_attempts = max(parse_int(self.app.config.get("SEARCH_SYNC_MAX_ATTEMPTS"), 3), 1)
        if task.attempt < max_attempts:
            self.app.logger.info(
                "Retrying %s of item %s on %s (attempt %s/%s): %s",
                task.action,
                task.item_id,
                task.backend,
                task.attempt + 1,
                max_attempts,
                exc,
            )
            return replace(task, attempt=task.attempt + 1)
        self._drop(task, exc)
        return None

    def _drop(self, task: SyncTask, exc: BaseException):
        self.dropped += 1
        self.app.logger.error(
            "Search sync %s of item %s on %s dropped after %s attempt(s): %s",
            task.action,
            task.item_id,
            task.backend,
            task.attempt,
            exc,
        )


def get_sync_queue(app=None) -> SearchSyncQueue:
    app = app or current_app._get_current_object()
    sync_queue = app.extensions.get("search_sync")
    if sync_queue is None:
        sync_queue = SearchSyncQueue(app)
    return sync_queue
