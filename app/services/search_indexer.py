from __future__ import annotations

import os
import threading
import time
from dataclasses import asdict, dataclass

from flask import current_app

from database import SessionLocal
from helpers import parse_bool, parse_float, parse_int
from app.services.inventory_store import InventoryStore
from app.services.search_backends import (
    BackendUnavailable,
    get_backend,
    is_connection_error,
)


ACTION_CREATE = "create"
ACTION_UPDATE = "update"
ACTION_DELETE = "delete"


@dataclass
class ReindexSummary:
    backend: str
    total: int = 0
    success: int = 0
    errors: int = 0
    elapsed: float = 0.0

    @property
    def items_per_second(self) -> float:
        if self.elapsed <= 0:
            return 0.0
        return round((self.success + self.errors) / self.elapsed, 2)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["elapsed"] = round(self.elapsed, 2)
        data["itemsPerSecond"] = self.items_per_second
        return data


def _chunked(values, chunk_size):
    for idx in range(0, len(values), chunk_size):
        yield values[idx : idx + chunk_size]


def sync_backend_names(app=None) -> list[str]:
    app = app or current_app
    raw = app.config.get("SEARCH_SYNC_BACKENDS") or ""
    if isinstance(raw, str):
        raw = raw.split(",")
    names = []
    for name in raw:
        name = name.strip().lower()
        if name and name not in names and get_backend(name, app).is_enabled():
            names.append(name)
    return names


def build_search_document(store: InventoryStore, item_id: int) -> dict | None:
    return store.load_record(item_id)


def apply_sync(action: str, item_id: int, backend_name: str, session=None):
    """Write the current state of one item to one backend.

    Backend errors propagate so the caller can retry the task.
    """
    backend = get_backend(backend_name)
    if not backend.ensure_connected():
        raise BackendUnavailable(backend_name)
    if action == ACTION_DELETE:
        backend.delete_document(item_id)
        return
    store = InventoryStore(session or SessionLocal())
    document = build_search_document(store, item_id)
    if document is None:
        # the row vanished before the task ran; make the index agree
        backend.delete_document(item_id)
        return
    backend.index_document(document)


@dataclass
class SyncFailure:
    error: BaseException
    retryable: bool


def try_sync(action: str, item_id: int, backend_name: str, session=None) -> SyncFailure | None:
    """Run :func:`apply_sync` and classify what went wrong, if anything.

    Lost connections are retryable; a backend rejecting the request is not.
    """
    backend = get_backend(backend_name)
    try:
        apply_sync(action, item_id, backend_name, session=session)
    except BackendUnavailable as exc:
        return SyncFailure(exc, retryable=True)
    except backend.error_types as exc:
        backend.mark_failure(f"sync {action} of item {item_id}", exc)
        return SyncFailure(exc, retryable=is_connection_error(exc))
    return None


def _sync_everywhere(action: str, item_id: int, session=None) -> dict[str, bool]:
    results = {}
    for name in sync_backend_names():
        failure = try_sync(action, item_id, name, session=session)
        if failure is not None:
            current_app.logger.warning(
                "Search sync %s of item %s on %s failed: %s", action, item_id, name, failure.error
            )
        results[name] = failure is None
    return results


def sync_item_create(item_id: int, session=None) -> dict[str, bool]:
    return _sync_everywhere(ACTION_CREATE, item_id, session)


def sync_item_update(item_id: int, session=None) -> dict[str, bool]:
    return _sync_everywhere(ACTION_UPDATE, item_id, session)


def sync_item_delete(item_id: int, session=None) -> dict[str, bool]:
    return _sync_everywhere(ACTION_DELETE, item_id, session)


def sync_items(item_ids, backend_name: str, session=None) -> dict:
    """Bulk-upsert an explicit set of items, e.g. after a manual data fix."""
    ids = [int(item_id) for item_id in item_ids]
    backend = get_backend(backend_name)
    if not backend.ensure_connected():
        raise BackendUnavailable(backend_name)
    store = InventoryStore(session or SessionLocal())
    records = store.load_records(ids)
    bulk_size = parse_int(current_app.config.get("SEARCH_REINDEX_BULK_SIZE"), 200)
    synced = 0
    failed = len(ids) - len(records)
    for chunk in _chunked(records, bulk_size):
        success, errors = backend.bulk_index(chunk)
        synced += success
        failed += errors
    return {"synced": synced, "failed": failed, "total": len(ids)}


def item_exists_in_search(item_id: int, backend_name: str) -> bool:
    backend = get_backend(backend_name)
    if not backend.ensure_connected():
        return False
    return backend.document_exists(item_id)


def bulk_reindex(backend_name: str, session=None, app=None, rebuild: bool = True) -> ReindexSummary:
    """Index every item into one backend, dropping the index first unless told not to."""
    app = app or current_app
    backend = get_backend(backend_name, app)
    if not backend.connect():
        raise BackendUnavailable(backend_name)
    prepared = backend.rebuild_index() if rebuild else backend.ensure_index()
    if not prepared:
        raise BackendUnavailable(backend_name, f"Could not prepare {backend_name} index")

    own_session = session is None
    session = session or SessionLocal()
    batch_size = max(parse_int(app.config.get("SEARCH_REINDEX_BATCH_SIZE"), 100), 1)
    bulk_size = max(parse_int(app.config.get("SEARCH_REINDEX_BULK_SIZE"), 200), 1)
    delay = max(parse_float(app.config.get("SEARCH_REINDEX_DELAY"), 0.5), 0.0)

    summary = ReindexSummary(backend=backend_name)
    started = time.monotonic()
    try:
        store = InventoryStore(session)
        summary.total = store.count_items()
        if summary.total == 0:
            app.logger.info("No inventory items to index into %s", backend_name)
            return summary
        total_batches = -(-summary.total // batch_size)
        app.logger.info(
            "Indexing %s items into %s in %s batches of %s",
            summary.total,
            backend_name,
            total_batches,
            batch_size,
        )
        first_write = True
        for batch_number, batch in enumerate(store.iter_batches(batch_size), start=1):
            records = store.records_for(batch)
            for chunk in _chunked(records, bulk_size):
                if not first_write and delay:
                    time.sleep(delay)
                first_write = False
                success, errors = backend.bulk_index(chunk)
                summary.success += success
                summary.errors += errors
            summary.elapsed = time.monotonic() - started
            processed = summary.success + summary.errors
            rate = summary.items_per_second
            eta = (summary.total - processed) / rate if rate else 0
            app.logger.info(
                "Batch %s/%s: %s/%s indexed, %s errors, %.1f items/s, ETA %.0fs",
                batch_number,
                total_batches,
                summary.success,
                summary.total,
                summary.errors,
                rate,
                eta,
            )
    finally:
        summary.elapsed = time.monotonic() - started
        if own_session:
            session.close()
    app.logger.info(
        "Reindex into %s finished: %s indexed, %s errors in %.1fs",
        backend_name,
        summary.success,
        summary.errors,
        summary.elapsed,
    )
    return summary


def _index_all_items(app):
    with app.app_context():
        for name in sync_backend_names(app):
            backend = get_backend(name, app)
            if not backend.connect():
                app.logger.warning("%s is not reachable; search will fall back.", name)
                continue
            if not backend.ensure_index():
                continue
            session = SessionLocal()
            try:
                item_count = InventoryStore(session).count_items()
                doc_count = backend.count_documents()
                if item_count == 0 or doc_count == item_count:
                    continue
            finally:
                session.close()
            try:
                bulk_reindex(name, app=app)
            except BackendUnavailable as exc:
                app.logger.warning("Startup reindex of %s skipped: %s", name, exc)


def schedule_search_index(app):
    if not parse_bool(app.config.get("SEARCH_AUTO_INDEX")):
        return
    if app.debug and os.environ.get("WERKZEUG_RUN_MAIN") != "true":
        return
    thread = threading.Thread(target=_index_all_items, args=(app,), daemon=True)
    thread.start()
