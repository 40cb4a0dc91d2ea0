from __future__ import annotations

import os
import sys

os.environ.setdefault("SEARCH_AUTO_INDEX", "0")
os.environ.setdefault("SEARCH_SYNC_MODE", "inline")

from app import create_app
from app.services.query_planner import SearchQuery
from app.services.search_backends import ELASTICSEARCH, TYPESENSE, BackendUnavailable, get_backend
from app.services.search_indexer import bulk_reindex
from app.services.search_service import InventorySearchService
from database import SessionLocal

USAGE = "usage: reindex_inventory.py [init|index|reindex|test] [--backend elasticsearch|typesense]"
COMMANDS = ("init", "index", "reindex", "test")


def _parse_args(argv):
    command = "reindex"
    backend = TYPESENSE
    args = list(argv)
    while args:
        arg = args.pop(0)
        if arg == "--backend" and args:
            backend = args.pop(0).lower()
        elif arg.startswith("--backend="):
            backend = arg.split("=", 1)[1].lower()
        elif arg in COMMANDS:
            command = arg
        else:
            return None, None
    if backend not in (ELASTICSEARCH, TYPESENSE):
        return None, None
    return command, backend


def _enable(backend):
    key = "ELASTICSEARCH_ENABLED" if backend == ELASTICSEARCH else "TYPESENSE_ENABLED"
    return {key: "1", "SEARCH_SYNC_BACKENDS": backend}


def _test(app, backend_name) -> int:
    count = get_backend(backend_name, app).count_documents()
    print(f"{backend_name} holds {count} documents.")
    session = SessionLocal()
    try:
        service = InventorySearchService(session, app)
        query = SearchQuery(text="áo", limit=5)
        if backend_name == ELASTICSEARCH:
            result = service.search_elastic(query)
        else:
            result = service.search_typesense(query)
        payload = result.to_dict()
    finally:
        session.close()
    print(f"Sample search for 'áo': {payload.get('total', 0)} hits, fallback={payload.get('fallback')}")
    for item in payload.get("items", [])[:5]:
        print(f"  {item['formattedId']}  {item['name']}")
    return 0 if not payload.get("fallback") else 1


def main() -> int:
    command, backend_name = _parse_args(sys.argv[1:])
    if command is None:
        print(USAGE)
        return 1
    app = create_app(_enable(backend_name))
    with app.app_context():
        backend = get_backend(backend_name, app)
        if not backend.connect(retries=3):
            print(f"{backend_name} is not reachable. Check its URL and credentials.")
            return 1

        if command == "init":
            if not backend.ensure_index():
                print("Failed to create or verify index.")
                return 1
            print(f"{backend_name} index is ready.")
            return 0

        if command == "test":
            return _test(app, backend_name)

        try:
            summary = bulk_reindex(backend_name, app=app, rebuild=command == "reindex")
        except BackendUnavailable as exc:
            print(f"Indexing failed: {exc}")
            return 1
        print(
            f"Done. Indexed {summary.success}/{summary.total} items "
            f"with {summary.errors} errors in {summary.elapsed:.1f}s "
            f"({summary.items_per_second} items/s)."
        )
        return 0 if summary.errors == 0 else 1


if __name__ == "__main__":
    raise SystemExit(main())
