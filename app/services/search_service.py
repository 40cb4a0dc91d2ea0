from __future__ import annotations

import time
from dataclasses import dataclass

from flask import current_app

from constants import TYPESENSE_MAX_PER_PAGE
from helpers import alnum_upper, normalize_text, total_pages
from app.services.inventory_store import InventoryStore
from app.services.query_planner import (
    GatingPolicy,
    SearchQuery,
    build_plan,
    compile_elasticsearch,
    compile_typesense,
    escape_filter_value,
)
from app.services.result_reconciler import reconcile
from app.services.search_backends import (
    ELASTICSEARCH,
    TYPESENSE,
    get_backend,
    is_connection_error,
)


DATABASE = "database"
SORT_OLDEST = "oldest"
SORT_NEWEST = "newest"
HAS_IMAGE_VALUES = {"with_image": True, "without_image": False}


@dataclass
class SearchSuccess:
    items: list[dict]
    total: int
    page: int
    limit: int
    backend: str
    search_time_ms: int = 0
    offset: int | None = None

    status_code = 200

    def to_dict(self) -> dict:
        data = _page_payload(self.items, self.total, self.page, self.limit, self.offset)
        data["searchTime"] = f"{self.search_time_ms}ms"
        data["fallback"] = False
        data["backend"] = self.backend
        if self.backend in (ELASTICSEARCH, TYPESENSE):
            data[self.backend] = True
        return data


@dataclass
class SearchFallback:
    """A degraded answer: ``items`` is None when no backend could serve it."""

    reason: str
    backend: str
    items: list[dict] | None = None
    total: int = 0
    page: int = 1
    limit: int = 0
    offset: int | None = None
    served_by: str | None = None

    @property
    def status_code(self) -> int:
        return 200 if self.items is not None else 503

    def to_dict(self) -> dict:
        if self.items is None:
            return {
                "error": "Search service temporarily unavailable",
                "reason": self.reason,
                "fallback": True,
                self.backend: False,
            }
        data = _page_payload(self.items, self.total, self.page, self.limit, self.offset)
        data["fallback"] = True
        data["reason"] = self.reason
        data["backend"] = self.served_by or DATABASE
        data[self.backend] = False
        return data


@dataclass
class SearchError:
    kind: str
    message: str

    status_code = 500

    def to_dict(self) -> dict:
        return {
            "error": "Search failed",
            "kind": self.kind,
            "message": self.message,
            "fallback": True,
        }


def _page_payload(items, total, page, limit, offset=None) -> dict:
    if offset is not None:
        return {
            "items": items,
            "total": total,
            "page": page,
            "limit": limit,
            "offset": offset,
            "hasMore": offset + limit < total,
        }
    pages = total_pages(total, limit)
    return {
        "items": items,
        "total": total,
        "page": page,
        "limit": limit,
        "totalPages": pages,
        "hasMore": page < pages,
    }


def database_match(record: dict, text: str) -> bool:
    """Substring match used when no search backend is available."""
    query = (text or "").strip()
    if not query:
        return True
    if any(char.isdigit() for char in query):
        id_needle = alnum_upper(query)
        if id_needle and id_needle in alnum_upper(record.get("formattedId")):
            return True
    lowered = query.lower()
    name = str(record.get("name") or "")
    category = str(record.get("category") or "")
    if lowered in name.lower() or lowered in category.lower():
        return True
    words = normalize_text(query).split()
    fields = [normalize_text(name), normalize_text(category)]
    fields.extend(normalize_text(tag) for tag in record.get("tags") or [])
    return all(any(word in value for value in fields) for word in words)


class InventorySearchService:
    def __init__(self, session=None, app=None):
        self.app = app or current_app
        self.store = InventoryStore(session)
        self.policy = GatingPolicy.from_mapping(self.app.config.get("SEARCH_GATING"))

    def _connect(self, name: str) -> bool:
        backend = get_backend(name, self.app)
        if backend.is_connected():
            return True
        self.app.logger.info("%s not connected, attempting reconnect", name)
        return backend.connect() and backend.ensure_index()

    def _run(self, name: str, request_body, query: SearchQuery):
        backend = get_backend(name, self.app)
        started = time.monotonic()
        hits, total = backend.search(request_body)
        elapsed = int((time.monotonic() - started) * 1000)
        items = reconcile(hits, query.text, self.store)
        # hits dropped by the post-filter no longer count toward the total
        dropped = len(hits) - len(items)
        return SearchSuccess(
            items=items,
            total=max(total - dropped, query.offset + len(items)),
            page=query.page,
            limit=query.limit,
            backend=name,
            search_time_ms=elapsed,
        )

    def _search_backend(self, name: str, query: SearchQuery):
        if not self._connect(name):
            return SearchFallback(reason=f"{name} unavailable", backend=name)
        plan = build_plan(query, self.policy)
        if name == ELASTICSEARCH:
            request_body = compile_elasticsearch(plan)
        else:
            request_body = compile_typesense(plan)
        backend = get_backend(name, self.app)
        try:
            return self._run(name, request_body, query)
        except backend.error_types as exc:
            if is_connection_error(exc):
                return SearchFallback(reason=f"{name} connection lost", backend=name)
            return SearchError(kind=f"{name}_error", message=str(exc))

    def search_elastic(self, query: SearchQuery):
        return self._search_backend(ELASTICSEARCH, query)

    def search_typesense(self, query: SearchQuery):
        result = self._search_backend(TYPESENSE, query)
        if isinstance(result, SearchFallback):
            return self._database_fallback(query, TYPESENSE, result.reason)
        return result

    def search(self, query: SearchQuery):
        """Elasticsearch first, then Typesense, then the database."""
        reasons = []
        for name in (ELASTICSEARCH, TYPESENSE):
            if not get_backend(name, self.app).is_enabled():
                continue
            result = self._search_backend(name, query)
            if not isinstance(result, SearchFallback):
                return result
            reasons.append(result.reason)
        return self._database_fallback(
            query, ELASTICSEARCH, "; ".join(reasons) or "no search backend enabled"
        )

    def _database_fallback(self, query: SearchQuery, backend: str, reason: str):
        result = self.search_database(query)
        self.app.logger.info("Serving search from the database: %s", reason)
        return SearchFallback(
            reason=reason,
            backend=backend,
            items=result.items,
            total=result.total,
            page=result.page,
            limit=result.limit,
            served_by=DATABASE,
        )

    def search_database(self, query: SearchQuery) -> SearchSuccess:
        started = time.monotonic()
        records = self.store.list_records(order=SORT_NEWEST)
        if query.category:
            wanted = query.category.lower()
            records = [record for record in records if (record["category"] or "").lower() == wanted]
        if query.text:
            records = [record for record in records if database_match(record, query.text)]
        page_items = records[query.offset : query.offset + query.limit]
        return SearchSuccess(
            items=page_items,
            total=len(records),
            page=query.page,
            limit=query.limit,
            backend=DATABASE,
            search_time_ms=int((time.monotonic() - started) * 1000),
        )

    def filter_items(
        self,
        categories: list[str] | None = None,
        has_image: str | None = None,
        sort_by: str | None = None,
        limit: int = 10,
        offset: int = 0,
    ):
        categories = [category.strip() for category in categories or [] if category and category.strip()]
        image_flag = HAS_IMAGE_VALUES.get(has_image or "")
        if not categories and image_flag is None and sort_by != SORT_OLDEST:
            raise ValueError("Either category or hasImage parameter is required")
        limit = max(int(limit), 1)
        offset = max(int(offset), 0)
        page = offset // limit + 1

        if sort_by == SORT_OLDEST:
            # search-index pagination caps out, so chronological listings come straight from the database
            records = self.store.list_records(categories, image_flag, order=SORT_OLDEST)
            return SearchSuccess(
                items=records[offset : offset + limit],
                total=len(records),
                page=page,
                limit=limit,
                offset=offset,
                backend=DATABASE,
            )

        if not self._connect(TYPESENSE):
            return self._filter_fallback(categories, image_flag, limit, offset, "typesense unavailable")

        conditions = []
        if categories:
            conditions.append(
                "category:=[" + ",".join(escape_filter_value(category) for category in categories) + "]"
            )
        if image_flag is not None:
            conditions.append(f"hasImage:={'true' if image_flag else 'false'}")
        params = {
            "q": "*",
            "query_by": "name",
            "filter_by": " && ".join(conditions),
            "sort_by": "updatedAt:desc",
            "per_page": TYPESENSE_MAX_PER_PAGE,
            "page": 1,
        }
        backend = get_backend(TYPESENSE, self.app)
        started = time.monotonic()
        hits = []
        try:
            while True:
                page_hits, found = backend.search(dict(params))
                hits.extend(page_hits)
                if not page_hits or len(hits) >= found:
                    break
                params["page"] += 1
        except backend.error_types as exc:
            if is_connection_error(exc):
                return self._filter_fallback(categories, image_flag, limit, offset, "typesense connection lost")
            return SearchError(kind="typesense_error", message=str(exc))

        records = self.store.load_records(hit["id"] for hit in hits if hit.get("id") is not None)
        if sort_by == SORT_NEWEST:
            records.sort(key=lambda record: record["createdAt"] or "", reverse=True)
        return SearchSuccess(
            items=records[offset : offset + limit],
            total=len(records),
            page=page,
            limit=limit,
            offset=offset,
            backend=TYPESENSE,
            search_time_ms=int((time.monotonic() - started) * 1000),
        )

    def _filter_fallback(self, categories, image_flag, limit, offset, reason):
        records = self.store.list_records(categories, image_flag, order=SORT_NEWEST)
        return SearchFallback(
            reason=reason,
            backend=TYPESENSE,
            items=records[offset : offset + limit],
            total=len(records),
            page=offset // limit + 1,
            limit=limit,
            offset=offset,
            served_by=DATABASE,
        )

    def health(self) -> dict:
        return {name: get_backend(name, self.app).health() for name in (ELASTICSEARCH, TYPESENSE)}
