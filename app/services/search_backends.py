from __future__ import annotations

import threading
import time
from datetime import datetime, timezone

import requests
import typesense
from elasticsearch import ApiError, Elasticsearch, NotFoundError, TransportError, helpers
from elasticsearch import ConnectionError as ESConnectionError
from elasticsearch import ConnectionTimeout as ESConnectionTimeout
from flask import current_app
from typesense import exceptions as ts_exceptions

from constants import CONNECTION_ERROR_MARKERS, INLINE_IMAGE_PREFIX
from helpers import normalize_text, parse_bool, parse_float, parse_int
from app.services.search_schema import elasticsearch_index_body, typesense_collection_schema


ELASTICSEARCH = "elasticsearch"
TYPESENSE = "typesense"

STATE_DISCONNECTED = "disconnected"
STATE_CONNECTING = "connecting"
STATE_CONNECTED = "connected"

ES_ERRORS = (ApiError, TransportError)
TS_ERRORS = (ts_exceptions.TypesenseClientError, requests.RequestException)


class BackendUnavailable(RuntimeError):
    def __init__(self, backend: str, message: str = "Search service temporarily unavailable"):
        super().__init__(message)
        self.backend = backend


def is_connection_error(exc: BaseException) -> bool:
    if isinstance(
        exc,
        (
            ESConnectionError,
            ESConnectionTimeout,
            ts_exceptions.ServiceUnavailable,
            ts_exceptions.Timeout,
            ts_exceptions.HTTPStatus0Error,
            requests.ConnectionError,
            requests.Timeout,
        ),
    ):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in CONNECTION_ERROR_MARKERS)


def indexable_image_url(image_url: str | None) -> str | None:
    if not image_url or image_url.startswith(INLINE_IMAGE_PREFIX):
        return None
    return image_url


def to_millis(value: str | None) -> int:
    if not value:
        return 0
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return int(parsed.timestamp() * 1000)


def from_millis(value) -> str | None:
    if value in (None, ""):
        return None
    if isinstance(value, str):
        return value
    parsed = datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)
    return parsed.replace(tzinfo=None).isoformat()


class SearchBackend:
    """Connection bookkeeping shared by the search backends."""

    name = ""
    enabled_key = ""
    error_types: tuple = ()

    def __init__(self, app=None, client=None):
        self.app = app or current_app
        self._client = client
        self._lock = threading.Lock()
        self.state = STATE_DISCONNECTED

    def is_enabled(self) -> bool:
        return parse_bool(self.app.config.get(self.enabled_key))

    def use_client(self, client):
        self._client = client
        self.state = STATE_DISCONNECTED

    @property
    def client(self):
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def _build_client(self):
        raise NotImplementedError

    def _ping(self) -> bool:
        raise NotImplementedError

    def is_connected(self) -> bool:
        return self.state == STATE_CONNECTED

    def connect(self, retries: int = 0) -> bool:
        """Ping the backend, retrying with exponential backoff on failure."""
        if not self.is_enabled():
            self.state = STATE_DISCONNECTED
            return False
        delay = parse_float(self.app.config.get("SEARCH_CONNECT_RETRY_DELAY"), 2.0)
        with self._lock:
            self.state = STATE_CONNECTING
            for attempt in range(retries + 1):
                try:
                    if self._ping():
                        self.state = STATE_CONNECTED
                        self.app.logger.info("%s connected", self.name)
                        return True
                except self.error_types as exc:
                    self.app.logger.warning(
                        "%s connection attempt %s failed: %s", self.name, attempt + 1, exc
                    )
                if attempt < retries:
                    time.sleep(delay * (2**attempt))
            self.state = STATE_DISCONNECTED
            return False

    def ensure_connected(self) -> bool:
        return self.is_connected() or self.connect()

    def mark_failure(self, action: str, exc: BaseException):
        self.app.logger.warning("%s %s failed: %s", self.name, action, exc)
        if is_connection_error(exc):
            self.state = STATE_DISCONNECTED

    def health(self) -> dict:
        return {
            "enabled": self.is_enabled(),
            "state": self.state,
            "documents": self.count_documents() if self.is_connected() else None,
        }

    def count_documents(self) -> int | None:
        raise NotImplementedError


class ElasticsearchBackend(SearchBackend):
    name = ELASTICSEARCH
    enabled_key = "ELASTICSEARCH_ENABLED"
    error_types = ES_ERRORS

    def _build_client(self):
        config = self.app.config
        kwargs = {
            "request_timeout": parse_float(config.get("ELASTICSEARCH_TIMEOUT"), 30.0),
            "max_retries": parse_int(config.get("ELASTICSEARCH_MAX_RETRIES"), 3),
            "retry_on_timeout": True,
            "verify_certs": parse_bool(config.get("ELASTICSEARCH_VERIFY_CERTS")),
        }
        api_key = config.get("ELASTICSEARCH_API_KEY")
        username = config.get("ELASTICSEARCH_USERNAME")
        password = config.get("ELASTICSEARCH_PASSWORD")
        if api_key:
            kwargs["api_key"] = api_key
        elif username and password:
            kwargs["basic_auth"] = (username, password)
        return Elasticsearch(config.get("ELASTICSEARCH_URL"), **kwargs)

    @property
    def index_name(self) -> str:
        return self.app.config.get("ELASTICSEARCH_INDEX", "inventory_items")

    def _ping(self) -> bool:
        return bool(self.client.ping())

    def ensure_index(self) -> bool:
        try:
            if not self.client.indices.exists(index=self.index_name):
                self.client.indices.create(index=self.index_name, **elasticsearch_index_body())
                self.app.logger.info("Created index %s", self.index_name)
            return True
        except ES_ERRORS as exc:
            self.mark_failure("index setup", exc)
            return False

    def rebuild_index(self) -> bool:
        try:
            if self.client.indices.exists(index=self.index_name):
                self.client.indices.delete(index=self.index_name)
            self.client.indices.create(index=self.index_name, **elasticsearch_index_body())
            return True
        except ES_ERRORS as exc:
            self.mark_failure("rebuild", exc)
            return False

    def count_documents(self) -> int | None:
        try:
            response = self.client.count(index=self.index_name)
            return int(response.get("count", 0))
        except ES_ERRORS as exc:
            self.mark_failure("count", exc)
            return None

    def prepare_document(self, document: dict) -> dict:
        image_url = document.get("imageUrl")
        return {
            "id": str(document["id"]),
            "formattedId": document.get("formattedId"),
            "name": document.get("name"),
            "category": document.get("category"),
            "imageUrl": indexable_image_url(image_url),
            "hasImage": bool(image_url),
            "tags": list(document.get("tags") or []),
            "sizes": list(document.get("sizes") or []),
            "createdAt": document.get("createdAt"),
            "updatedAt": document.get("updatedAt"),
        }

    def index_document(self, document: dict):
        """Upsert one document. Errors propagate so callers can decide to retry."""
        self.client.index(
            index=self.index_name,
            id=str(document["id"]),
            document=self.prepare_document(document),
            refresh="wait_for",
        )

    def delete_document(self, item_id):
        try:
            self.client.delete(index=self.index_name, id=str(item_id), refresh="wait_for")
        except NotFoundError:
            self.app.logger.info("Document %s already absent from %s", item_id, self.index_name)

    def document_exists(self, item_id) -> bool:
        try:
            return bool(self.client.exists(index=self.index_name, id=str(item_id)))
        except ES_ERRORS as exc:
            self.mark_failure("exists check", exc)
            return False

    def bulk_index(self, documents: list[dict]) -> tuple[int, int]:
        if not documents:
            return 0, 0
        actions = [
            {
                "_index": self.index_name,
                "_id": str(document["id"]),
                "_source": self.prepare_document(document),
            }
            for document in documents
        ]
        try:
            success, errors = helpers.bulk(self.client, actions, raise_on_error=False)
        except ES_ERRORS as exc:
            self.mark_failure("bulk index", exc)
            return 0, len(documents)
        errors = errors if isinstance(errors, list) else []
        for error in errors[:5]:
            self.app.logger.warning("Elasticsearch rejected document: %s", error)
        return int(success or 0), len(errors)

    def search(self, body: dict) -> tuple[list[dict], int]:
        try:
            response = self.client.search(index=self.index_name, body=body)
        except ES_ERRORS as exc:
            self.mark_failure("search", exc)
            raise
        hits = response.get("hits", {})
        total = hits.get("total", 0)
        if isinstance(total, dict):
            total = total.get("value", 0)
        results = []
        for hit in hits.get("hits", []):
            source = dict(hit.get("_source") or {})
            results.append(
                {
                    "id": parse_int(hit.get("_id") or source.get("id")),
                    "source": source,
                    "score": hit.get("_score") or 0,
                    "highlights": hit.get("highlight") or {},
                }
            )
        return results, int(total or 0)


class TypesenseBackend(SearchBackend):
    name = TYPESENSE
    enabled_key = "TYPESENSE_ENABLED"
    error_types = TS_ERRORS

    def _build_client(self):
        config = self.app.config
        return typesense.Client(
            {
                "nodes": [
                    {
                        "host": config.get("TYPESENSE_HOST", "localhost"),
                        "port": str(config.get("TYPESENSE_PORT", "8108")),
                        "protocol": config.get("TYPESENSE_PROTOCOL", "http"),
                    }
                ],
                "api_key": config.get("TYPESENSE_API_KEY") or "",
                "connection_timeout_seconds": parse_float(config.get("TYPESENSE_TIMEOUT"), 10.0),
                "num_retries": parse_int(config.get("TYPESENSE_NUM_RETRIES"), 3),
                "retry_interval_seconds": 1.0,
            }
        )

    @property
    def collection_name(self) -> str:
        return self.app.config.get("TYPESENSE_COLLECTION", "inventory_items")

    @property
    def documents(self):
        return self.client.collections[self.collection_name].documents

    def _ping(self) -> bool:
        self.client.collections.retrieve()
        return True

    def ensure_index(self) -> bool:
        try:
            try:
                self.client.collections[self.collection_name].retrieve()
            except ts_exceptions.ObjectNotFound:
                self.client.collections.create(typesense_collection_schema(self.collection_name))
                self.app.logger.info("Created collection %s", self.collection_name)
            return True
        except TS_ERRORS as exc:
            self.mark_failure("collection setup", exc)
            return False

    def rebuild_index(self) -> bool:
        try:
            try:
                self.client.collections[self.collection_name].delete()
            except ts_exceptions.ObjectNotFound:
                pass
            self.client.collections.create(typesense_collection_schema(self.collection_name))
            return True
        except TS_ERRORS as exc:
            self.mark_failure("rebuild", exc)
            return False

    def count_documents(self) -> int | None:
        try:
            collection = self.client.collections[self.collection_name].retrieve()
            return int(collection.get("num_documents", 0))
        except TS_ERRORS as exc:
            self.mark_failure("count", exc)
            return None

    def prepare_document(self, document: dict) -> dict:
        image_url = document.get("imageUrl")
        prepared = {
            "id": str(document["id"]),
            "formattedId": document.get("formattedId") or "",
            "name": document.get("name") or "",
            "nameNormalized": normalize_text(document.get("name")),
            "category": document.get("category") or "",
            "categoryNormalized": normalize_text(document.get("category")),
            "tags": list(document.get("tags") or []),
            "sizes": list(document.get("sizes") or []),
            "hasImage": bool(image_url),
            "createdAt": to_millis(document.get("createdAt")),
            "updatedAt": to_millis(document.get("updatedAt")),
        }
        indexable = indexable_image_url(image_url)
        if indexable:
            prepared["imageUrl"] = indexable
        return prepared

    def index_document(self, document: dict):
        self.documents.upsert(self.prepare_document(document))

    def delete_document(self, item_id):
        try:
            self.documents[str(item_id)].delete()
        except ts_exceptions.ObjectNotFound:
            self.app.logger.info("Document %s already absent from %s", item_id, self.collection_name)

    def document_exists(self, item_id) -> bool:
        try:
            self.documents[str(item_id)].retrieve()
            return True
        except ts_exceptions.ObjectNotFound:
            return False
        except TS_ERRORS as exc:
            self.mark_failure("exists check", exc)
            return False

    def bulk_index(self, documents: list[dict]) -> tuple[int, int]:
        if not documents:
            return 0, 0
        prepared = [self.prepare_document(document) for document in documents]
        try:
            results = self.documents.import_(prepared, {"action": "upsert"})
        except TS_ERRORS as exc:
            self.mark_failure("bulk import", exc)
            return 0, len(documents)
        success = 0
        errors = 0
        for result in results:
            if result.get("success"):
                success += 1
            else:
                errors += 1
                if errors <= 5:
                    self.app.logger.warning("Typesense rejected document: %s", result.get("error"))
        return success, errors

    @staticmethod
    def _highlights(hit: dict) -> dict:
        merged: dict[str, list[str]] = {}
        for highlight in hit.get("highlights") or []:
            snippets = highlight.get("snippets") or [highlight.get("snippet")]
            merged.setdefault(highlight.get("field"), []).extend(s for s in snippets if s)
        return merged

    def search(self, params: dict) -> tuple[list[dict], int]:
        try:
            response = self.documents.search(params)
        except TS_ERRORS as exc:
            self.mark_failure("search", exc)
            raise
        results = []
        for hit in response.get("hits", []):
            source = dict(hit.get("document") or {})
            source["createdAt"] = from_millis(source.get("createdAt"))
            source["updatedAt"] = from_millis(source.get("updatedAt"))
            results.append(
                {
                    "id": parse_int(source.get("id")),
                    "source": source,
                    "score": hit.get("text_match") or 0,
                    "highlights": self._highlights(hit),
                }
            )
        return results, int(response.get("found", 0) or 0)


BACKEND_CLASSES = {
    ELASTICSEARCH: ElasticsearchBackend,
    TYPESENSE: TypesenseBackend,
}


def init_search_backends(app):
    app.extensions["search_backends"] = {
        name: backend_class(app) for name, backend_class in BACKEND_CLASSES.items()
    }


def get_backend(name: str, app=None) -> SearchBackend:
    app = app or current_app
    backends = app.extensions.get("search_backends")
    if backends is None:
        init_search_backends(app)
        backends = app.extensions["search_backends"]
    if name not in backends:
        raise KeyError(f"Unknown search backend: {name}")
    return backends[name]
