from __future__ import annotations

import copy
import re
from types import SimpleNamespace

import pytest
from elasticsearch import ConnectionError as ESConnectionError
from elasticsearch import NotFoundError
from typesense import exceptions as ts_exceptions

import database
from app import create_app
from app.services import search_backends
from app.services.inventory_service import InventoryService
from app.services.search_backends import ELASTICSEARCH, TYPESENSE, get_backend
from models import Base


class FakeIndices:
    def __init__(self, client):
        self.client = client

    def exists(self, index):
        return index in self.client.indices_created

    def create(self, index, settings=None, mappings=None):
        self.client.indices_created[index] = {"settings": settings, "mappings": mappings}
        self.client.docs = {}

    def delete(self, index):
        self.client.indices_created.pop(index, None)
        self.client.docs = {}


class FakeElasticsearch:
    """Keeps documents in a dict and returns every stored document as a hit."""

    def __init__(self):
        self.indices_created = {}
        self.docs = {}
        self.indices = FakeIndices(self)
        self.available = True
        self.search_error = None
        self.reject_ids = set()
        self.searches = []

    def _check(self):
        if not self.available:
            raise ESConnectionError("connection refused")

    def ping(self):
        return self.available

    def index(self, index, id, document, refresh=None):
        self._check()
        self.docs[id] = copy.deepcopy(document)

    def delete(self, index, id, refresh=None):
        self._check()
        if id not in self.docs:
            raise NotFoundError("not_found", SimpleNamespace(status=404), {"result": "not_found"})
        del self.docs[id]

    def exists(self, index, id):
        return id in self.docs

    def count(self, index):
        self._check()
        return {"count": len(self.docs)}

    def search(self, index, body):
        self._check()
        if self.search_error is not None:
            raise self.search_error
        self.searches.append(body)
        docs = list(self.docs.values())
        for clause in body["query"].get("bool", {}).get("must", []):
            wanted = clause["term"]["category.keyword"]
            docs = [doc for doc in docs if doc["category"] == wanted]
        hits = [
            {"_id": doc["id"], "_source": doc, "_score": 1.0, "highlight": doc.get("_highlight", {})}
            for doc in docs
        ]
        return {"hits": {"total": {"value": len(hits)}, "hits": hits}}


def fake_bulk(client, actions, raise_on_error=False):
    client._check()
    success = 0
    errors = []
    for action in actions:
        if action["_id"] in client.reject_ids:
            errors.append({"index": {"_id": action["_id"], "error": "mapper_parsing_exception"}})
            continue
        client.docs[action["_id"]] = copy.deepcopy(action["_source"])
        success += 1
    return success, errors


class FakeTypesenseDocument:
    def __init__(self, store, doc_id):
        self.store = store
        self.doc_id = doc_id

    def retrieve(self):
        if self.doc_id not in self.store.docs:
            raise ts_exceptions.ObjectNotFound("Not Found")
        return self.store.docs[self.doc_id]

    def delete(self):
        self.store._check()
        if self.doc_id not in self.store.docs:
            raise ts_exceptions.ObjectNotFound("Not Found")
        return self.store.docs.pop(self.doc_id)


FILTER_PATTERN = re.compile(r"(\w+):=(\[[^\]]*\]|`[^`]*`|\w+)")


def _filter_values(raw):
    if raw.startswith("["):
        return [value.strip().strip("`") for value in raw[1:-1].split(",")]
    return [raw.strip("`")]


class FakeTypesenseDocuments:
    def __init__(self, store):
        self.store = store

    def __getitem__(self, doc_id):
        return FakeTypesenseDocument(self.store, doc_id)

    def upsert(self, document):
        self.store._check()
        self.store.docs[document["id"]] = copy.deepcopy(document)
        return document

    def import_(self, documents, params):
        self.store._check()
        results = []
        for document in documents:
            if document["id"] in self.store.reject_ids:
                results.append({"success": False, "error": "Bad document"})
                continue
            self.store.docs[document["id"]] = copy.deepcopy(document)
            results.append({"success": True})
        return results

    def search(self, params):
        self.store._check()
        self.store.searches.append(params)
        docs = sorted(self.store.docs.values(), key=lambda doc: doc["updatedAt"], reverse=True)
        for field_name, raw in FILTER_PATTERN.findall(params.get("filter_by") or ""):
            values = _filter_values(raw)
            if field_name == "hasImage":
                docs = [doc for doc in docs if str(doc["hasImage"]).lower() in values]
            else:
                docs = [doc for doc in docs if doc.get(field_name) in values]
        per_page = params.get("per_page", 10)
        page = params.get("page", 1)
        window = docs[(page - 1) * per_page : page * per_page]
        return {
            "found": len(docs),
            "hits": [{"document": doc, "text_match": 100, "highlights": []} for doc in window],
        }


class FakeTypesenseCollection:
    def __init__(self, store):
        self.store = store
        self.documents = FakeTypesenseDocuments(store)

    def retrieve(self):
        self.store._check()
        if not self.store.schema:
            raise ts_exceptions.ObjectNotFound("Not Found")
        return {"name": self.store.schema["name"], "num_documents": len(self.store.docs)}

    def delete(self):
        if not self.store.schema:
            raise ts_exceptions.ObjectNotFound("Not Found")
        self.store.schema = None
        self.store.docs = {}


class FakeTypesenseCollections:
    def __init__(self, store):
        self.store = store

    def __getitem__(self, name):
        return FakeTypesenseCollection(self.store)

    def retrieve(self):
        self.store._check()
        return [self.store.schema] if self.store.schema else []

    def create(self, schema):
        self.store.schema = schema
        self.store.docs = {}
        return schema


class FakeTypesense:
    def __init__(self):
        self.schema = None
        self.docs = {}
        self.available = True
        self.reject_ids = set()
        self.searches = []
        self.collections = FakeTypesenseCollections(self)

    def _check(self):
        if not self.available:
            raise ts_exceptions.ServiceUnavailable("Service Unavailable")


@pytest.fixture
def app(monkeypatch):
    monkeypatch.setattr(search_backends.helpers, "bulk", fake_bulk)
    app = create_app(
        {
            "TESTING": True,
            "DATABASE_URL": "sqlite://",
            "ELASTICSEARCH_ENABLED": "1",
            "TYPESENSE_ENABLED": "1",
            "SEARCH_SYNC_MODE": "inline",
            "SEARCH_SYNC_RETRY_DELAY": "0",
            "SEARCH_CONNECT_RETRY_DELAY": "0",
            "SEARCH_REINDEX_DELAY": "0",
            "SEARCH_REINDEX_BATCH_SIZE": "2",
            "SEARCH_REINDEX_BULK_SIZE": "2",
        }
    )
    es_client = FakeElasticsearch()
    ts_client = FakeTypesense()
    get_backend(ELASTICSEARCH, app).use_client(es_client)
    get_backend(TYPESENSE, app).use_client(ts_client)
    app.extensions["fake_clients"] = {ELASTICSEARCH: es_client, TYPESENSE: ts_client}
    with app.app_context():
        get_backend(ELASTICSEARCH, app).connect()
        get_backend(ELASTICSEARCH, app).ensure_index()
        get_backend(TYPESENSE, app).connect()
        get_backend(TYPESENSE, app).ensure_index()
    yield app
    database.SessionLocal.remove()
    Base.metadata.drop_all(bind=database.engine)


@pytest.fixture
def es_client(app):
    return app.extensions["fake_clients"][ELASTICSEARCH]


@pytest.fixture
def ts_client(app):
    return app.extensions["fake_clients"][TYPESENSE]


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def session(app):
    with app.app_context():
        yield database.SessionLocal()


@pytest.fixture
def make_item(app, session):
    def _make(name, category, tags=None, sizes=None, image_url=None):
        return InventoryService(session).create_item(
            {
                "name": name,
                "category": category,
                "tags": tags or [],
                "sizes": sizes or [{"title": "M", "quantity": 2, "onHand": 2, "price": 350000}],
                "imageUrl": image_url,
            }
        )

    return _make
