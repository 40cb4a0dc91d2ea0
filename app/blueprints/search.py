from flask import Blueprint, current_app, g, jsonify, request

from helpers import parse_int
from app.services.query_planner import SearchQuery
from app.services.search_backends import ELASTICSEARCH, TYPESENSE, BackendUnavailable
from app.services.search_indexer import bulk_reindex, item_exists_in_search, sync_items
from app.services.search_service import InventorySearchService


search_bp = Blueprint("search", __name__, url_prefix="/api/inventory")

SEARCH_BACKENDS = (ELASTICSEARCH, TYPESENSE)


def _respond(result):
    return jsonify(result.to_dict()), result.status_code


def _backend_arg(default=TYPESENSE):
    payload = request.get_json(silent=True) or {}
    backend = (request.args.get("backend") or payload.get("backend") or default).strip().lower()
    if backend not in SEARCH_BACKENDS:
        return None
    return backend


@search_bp.route("/search-elastic")
def search_elastic():
    query = SearchQuery.from_args(request.args)
    current_app.logger.info("Elasticsearch search q=%r mode=%s category=%r", query.text, query.mode, query.category)
    return _respond(InventorySearchService(g.db).search_elastic(query))


@search_bp.route("/search-typesense")
def search_typesense():
    query = SearchQuery.from_args(request.args)
    current_app.logger.info("Typesense search q=%r mode=%s category=%r", query.text, query.mode, query.category)
    return _respond(InventorySearchService(g.db).search_typesense(query))


@search_bp.route("/search")
def search():
    query = SearchQuery.from_args(request.args)
    service = InventorySearchService(g.db)
    if (request.args.get("backend") or "").lower() == "database":
        return _respond(service.search_database(query))
    return _respond(service.search(query))


@search_bp.route("/filter")
def filter_items():
    service = InventorySearchService(g.db)
    try:
        result = service.filter_items(
            categories=request.args.getlist("category"),
            has_image=request.args.get("hasImage"),
            sort_by=request.args.get("sortBy"),
            limit=parse_int(request.args.get("limit"), 10),
            offset=parse_int(request.args.get("offset"), 0),
        )
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return _respond(result)


@search_bp.route("/search-health")
def search_health():
    return jsonify(InventorySearchService(g.db).health())


@search_bp.route("/reindex", methods=["POST"])
def reindex():
    backend = _backend_arg()
    if backend is None:
        return jsonify({"error": "Unknown search backend"}), 400
    try:
        summary = bulk_reindex(backend, session=g.db)
    except BackendUnavailable as exc:
        return jsonify({"error": str(exc), "backend": backend}), 503
    return jsonify(summary.to_dict())


@search_bp.route("/sync", methods=["POST"])
def force_sync():
    backend = _backend_arg()
    if backend is None:
        return jsonify({"error": "Unknown search backend"}), 400
    payload = request.get_json(silent=True) or {}
    item_ids = [parse_int(item_id) for item_id in payload.get("itemIds") or []]
    item_ids = [item_id for item_id in item_ids if item_id is not None]
    if not item_ids:
        return jsonify({"error": "itemIds is required"}), 400
    try:
        result = sync_items(item_ids, backend, session=g.db)
    except BackendUnavailable as exc:
        return jsonify({"error": str(exc), "backend": backend}), 503
    return jsonify(result)


@search_bp.route("/<int:item_id>/indexed")
def item_indexed(item_id):
    backend = _backend_arg()
    if backend is None:
        return jsonify({"error": "Unknown search backend"}), 400
    return jsonify({"id": item_id, "backend": backend, "indexed": item_exists_in_search(item_id, backend)})
