from flask import Blueprint, g, jsonify, request

from app.services.inventory_service import InventoryService


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")


@inventory_bp.route("", methods=["GET"])
def list_items():
    return jsonify(InventoryService(g.db).list_items())


@inventory_bp.route("", methods=["POST"])
def create_item():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "JSON body is required"}), 400
    try:
        item = InventoryService(g.db).create_item(payload)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    return jsonify(item), 201


@inventory_bp.route("/<int:item_id>", methods=["GET"])
def get_item(item_id):
    item = InventoryService(g.db).get_item(item_id)
    if item is None:
        return jsonify({"error": "Inventory item not found"}), 404
    return jsonify(item)


@inventory_bp.route("/<int:item_id>", methods=["PUT"])
def update_item(item_id):
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        return jsonify({"error": "JSON body is required"}), 400
    try:
        item = InventoryService(g.db).update_item(item_id, payload)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400
    if item is None:
        return jsonify({"error": "Inventory item not found"}), 404
    return jsonify(item)


@inventory_bp.route("/<int:item_id>", methods=["DELETE"])
def delete_item(item_id):
    if not InventoryService(g.db).delete_item(item_id):
        return jsonify({"error": "Inventory item not found"}), 404
    return jsonify({"success": True})
