from __future__ import annotations

from flask import Blueprint, jsonify, request

from marketplace.services import cart_service
from marketplace.utils.request_context import RequestContext, requires_context

cart_bp = Blueprint("cart_bp", __name__, url_prefix="/api/cart")


@cart_bp.get("")
@requires_context
def view_cart(ctx: RequestContext):
    return jsonify({"ok": True, **cart_service.cart_summary(ctx.party)}), 200


@cart_bp.post("/items")
@requires_context
def add_item(ctx: RequestContext):
    payload = request.get_json(silent=True) or {}
    try:
        product_id = int(payload.get("product_id"))
    except (TypeError, ValueError):
        return jsonify({"ok": False, "error": "INVALID_PRODUCT", "message": "product_id is required"}), 400
    try:
        line = cart_service.add_to_cart(ctx.party, product_id)
    except LookupError:
        return jsonify({"ok": False, "error": "PRODUCT_NOT_FOUND", "message": "Product not found"}), 404
    return jsonify({"ok": True, "line_id": int(line.id), "quantity": int(line.quantity)}), 200


@cart_bp.post("/items/<int:line_id>/<action>")
@requires_context
def change_item(ctx: RequestContext, line_id: int, action: str):
    try:
        line = cart_service.change_quantity(ctx.party, line_id, action)
    except ValueError:
        return jsonify({"ok": False, "error": "INVALID_ACTION", "message": "action must be plus or minus"}), 400
    except LookupError:
        return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Cart line not found"}), 404
    if line is None:
        return jsonify({"ok": True, "line_id": line_id, "removed": True, "quantity": 0}), 200
    return jsonify({"ok": True, "line_id": int(line.id), "removed": False, "quantity": int(line.quantity)}), 200


@cart_bp.delete("/items/<int:line_id>")
@requires_context
def delete_item(ctx: RequestContext, line_id: int):
    try:
        cart_service.remove_line(ctx.party, line_id)
    except LookupError:
        return jsonify({"ok": False, "error": "NOT_FOUND", "message": "Cart line not found"}), 404
    return jsonify({"ok": True, "line_id": line_id, "removed": True}), 200
