# backend/agrostock/routes/preview.py
"""
Live cost preview for the entry form.

GET /api/preview?item_id=<id>&quantity=<q>

Read-only and uncached. Returns {"preview": null} when there is nothing to
preview (no item, unknown item, quantity <= 0). Insufficient stock is a
normal 200 response with "sufficient": false.
"""
from flask import Blueprint, jsonify, request

from ..services import preview_service
from ..services.errors import EngineError
from ..validation import ValidationError, coerce_int
from .responses import error_response


preview_bp = Blueprint("preview", __name__, url_prefix="/api/preview")


@preview_bp.get("")
def preview_route():
    raw_item_id = request.args.get("item_id")
    quantity = request.args.get("quantity")

    try:
        item_id = coerce_int("item_id", raw_item_id) if raw_item_id else None
        result = preview_service.preview(item_id, quantity)
    except (ValidationError, EngineError) as e:
        return error_response(e)

    return jsonify({"preview": result.to_dict() if result is not None else None}), 200
