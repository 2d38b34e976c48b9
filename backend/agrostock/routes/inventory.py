# backend/agrostock/routes/inventory.py
"""
Batch ledger routes.

- POST /api/batches                    register a stock receipt (new batch)
- GET  /api/products/<id>/batches      batches in FIFO order
- GET  /api/products/<id>/stock        on-hand quantity and valuation

Dates are ISO-8601 calendar dates; quantities and costs are accepted as
numbers or numeric strings and returned as strings.
"""
from flask import Blueprint, current_app, jsonify, request

from ..models import Batch
from ..services import batch_service
from ..services.errors import EngineError
from ..validation import (
    ModelValidationPolicy,
    ValidationError,
    coerce_date,
    enforce_rules_batch,
    validate_payload,
)
from .responses import error_response


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api")

BATCH_REGISTER_POLICY = ModelValidationPolicy(
    writable_fields={
        "product_id",
        "season_id",
        "original_quantity",
        "unit_cost",
        "received_at",
        "expires_at",
        "invoice_ref",
        "supplier",
        "note",
    },
    required_on_create={"product_id", "original_quantity", "unit_cost", "received_at"},
)


@inventory_bp.post("/batches")
def register_batch_route():
    """Register a new batch with remaining = original quantity."""
    payload = request.get_json(silent=True) or {}
    actor = request.headers.get("X-Actor")

    try:
        patch = validate_payload(
            model=Batch,
            payload=payload,
            policy=BATCH_REGISTER_POLICY,
            partial=False,
        )
        enforce_rules_batch(patch)
        batch = batch_service.register_batch(actor=actor, **patch)
    except (ValidationError, EngineError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register batch")
        return jsonify({"error": "Internal server error"}), 500

    summary = batch_service.get_stock_summary(batch.product_id)
    return jsonify({"batch": batch.to_dict(), "stock": summary}), 201


@inventory_bp.get("/products/<int:product_id>/batches")
def list_batches_route(product_id: int):
    """
    List a product's batches in FIFO order.

    ?available=1 limits the list to batches with stock left.
    """
    available_only = request.args.get("available", "0").lower() in ("1", "true", "yes")
    try:
        rows = batch_service.list_batches(product_id, include_exhausted=not available_only)
    except EngineError as e:
        return error_response(e)
    return jsonify([b.to_dict() for b in rows]), 200


@inventory_bp.get("/products/<int:product_id>/stock")
def stock_summary_route(product_id: int):
    as_of_raw = request.args.get("as_of")
    try:
        as_of = coerce_date("as_of", as_of_raw) if as_of_raw else None
        return jsonify(batch_service.get_stock_summary(product_id, as_of=as_of)), 200
    except (ValidationError, EngineError) as e:
        return error_response(e)
