# Overview: Batch ledger access layer; registration, depletion, restoration and FIFO listing.

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal

from ..extensions import db
from sqlalchemy import or_, select

from ..models import Batch, Product, Season
from ..numeric import ZERO, decimal_str, quantize_cost, quantize_quantity
from ..time_utils import to_iso_date
from ..validation import ValidationError, coerce_date, coerce_decimal, enforce_rules_batch
from .concurrency import lock_for_update, run_with_retry
from .errors import BatchNotFound, InvariantViolation, NotFoundError
from .ledger_service import append_audit_event
from .season_service import ensure_season_open

logger = logging.getLogger(__name__)
"""
Batch Ledger Invariants (authoritative)

- 0 <= remaining_quantity <= original_quantity, always.
- original_quantity and unit_cost never change after registration.
- remaining_quantity moves only through deplete() (down) and restore() (up).
- deplete() refuses to go below zero (InvariantViolation, logged at ERROR).
- restore() clamps at original_quantity: a second replay of the same
  breakdown must not inflate a batch. Hitting the clamp is logged as a
  warning because it means a reversal ran against already-restored state.
- deplete()/restore() flush but never commit: they run inside the caller's
  transaction so an entry's batch changes land all together or not at all.
- Batches of a closed season are frozen: deplete()/restore() refuse them
  (SeasonClosedError, checked on a fresh season read before the write) and
  list_available() leaves them out so FIFO moves on to open stock.
- Batches are never deleted.
"""


def _ensure_product(product_id: int, *, require_active: bool = False) -> Product:
    product = db.session.query(Product).filter_by(id=product_id).first()
    if product is None:
        raise NotFoundError("product", product_id)
    if require_active and not product.is_active:
        raise ValidationError("product is inactive")
    return product


def _load_batch(batch_id, *, lock: bool = True) -> Batch:
    query = db.session.query(Batch).filter_by(id=batch_id).populate_existing()
    if lock:
        query = lock_for_update(query)
    batch = query.first()
    if batch is None:
        raise BatchNotFound(batch_id)
    return batch


def _ensure_not_frozen(batch: Batch) -> None:
    if batch.season_id is not None:
        ensure_season_open(batch.season_id)


def register_batch(
    *,
    product_id: int,
    original_quantity,
    unit_cost,
    received_at,
    season_id: int | None = None,
    expires_at=None,
    invoice_ref: str | None = None,
    supplier: str | None = None,
    note: str | None = None,
    actor: str | None = None,
) -> Batch:
    """
    Register a stock receipt as a new batch with remaining = original.

    Raises ValidationError for non-positive quantity, negative cost, bad
    dates or an inactive product; SeasonClosedError if season_id names a
    closed season.
    """
    patch = {
        "original_quantity": coerce_decimal("original_quantity", original_quantity),
        "unit_cost": coerce_decimal("unit_cost", unit_cost),
        "received_at": coerce_date("received_at", received_at),
        "expires_at": coerce_date("expires_at", expires_at) if expires_at is not None else None,
    }
    enforce_rules_batch(patch)

    def _op():
        if season_id is not None:
            season = ensure_season_open(season_id)
        else:
            season = None

        product = _ensure_product(product_id, require_active=True)
        if season is not None and season.property_id != product.property_id:
            raise ValidationError("season and product belong to different properties")

        batch = Batch(
            product_id=product.id,
            season_id=season_id,
            original_quantity=patch["original_quantity"],
            remaining_quantity=patch["original_quantity"],
            unit_cost=patch["unit_cost"],
            received_at=patch["received_at"],
            expires_at=patch["expires_at"],
            invoice_ref=invoice_ref,
            supplier=supplier,
            note=note,
        )
        db.session.add(batch)
        db.session.flush()

        append_audit_event(
            event_type="batch.registered",
            entity_type="batch",
            entity_id=batch.id,
            property_id=product.property_id,
            season_id=season_id,
            actor=actor,
            payload={"after": batch.to_dict()},
        )
        db.session.commit()
        logger.info(
            "Registered batch %s for product %s: %s @ %s",
            batch.id, product.id, batch.original_quantity, batch.unit_cost,
        )
        return batch

    try:
        return run_with_retry(_op)
    except Exception:
        db.session.rollback()
        raise


def deplete(batch_id, quantity) -> Batch:
    """
    remaining_quantity -= quantity, atomically with the caller's transaction.

    Raises InvariantViolation if the batch would go negative (a concurrent
    depletion or an upstream bug), BatchNotFound if it does not exist,
    SeasonClosedError if the batch belongs to a closed season.
    """
    qty = quantize_quantity(quantity)
    if qty <= 0:
        raise ValidationError("depletion quantity must be > 0")

    batch = _load_batch(batch_id)
    _ensure_not_frozen(batch)
    remaining = Decimal(batch.remaining_quantity)
    new_remaining = remaining - qty
    if new_remaining < 0:
        logger.error(
            "Invariant violation: depleting %s from batch %s with only %s remaining",
            qty, batch.id, remaining,
        )
        raise InvariantViolation(batch.id, remaining, Decimal(batch.original_quantity), -qty)

    batch.remaining_quantity = new_remaining
    db.session.flush()
    logger.debug("Depleted batch %s by %s (remaining %s)", batch.id, qty, new_remaining)
    return batch


def restore(batch_id, quantity) -> bool:
    """
    remaining_quantity += quantity, clamped at original_quantity.

    Returns True when the clamp was hit, which callers should treat as an
    anomaly (double reversal). Raises BatchNotFound if the batch is gone,
    SeasonClosedError if it belongs to a closed season.
    """
    qty = quantize_quantity(quantity)
    if qty <= 0:
        raise ValidationError("restoration quantity must be > 0")

    batch = _load_batch(batch_id)
    _ensure_not_frozen(batch)
    original = Decimal(batch.original_quantity)
    target = Decimal(batch.remaining_quantity) + qty
    clamped = target > original
    if clamped:
        logger.warning(
            "Restoring %s to batch %s would exceed its original %s (remaining %s); clamping",
            qty, batch.id, original, batch.remaining_quantity,
        )
        target = original

    batch.remaining_quantity = target
    db.session.flush()
    logger.debug("Restored batch %s by %s (remaining %s)", batch.id, qty, target)
    return clamped


def list_available(product_id: int, *, lock: bool = False, include_frozen: bool = False) -> list[Batch]:
    """
    Batches with stock left, in FIFO order (oldest receipt first).

    Batches of closed seasons are left out unless include_frozen is set;
    the season flag is read in the same query, never from a cached row.
    """
    query = db.session.query(Batch).filter(Batch.product_id == product_id, Batch.remaining_quantity > 0)
    if not include_frozen:
        closed = select(Season.id).where(Season.is_closed.is_(True))
        query = query.filter(or_(Batch.season_id.is_(None), Batch.season_id.not_in(closed)))
    query = (
        query
        .order_by(Batch.received_at.asc(), Batch.created_at.asc(), Batch.id.asc())
        .populate_existing()
    )
    if lock:
        query = lock_for_update(query)
    return query.all()


def list_batches(product_id: int, *, include_exhausted: bool = True) -> list[Batch]:
    _ensure_product(product_id)
    query = db.session.query(Batch).filter(Batch.product_id == product_id)
    if not include_exhausted:
        query = query.filter(Batch.remaining_quantity > 0)
    return query.order_by(Batch.received_at.asc(), Batch.created_at.asc(), Batch.id.asc()).all()


def get_stock_summary(product_id: int, *, as_of: date | None = None) -> dict:
    """
    On-hand quantity and valuation over the remaining stock of a product.

    average_unit_cost is weighted by remaining quantity (what is actually
    on the shelf), not by what was originally received. as_of limits the
    summary to batches received on or before that date. Stock frozen by a
    closed season still counts as on hand and is also reported on its own.
    """
    product = _ensure_product(product_id)
    batches = [
        b for b in list_available(product_id, include_frozen=True)
        if as_of is None or b.received_at <= as_of
    ]
    season_ids = {b.season_id for b in batches if b.season_id is not None}
    closed_ids = set()
    if season_ids:
        closed_ids = {
            sid for (sid,) in db.session.query(Season.id).filter(Season.id.in_(season_ids), Season.is_closed.is_(True))
        }
    frozen = sum((Decimal(b.remaining_quantity) for b in batches if b.season_id in closed_ids), ZERO)

    on_hand = sum((Decimal(b.remaining_quantity) for b in batches), ZERO)
    value = sum((quantize_cost(Decimal(b.remaining_quantity) * Decimal(b.unit_cost)) for b in batches), ZERO)
    average = quantize_cost(value / on_hand) if on_hand > 0 else None

    expiries = [b.expires_at for b in batches if b.expires_at is not None]
    minimum = product.minimum_level

    return {
        "product_id": product.id,
        "product_name": product.name,
        "unit": product.unit,
        "as_of": to_iso_date(as_of),
        "quantity_on_hand": decimal_str(on_hand),
        "frozen_quantity": decimal_str(frozen),
        "average_unit_cost": decimal_str(average),
        "inventory_value": decimal_str(value),
        "available_batches": len(batches),
        "next_expiry": to_iso_date(min(expiries)) if expiries else None,
        "minimum_level": decimal_str(minimum),
        "below_minimum": minimum is not None and on_hand < Decimal(minimum),
    }
