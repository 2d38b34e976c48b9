# Overview: FIFO allocator; the single costing implementation behind preview and commit.

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar, Iterable, Optional

from ..numeric import (
    ZERO,
    decimal_str,
    quantize_cost,
    quantize_quantity,
    to_decimal,
)
from ..time_utils import to_iso_date
from ..validation import ValidationError

"""
FIFO allocation invariants (authoritative)

- Batches are consumed in (received_at, created_at, id) ascending order;
  the sort is stable so equal keys keep their input order.
- Each touched batch yields one ConsumptionLine at that batch's own unit
  cost. The blended unit cost is display-only and never persisted.
- sum(quantity_consumed) == min(requested, total_available)
- sum(partial_cost) == total_cost exactly (partials are rounded once).
- On shortfall every available batch is still consumed, so callers can show
  how much of the request could be covered.
- allocate() is pure: it reads attributes and never mutates its inputs.
"""


_MIN_DATETIME = datetime.min


def fifo_key(batch) -> tuple:
    created_at = getattr(batch, "created_at", None) or _MIN_DATETIME
    if getattr(created_at, "tzinfo", None) is not None:
        created_at = created_at.replace(tzinfo=None)
    return (batch.received_at, created_at, getattr(batch, "id", None) or 0)


@dataclass(frozen=True)
class BatchSnapshot:
    """Detached, mutable-by-replace view of a batch used for multi-line planning."""
    id: Any
    remaining_quantity: Decimal
    unit_cost: Decimal
    received_at: date
    created_at: Optional[datetime] = None

    @classmethod
    def from_batch(cls, batch) -> "BatchSnapshot":
        return cls(
            id=batch.id,
            remaining_quantity=to_decimal(batch.remaining_quantity),
            unit_cost=to_decimal(batch.unit_cost),
            received_at=batch.received_at,
            created_at=getattr(batch, "created_at", None),
        )

    def consumed(self, quantity: Decimal) -> "BatchSnapshot":
        return replace(self, remaining_quantity=self.remaining_quantity - quantity)


@dataclass(frozen=True)
class ConsumptionLine:
    """
    One batch drawn by an allocation.

    Persisted form (consumption_breakdown element), version 1:
        {"v": 1, "batch_id": "12", "quantity_consumed": "10.0000",
         "unit_cost": "5.0000", "partial_cost": "50.0000"}

    Decimals are stored as strings so replay is exact. from_record() also
    reads plain JSON numbers and the legacy Portuguese keys so historical
    rows stay replayable.
    """
    SCHEMA_VERSION: ClassVar[int] = 1

    batch_id: Any
    quantity_consumed: Decimal
    unit_cost: Decimal
    partial_cost: Decimal
    received_at: Optional[date] = field(default=None, compare=False)

    def to_record(self) -> dict:
        return {
            "v": self.SCHEMA_VERSION,
            "batch_id": str(self.batch_id),
            "quantity_consumed": decimal_str(self.quantity_consumed),
            "unit_cost": decimal_str(self.unit_cost),
            "partial_cost": decimal_str(self.partial_cost),
        }

    def to_dict(self) -> dict:
        data = self.to_record()
        data.pop("v")
        data["received_at"] = to_iso_date(self.received_at)
        return data

    @classmethod
    def from_record(cls, raw: dict) -> "ConsumptionLine":
        if not isinstance(raw, dict):
            raise ValueError("consumption record must be an object")

        version = raw.get("v", 1)
        if version != cls.SCHEMA_VERSION:
            raise ValueError(f"unsupported consumption record version: {version!r}")

        batch_id = _first(raw, "batch_id", "lote_id")
        if batch_id is None or str(batch_id).strip() == "":
            raise ValueError("consumption record is missing batch_id")
        batch_id = str(batch_id).strip()
        if batch_id.isdigit():
            batch_id = int(batch_id)

        quantity = to_decimal(_first(raw, "quantity_consumed", "quantidade_consumida", "quantidade", default=0))
        unit_cost = to_decimal(_first(raw, "unit_cost", "custo_unitario", default=0))
        partial = _first(raw, "partial_cost", "custo_parcial")
        partial_cost = to_decimal(partial) if partial is not None else quantize_cost(quantity * unit_cost)

        return cls(
            batch_id=batch_id,
            quantity_consumed=quantity,
            unit_cost=unit_cost,
            partial_cost=partial_cost,
        )


def _first(raw: dict, *keys, default=None):
    for key in keys:
        if raw.get(key) is not None:
            return raw[key]
    return default


def dump_breakdown(lines: Iterable[ConsumptionLine]) -> list[dict]:
    return [line.to_record() for line in lines]


def load_breakdown(raw) -> list[ConsumptionLine]:
    """Parse a stored consumption_breakdown; None/empty -> []."""
    if not raw:
        return []
    if not isinstance(raw, list):
        raise ValueError("consumption_breakdown must be a list")
    return [ConsumptionLine.from_record(item) for item in raw]


@dataclass(frozen=True)
class AllocationResult:
    requested_quantity: Decimal
    breakdown: tuple[ConsumptionLine, ...]
    total_cost: Decimal
    total_available: Decimal
    consumed_quantity: Decimal

    @property
    def sufficient(self) -> bool:
        return self.total_available >= self.requested_quantity

    @property
    def shortfall(self) -> Decimal:
        return max(ZERO, self.requested_quantity - self.total_available)

    @property
    def blended_unit_cost(self) -> Decimal:
        if self.requested_quantity <= 0:
            return ZERO
        return quantize_cost(self.total_cost / self.requested_quantity)


def allocate(batches: Iterable, requested_quantity) -> AllocationResult:
    """
    Partition requested_quantity across batches oldest-first.

    batches: objects exposing id, remaining_quantity, unit_cost, received_at
    and optionally created_at (ORM rows or BatchSnapshot). Order does not
    matter; exhausted batches are ignored.

    Raises ValidationError if requested_quantity is not > 0. Shortfall is
    reported through the result, never raised.
    """
    try:
        requested = quantize_quantity(requested_quantity)
    except ValueError:
        raise ValidationError("requested_quantity must be a number")
    if requested <= 0:
        raise ValidationError("requested_quantity must be > 0")

    candidates = sorted(
        (b for b in batches if to_decimal(b.remaining_quantity) > 0),
        key=fifo_key,
    )

    outstanding = requested
    total_cost = ZERO
    total_available = ZERO
    breakdown: list[ConsumptionLine] = []

    for batch in candidates:
        available = to_decimal(batch.remaining_quantity)
        total_available += available

        if outstanding <= 0:
            continue

        take = quantize_quantity(min(outstanding, available))
        unit_cost = to_decimal(batch.unit_cost)
        partial_cost = quantize_cost(take * unit_cost)

        breakdown.append(
            ConsumptionLine(
                batch_id=batch.id,
                quantity_consumed=take,
                unit_cost=unit_cost,
                partial_cost=partial_cost,
                received_at=batch.received_at,
            )
        )
        total_cost += partial_cost
        outstanding -= take

    return AllocationResult(
        requested_quantity=requested,
        breakdown=tuple(breakdown),
        total_cost=total_cost,
        total_available=total_available,
        consumed_quantity=requested - outstanding,
    )
