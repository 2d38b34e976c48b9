# Overview: Read-only cost preview for an item and quantity.

"""
Cost preview

preview() answers "what would this line cost right now?" for the entry form.
It never writes, never caches and always reads a fresh batch snapshot, so it
is safe to call on every quantity change (debounce at the call site). Its
answer is advisory: commit re-prices every line against live, locked batches
through the same price_item() function.

"Nothing to preview" (no item, unknown item, quantity <= 0) is None, and
insufficient stock is reported in the result, never raised.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from ..numeric import ZERO, decimal_str, quantize_cost, quantize_quantity
from ..validation import coerce_decimal
from . import batch_service
from .catalog_service import ItemResolution, find_item, resolution_for
from .fifo import AllocationResult, ConsumptionLine, allocate


@dataclass(frozen=True)
class PreviewResult:
    item_id: int
    item_type: str
    quantity: Decimal
    unit_cost: Decimal
    total_cost: Decimal
    breakdown: tuple[ConsumptionLine, ...] = ()
    total_available: Optional[Decimal] = None  # None = unlimited (non-stock)
    sufficient: bool = True
    shortfall: Decimal = ZERO

    @classmethod
    def from_allocation(cls, resolution: ItemResolution, allocation: AllocationResult) -> "PreviewResult":
        return cls(
            item_id=resolution.item_id,
            item_type=resolution.item_type,
            quantity=allocation.requested_quantity,
            unit_cost=allocation.blended_unit_cost,
            total_cost=allocation.total_cost,
            breakdown=allocation.breakdown,
            total_available=allocation.total_available,
            sufficient=allocation.sufficient,
            shortfall=allocation.shortfall,
        )

    def to_dict(self) -> dict:
        return {
            "item_id": self.item_id,
            "item_type": self.item_type,
            "quantity": decimal_str(self.quantity),
            "unit_cost": decimal_str(self.unit_cost),
            "total_cost": decimal_str(self.total_cost),
            "breakdown": [line.to_dict() for line in self.breakdown],
            "total_available": decimal_str(self.total_available),
            "sufficient": self.sufficient,
            "shortfall": decimal_str(self.shortfall),
        }


def price_item(resolution: ItemResolution, quantity: Decimal, batches: Iterable | None = None) -> PreviewResult:
    """
    Price quantity units of a resolved item.

    Stock items run the FIFO allocator over batches (a fresh snapshot of the
    product's available batches when None). Other items are rate x quantity.
    """
    qty = quantize_quantity(quantity)

    if resolution.is_stock:
        if batches is None:
            batches = batch_service.list_available(resolution.product_id)
        return PreviewResult.from_allocation(resolution, allocate(batches, qty))

    unit_cost = quantize_cost(resolution.rate)
    return PreviewResult(
        item_id=resolution.item_id,
        item_type=resolution.item_type,
        quantity=qty,
        unit_cost=unit_cost,
        total_cost=quantize_cost(unit_cost * qty),
    )


def preview(item_id, quantity) -> PreviewResult | None:
    if item_id is None or quantity is None or quantity == "":
        return None

    qty = coerce_decimal("quantity", quantity)
    if quantize_quantity(qty) <= 0:
        return None

    item = find_item(item_id)
    if item is None:
        return None

    return price_item(resolution_for(item), qty)
