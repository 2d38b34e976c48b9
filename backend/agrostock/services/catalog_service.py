# Overview: Resolves catalog items to their costing behaviour.

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from ..extensions import db
from ..models import ITEM_TYPE_MACHINE_HOUR, ITEM_TYPE_STOCK, Item, Machine
from ..numeric import ZERO, to_decimal
from .errors import NotFoundError


@dataclass(frozen=True)
class ItemResolution:
    item_id: int
    item_type: str
    product_id: Optional[int] = None
    machine_id: Optional[int] = None
    rate: Decimal = ZERO

    @property
    def is_stock(self) -> bool:
        return self.item_type == ITEM_TYPE_STOCK


def find_item(item_id) -> Item | None:
    if item_id is None:
        return None
    return db.session.query(Item).filter_by(id=item_id).first()


def resolution_for(item: Item) -> ItemResolution:
    """
    Map an item to how it is costed.

    Machine-hour items use the linked machine's hourly rate when it has one,
    otherwise the item's default rate; services use the default rate; stock
    items are costed by FIFO so their rate is irrelevant here.
    """
    if item.item_type == ITEM_TYPE_STOCK:
        if item.product_id is None:
            raise NotFoundError("product for item", item.id)
        return ItemResolution(item_id=item.id, item_type=item.item_type, product_id=item.product_id)

    rate = to_decimal(item.default_rate) if item.default_rate is not None else ZERO
    if item.item_type == ITEM_TYPE_MACHINE_HOUR and item.machine_id is not None:
        machine = db.session.query(Machine).filter_by(id=item.machine_id).first()
        if machine is not None and machine.hourly_rate is not None:
            rate = to_decimal(machine.hourly_rate)

    return ItemResolution(
        item_id=item.id,
        item_type=item.item_type,
        machine_id=item.machine_id,
        rate=rate,
    )
