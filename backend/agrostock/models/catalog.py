from __future__ import annotations

from ..extensions import db
from ..numeric import decimal_str
from ..time_utils import to_utc_z

ITEM_TYPE_STOCK = "stock"
ITEM_TYPE_SERVICE = "service"
ITEM_TYPE_MACHINE_HOUR = "machine_hour"

ITEM_TYPES = (ITEM_TYPE_STOCK, ITEM_TYPE_SERVICE, ITEM_TYPE_MACHINE_HOUR)


class Item(db.Model):
    """
    Catalog item usable on an entry line.

    TYPES:
    - stock: linked to a Product; costed by FIFO over the product's batches
    - machine_hour: linked (optionally) to a Machine; costed at the machine's
      hourly rate, falling back to default_rate
    - service: flat rate (default_rate) per unit
    """
    __tablename__ = "items"
    __table_args__ = (
        db.CheckConstraint(
            "item_type IN ('stock', 'service', 'machine_hour')",
            name="ck_items_item_type",
        ),
        db.Index("ix_items_property_active", "property_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    item_type = db.Column(db.String(16), nullable=False, default=ITEM_TYPE_STOCK)
    unit = db.Column(db.String(32), nullable=False, default="unidade")

    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=True, index=True)
    machine_id = db.Column(db.Integer, db.ForeignKey("machines.id"), nullable=True, index=True)

    default_rate = db.Column(db.Numeric(18, 4), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    product = db.relationship("Product")
    machine = db.relationship("Machine")

    def __repr__(self) -> str:
        return f"<Item id={self.id} name={self.name!r} type={self.item_type}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "name": self.name,
            "item_type": self.item_type,
            "unit": self.unit,
            "product_id": self.product_id,
            "machine_id": self.machine_id,
            "default_rate": decimal_str(self.default_rate),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
