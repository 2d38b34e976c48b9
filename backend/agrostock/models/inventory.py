from __future__ import annotations

from ..extensions import db
from ..numeric import decimal_str
from ..time_utils import to_iso_date, to_utc_z, utcnow


class Product(db.Model):
    """
    Stock-tracked good.

    Products are soft-deactivated (is_active=False) and never hard-deleted
    while batches reference them. minimum_level drives the low-stock flag of
    the stock summary.
    """
    __tablename__ = "products"
    __table_args__ = (
        db.Index("ix_products_property_name", "property_id", "name"),
        db.Index("ix_products_property_active", "property_id", "is_active"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)

    name = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(32), nullable=False, default="unidade")
    minimum_level = db.Column(db.Numeric(18, 4), nullable=True)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Product id={self.id} name={self.name!r} property_id={self.property_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "name": self.name,
            "unit": self.unit,
            "minimum_level": decimal_str(self.minimum_level),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Batch(db.Model):
    """
    Inventory batch ("lote"): one priced, dated receipt of a product.

    INVARIANTS:
    - original_quantity and unit_cost are fixed at creation
    - 0 <= remaining_quantity <= original_quantity (also enforced by CHECKs)
    - remaining_quantity only moves through batch_service.deplete/restore
    - Batches are never deleted; exhausted batches stay with remaining 0

    FIFO ORDER: (received_at ASC, created_at ASC, id ASC).
    created_at is set in Python with microsecond resolution so same-day
    receipts are consumed in insertion order.

    version_id enables optimistic locking: a depletion racing another
    session's update raises StaleDataError instead of silently overwriting.
    """
    __tablename__ = "batches"
    __table_args__ = (
        db.CheckConstraint("original_quantity > 0", name="ck_batches_original_positive"),
        db.CheckConstraint("remaining_quantity >= 0", name="ck_batches_remaining_nonnegative"),
        db.CheckConstraint("remaining_quantity <= original_quantity", name="ck_batches_remaining_le_original"),
        db.CheckConstraint("unit_cost >= 0", name="ck_batches_unit_cost_nonnegative"),
        db.Index("ix_batches_product_fifo", "product_id", "received_at", "created_at", "id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey("products.id"), nullable=False, index=True)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=True, index=True)

    original_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    remaining_quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_cost = db.Column(db.Numeric(18, 4), nullable=False)

    received_at = db.Column(db.Date, nullable=False)
    expires_at = db.Column(db.Date, nullable=True)

    invoice_ref = db.Column(db.String(64), nullable=True)
    supplier = db.Column(db.String(255), nullable=True)
    note = db.Column(db.String(255), nullable=True)

    version_id = db.Column(db.Integer, nullable=False, default=1)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=True, onupdate=utcnow)

    product = db.relationship("Product", backref=db.backref("batches", lazy=True))
    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return (
            f"<Batch id={self.id} product_id={self.product_id} "
            f"remaining={self.remaining_quantity}/{self.original_quantity}>"
        )

    @property
    def is_exhausted(self) -> bool:
        return self.remaining_quantity is not None and self.remaining_quantity <= 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "product_id": self.product_id,
            "season_id": self.season_id,
            "original_quantity": decimal_str(self.original_quantity),
            "remaining_quantity": decimal_str(self.remaining_quantity),
            "unit_cost": decimal_str(self.unit_cost),
            "received_at": to_iso_date(self.received_at),
            "expires_at": to_iso_date(self.expires_at),
            "invoice_ref": self.invoice_ref,
            "supplier": self.supplier,
            "note": self.note,
            "is_exhausted": self.is_exhausted,
            "created_at": to_utc_z(self.created_at),
        }
