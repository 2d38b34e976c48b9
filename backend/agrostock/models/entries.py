from __future__ import annotations

from ..extensions import db
from ..numeric import decimal_str
from ..time_utils import to_iso_date, to_utc_z

ENTRY_STATUS_COMMITTED = "COMMITTED"


class Entry(db.Model):
    """
    Operation entry ("lancamento"): one recorded field operation with
    cost-bearing lines.

    Only COMMITTED entries are persisted. DRAFT lives on the client and
    COMMITTING/REVERSING are transient states inside a single DB transaction.
    Deleting an entry removes the row after its lines' stock is restored;
    the audit trail keeps the before-snapshot.
    """
    __tablename__ = "entries"
    __table_args__ = (
        db.Index("ix_entries_season_executed", "season_id", "executed_on"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=False, index=True)

    # Service and plot records are owned by the CRUD layer; kept as references
    service_name = db.Column(db.String(255), nullable=False)
    plot_id = db.Column(db.Integer, nullable=True, index=True)

    executed_on = db.Column(db.Date, nullable=False)
    note = db.Column(db.Text, nullable=True)

    total_cost = db.Column(db.Numeric(18, 4), nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=ENTRY_STATUS_COMMITTED)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    lines = db.relationship(
        "EntryLine",
        backref="entry",
        lazy=True,
        order_by="EntryLine.id",
        cascade="all, delete-orphan",
    )

    def __repr__(self) -> str:
        return f"<Entry id={self.id} season_id={self.season_id} total={self.total_cost}>"

    def to_dict(self, include_lines: bool = True) -> dict:
        data = {
            "id": self.id,
            "property_id": self.property_id,
            "season_id": self.season_id,
            "service_name": self.service_name,
            "plot_id": self.plot_id,
            "executed_on": to_iso_date(self.executed_on),
            "note": self.note,
            "total_cost": decimal_str(self.total_cost),
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_lines:
            data["lines"] = [line.to_dict() for line in self.lines]
        return data


class EntryLine(db.Model):
    """
    One consumed item within an entry.

    consumption_breakdown is written once at commit time and is the only
    input to reversal. It is non-empty iff the item is stock-backed.
    Shape: see services.fifo.ConsumptionLine.
    """
    __tablename__ = "entry_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_entry_lines_quantity_positive"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    entry_id = db.Column(db.Integer, db.ForeignKey("entries.id"), nullable=False, index=True)
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)

    quantity = db.Column(db.Numeric(18, 4), nullable=False)
    unit_cost = db.Column(db.Numeric(18, 4), nullable=False)
    total_cost = db.Column(db.Numeric(18, 4), nullable=False)

    consumption_breakdown = db.Column(db.JSON, nullable=True)

    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "entry_id": self.entry_id,
            "item_id": self.item_id,
            "quantity": decimal_str(self.quantity),
            "unit_cost": decimal_str(self.unit_cost),
            "total_cost": decimal_str(self.total_cost),
            "consumption_breakdown": self.consumption_breakdown,
        }


class AuditEvent(db.Model):
    """
    Append-only audit trail for entries, batches and seasons.

    Written in the same DB transaction as the change it records; never
    updated or deleted. payload holds before/after snapshots.
    """
    __tablename__ = "audit_events"
    __table_args__ = (
        db.Index("ix_audit_events_entity", "entity_type", "entity_id"),
        db.Index("ix_audit_events_season_occurred", "season_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)  # e.g. entry.committed, batch.registered
    entity_type = db.Column(db.String(32), nullable=False)  # entry, batch, season
    entity_id = db.Column(db.Integer, nullable=False)

    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=True, index=True)
    season_id = db.Column(db.Integer, db.ForeignKey("seasons.id"), nullable=True)
    actor = db.Column(db.String(120), nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    note = db.Column(db.String(255), nullable=True)
    payload = db.Column(db.JSON, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "event_type": self.event_type,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "property_id": self.property_id,
            "season_id": self.season_id,
            "actor": self.actor,
            "occurred_at": to_utc_z(self.occurred_at),
            "note": self.note,
            "payload": self.payload,
        }
