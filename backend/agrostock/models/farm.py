from __future__ import annotations

from ..extensions import db
from ..numeric import decimal_str
from ..time_utils import to_utc_z


class Property(db.Model):
    """
    Farm property: the scoping root for seasons, products, machines and entries.

    Property CRUD lives outside this service; the row exists so every engine
    operation can be scoped explicitly instead of reading an ambient
    "current property".
    """
    __tablename__ = "properties"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    is_active = db.Column(db.Boolean, nullable=False, default=True, index=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Property id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }


class Season(db.Model):
    """
    Crop season ("safra").

    CLOSING:
    - is_closed=True freezes every entry and batch that belongs to the season:
      its batches are neither depleted nor restored, by any season's entries
    - Closing/reopening is recorded with who/when for the audit trail
    - The flag is always re-read from the database before a mutation; callers
      must never pass a cached value
    """
    __tablename__ = "seasons"
    __table_args__ = (
        db.Index("ix_seasons_property_closed", "property_id", "is_closed"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    name = db.Column(db.String(120), nullable=False)

    is_closed = db.Column(db.Boolean, nullable=False, default=False)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_by = db.Column(db.String(120), nullable=True)
    reopened_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    property = db.relationship("Property", backref=db.backref("seasons", lazy=True))

    def __repr__(self) -> str:
        return f"<Season id={self.id} name={self.name!r} closed={self.is_closed}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "name": self.name,
            "is_closed": self.is_closed,
            "closed_at": to_utc_z(self.closed_at),
            "closed_by": self.closed_by,
            "reopened_at": to_utc_z(self.reopened_at),
            "created_at": to_utc_z(self.created_at),
        }


class Machine(db.Model):
    __tablename__ = "machines"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    property_id = db.Column(db.Integer, db.ForeignKey("properties.id"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)

    # Cost per operating hour; items fall back to their own default rate when null
    hourly_rate = db.Column(db.Numeric(18, 4), nullable=True)

    # Hour meter (horimetro): incremented by machine-hour entry lines
    hour_meter = db.Column(db.Numeric(18, 4), nullable=False, default=0)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )

    def __repr__(self) -> str:
        return f"<Machine id={self.id} name={self.name!r}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "property_id": self.property_id,
            "name": self.name,
            "hourly_rate": decimal_str(self.hourly_rate),
            "hour_meter": decimal_str(self.hour_meter),
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
        }
