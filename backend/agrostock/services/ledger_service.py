# Overview: Service-layer operations for the audit trail; append-only event log.

from __future__ import annotations

from typing import Optional
from datetime import datetime

from ..extensions import db
from ..models import AuditEvent
"""
Audit Trail Invariants (authoritative)

- Append-only log of entry, batch and season events.
- No domain/business logic in the audit trail itself.
- Events are written inside the same DB transaction as the change they
  record: the caller commits, never this module.
- payload carries before/after snapshots as plain JSON (decimals as strings).
"""


def append_audit_event(
    *,
    event_type: str,
    entity_type: str,
    entity_id: int,
    property_id: int | None = None,
    season_id: int | None = None,
    actor: str | None = None,
    occurred_at: Optional[datetime] = None,
    note: Optional[str] = None,
    payload: Optional[dict] = None,
) -> AuditEvent:
    """
    Append-only audit event.

    - No deletes/updates of existing events.
    - occurred_at defaults to the DB clock.
    """
    ev = AuditEvent(
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        property_id=property_id,
        season_id=season_id,
        actor=actor,
        occurred_at=occurred_at,  # if None, db default applies
        note=note,
        payload=payload,
    )
    db.session.add(ev)
    db.session.flush()  # ensures ev.id is assigned without committing
    return ev


def list_audit_events(*, entity_type: str, entity_id: int, limit: int = 200) -> list[AuditEvent]:
    return (
        db.session.query(AuditEvent)
        .filter_by(entity_type=entity_type, entity_id=entity_id)
        .order_by(AuditEvent.id.asc())
        .limit(limit)
        .all()
    )
