# Overview: Season closing guard plus close/reopen operations.

"""
Season closing

A closed season freezes every entry and batch that belongs to it: no
create, edit or delete of entries, no batch registration, no depletion or
restoration of its batches. FIFO skips those batches for every other
season. The guard is a precondition evaluated against a freshly read
(and, where supported, row-locked) season at the start of each mutating
operation, inside the same transaction as the mutation, so a season
closing concurrently cannot slip between check and commit.
"""

from __future__ import annotations

import logging

from ..extensions import db
from ..models import Batch, Entry, Season
from ..time_utils import utcnow
from .concurrency import lock_for_update, run_with_retry
from .errors import NotFoundError, SeasonClosedError
from .ledger_service import append_audit_event

logger = logging.getLogger(__name__)


def _load_season(season_id: int, *, lock: bool = False) -> Season:
    query = db.session.query(Season).filter_by(id=season_id).populate_existing()
    if lock:
        query = lock_for_update(query)
    season = query.first()
    if season is None:
        raise NotFoundError("season", season_id)
    return season


def ensure_season_open(season_id: int, *, property_id: int | None = None) -> Season:
    """
    Fresh-read guard; raises SeasonClosedError if the season is closed.

    Never trust a flag held by the caller: this always reloads the row.
    """
    season = _load_season(season_id, lock=True)
    if property_id is not None and season.property_id != property_id:
        raise NotFoundError("season", season_id)
    if season.is_closed:
        logger.info("Rejected mutation against closed season %s", season_id)
        raise SeasonClosedError(season_id)
    return season


def close_season(season_id: int, *, actor: str | None = None) -> dict:
    """
    Close a season and report how many entries and batches it froze.

    Closing an already closed season is a no-op that returns the same counts.
    """
    def _op():
        season = _load_season(season_id, lock=True)
        summary = _season_counts(season)

        if season.is_closed:
            # Release the row lock taken by the read
            db.session.rollback()
            return summary

        season.is_closed = True
        season.closed_at = utcnow()
        season.closed_by = actor

        append_audit_event(
            event_type="season.closed",
            entity_type="season",
            entity_id=season.id,
            property_id=season.property_id,
            season_id=season.id,
            actor=actor,
            payload=summary,
        )
        db.session.commit()
        logger.info(
            "Season %s closed: %d entries and %d batches frozen",
            season.id, summary["total_entries"], summary["total_batches"],
        )
        return summary

    return run_with_retry(_op)


def reopen_season(season_id: int, *, actor: str | None = None) -> Season:
    def _op():
        season = _load_season(season_id, lock=True)
        if not season.is_closed:
            db.session.rollback()
            return season

        season.is_closed = False
        season.reopened_at = utcnow()

        append_audit_event(
            event_type="season.reopened",
            entity_type="season",
            entity_id=season.id,
            property_id=season.property_id,
            season_id=season.id,
            actor=actor,
        )
        db.session.commit()
        logger.info("Season %s reopened", season.id)
        return season

    return run_with_retry(_op)


def _season_counts(season: Season) -> dict:
    total_entries = db.session.query(Entry).filter_by(season_id=season.id).count()
    total_batches = db.session.query(Batch).filter_by(season_id=season.id).count()
    return {
        "season_id": season.id,
        "season_name": season.name,
        "total_entries": total_entries,
        "total_batches": total_batches,
    }
