# backend/agrostock/routes/entries.py
"""
Entry (lancamento) routes.

- POST   /api/entries                  commit a draft
- GET    /api/entries/<id>             entry with lines and breakdowns
- PUT    /api/entries/<id>             edit: reverse then re-apply (?reason= kept on the audit event)
- DELETE /api/entries/<id>             reverse and delete (?property_id=, ?reason=)
- GET    /api/seasons/<id>/entries     entries of a season
- GET    /api/entries/<id>/history     audit trail of an entry

Every stock line is re-priced against live batches on commit; client-side
preview values are ignored if sent.
"""
from flask import Blueprint, current_app, jsonify, request

from ..services import entry_service
from ..services.entry_service import EntryDraft
from ..services.errors import EngineError
from ..services.ledger_service import list_audit_events
from ..validation import ValidationError
from .responses import error_response


entries_bp = Blueprint("entries", __name__, url_prefix="/api")


@entries_bp.post("/entries")
def commit_entry_route():
    payload = request.get_json(silent=True) or {}
    actor = request.headers.get("X-Actor")

    try:
        draft = EntryDraft.from_payload(payload)
        entry = entry_service.commit_entry(draft, actor=actor)
    except (ValidationError, EngineError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to commit entry")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"entry": entry.to_dict()}), 201


@entries_bp.get("/entries/<int:entry_id>")
def get_entry_route(entry_id: int):
    try:
        entry = entry_service.get_entry(entry_id)
    except EngineError as e:
        return error_response(e)
    return jsonify({"entry": entry.to_dict()}), 200


@entries_bp.put("/entries/<int:entry_id>")
def edit_entry_route(entry_id: int):
    payload = request.get_json(silent=True) or {}
    actor = request.headers.get("X-Actor")

    try:
        draft = EntryDraft.from_payload(payload)
        entry = entry_service.edit_entry(entry_id, draft, actor=actor, reason=request.args.get("reason"))
    except (ValidationError, EngineError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to edit entry")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify({"entry": entry.to_dict()}), 200


@entries_bp.delete("/entries/<int:entry_id>")
def delete_entry_route(entry_id: int):
    property_id = request.args.get("property_id", type=int)
    actor = request.headers.get("X-Actor")

    try:
        result = entry_service.delete_entry(
            entry_id, property_id=property_id, actor=actor, reason=request.args.get("reason")
        )
    except (ValidationError, EngineError) as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete entry")
        return jsonify({"error": "Internal server error"}), 500

    return jsonify(result), 200


@entries_bp.get("/seasons/<int:season_id>/entries")
def list_entries_route(season_id: int):
    limit = request.args.get("limit", default=200, type=int)
    rows = entry_service.list_entries(season_id, limit=max(1, min(limit, 1000)))
    return jsonify([e.to_dict(include_lines=False) for e in rows]), 200


@entries_bp.get("/entries/<int:entry_id>/history")
def entry_history_route(entry_id: int):
    events = list_audit_events(entity_type="entry", entity_id=entry_id)
    return jsonify([ev.to_dict() for ev in events]), 200
