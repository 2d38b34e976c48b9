# backend/agrostock/routes/seasons.py
"""
Season closing routes.

Closing freezes every entry and batch of the season; reopening lifts the
freeze. Both are idempotent.
"""
from flask import Blueprint, current_app, jsonify, request

from ..services import season_service
from ..services.errors import EngineError
from .responses import error_response


seasons_bp = Blueprint("seasons", __name__, url_prefix="/api/seasons")


@seasons_bp.post("/<int:season_id>/close")
def close_season_route(season_id: int):
    actor = request.headers.get("X-Actor")
    try:
        summary = season_service.close_season(season_id, actor=actor)
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to close season")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify(summary), 200


@seasons_bp.post("/<int:season_id>/reopen")
def reopen_season_route(season_id: int):
    actor = request.headers.get("X-Actor")
    try:
        season = season_service.reopen_season(season_id, actor=actor)
    except EngineError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to reopen season")
        return jsonify({"error": "Internal server error"}), 500
    return jsonify({"season": season.to_dict()}), 200
