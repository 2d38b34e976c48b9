# Overview: Maps service errors to JSON error responses.

from flask import jsonify

from ..services.errors import (
    EngineError,
    InsufficientStockError,
    InvariantViolation,
    NotFoundError,
    PartialCommitError,
    SeasonClosedError,
)
from ..validation import ValidationError


def error_response(exc: Exception):
    """
    400 validation, 404 not found, 409 business conflicts (stock, closed
    season, batch invariant), 500 partial commit.
    """
    if isinstance(exc, ValidationError):
        return jsonify({"error": str(exc)}), 400
    if isinstance(exc, NotFoundError):
        return jsonify({"error": str(exc), "details": exc.details}), 404
    if isinstance(exc, (InsufficientStockError, SeasonClosedError, InvariantViolation)):
        return jsonify({"error": str(exc), "code": type(exc).__name__, "details": exc.details}), 409
    if isinstance(exc, PartialCommitError):
        return jsonify({"error": str(exc), "code": "PartialCommitError", "details": exc.details}), 500
    if isinstance(exc, EngineError):
        return jsonify({"error": str(exc), "details": exc.details}), 422
    raise exc
