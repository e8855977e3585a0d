"""Standard JSON error bodies for the AOG API.

Every error response has the shape::

    {"error": "<message>", "code": "ERR_...", "details": {...}}

``details`` is omitted when empty. Blueprint-level input errors use the
``E`` constants; domain exceptions raised by the services go through
``domain_error`` and keep their own code and status.

    return api_error(E.VALIDATION_REQUIRED, "to_status is required")
    return domain_error(exc)
"""

from __future__ import annotations

from flask import jsonify

from aog_tracker.core.exceptions import AOGError


class E:
    """Error codes produced directly by blueprints and app handlers."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"   # 400
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"     # 400
    NOT_FOUND = "ERR_NOT_FOUND"                       # 404
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"     # 405
    RATE_LIMITED = "ERR_RATE_LIMITED"                 # 429
    INTERNAL = "ERR_INTERNAL"                         # 500


_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.NOT_FOUND: 404,
    E.METHOD_NOT_ALLOWED: 405,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Return ``(response, status)``; status falls back to the code's default, then 400."""
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _DEFAULT_STATUS.get(code, 400)


def domain_error(exc: AOGError):
    """Map a service-layer exception onto its HTTP response."""
    return api_error(exc.code, str(exc), status=exc.http_status, details=exc.details)
