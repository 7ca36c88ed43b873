"""Error kinds shared by the services and the HTTP layer.

Services never raise these: they return ``(result, error)`` pairs where
``error`` is a :class:`ServiceError` or ``None``. Routes turn the error into a
JSON response with :func:`error_response`.
"""

from typing import Dict, Optional

from flask import jsonify

NOT_FOUND = "NotFound"
DELIVERY_FAILED = "DeliveryFailed"
RATE_LIMITED = "RateLimited"
INVALID_OR_EXPIRED = "InvalidOrExpired"
CONFLICT = "Conflict"
VALIDATION_FAILED = "ValidationFailed"
INVALID_CREDENTIALS = "InvalidCredentials"
FORBIDDEN = "Forbidden"

STATUS_CODES = {
    VALIDATION_FAILED: 400,
    INVALID_OR_EXPIRED: 400,
    INVALID_CREDENTIALS: 401,
    FORBIDDEN: 403,
    NOT_FOUND: 404,
    CONFLICT: 409,
    RATE_LIMITED: 429,
    DELIVERY_FAILED: 502,
}


class ServiceError:
    def __init__(self, kind: str, message: str, details: Optional[Dict] = None):
        self.kind = kind
        self.message = message
        self.details = details or {}

    @property
    def status_code(self) -> int:
        return STATUS_CODES.get(self.kind, 500)

    def to_dict(self) -> Dict[str, object]:
        return {"message": self.message, "error": self.kind, **self.details}

    def __repr__(self):
        return f"ServiceError({self.kind!r}, {self.message!r})"


def error_response(error: ServiceError):
    return jsonify(error.to_dict()), error.status_code
