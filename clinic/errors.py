"""Error taxonomy shared by the services and the HTTP layer."""
from __future__ import annotations


class ClinicError(Exception):
    """Base class for errors that carry a user-facing code and message."""

    error = "clinic_error"
    status_code = 400

    def __init__(self, message: str, error: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if error is not None:
            self.error = error

    def to_dict(self) -> dict[str, str]:
        return {"error": self.error, "message": self.message}


class ValidationError(ClinicError):
    error = "invalid_payload"
    status_code = 400


class NotFound(ClinicError):
    error = "not_found"
    status_code = 404


class InvalidState(ClinicError):
    error = "invalid_state"
    status_code = 409


class InsufficientPoints(ClinicError):
    error = "insufficient_points"
    status_code = 400


class DuplicateSubscription(ClinicError):
    error = "duplicate_subscription"
    status_code = 409


class UpstreamFailure(ClinicError):
    error = "upstream_failure"
    status_code = 502
