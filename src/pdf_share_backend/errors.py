"""
Error taxonomy shared by every layer of the backend.

Each error carries a stable machine-readable ``kind`` and the HTTP status the
API layer maps it to. Messages are meant for end users; internal details stay
in the logs.
"""

from __future__ import annotations


class PDFShareError(Exception):
    """Base class for all errors surfaced to API callers."""

    kind = "error"
    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"kind": self.kind, "message": self.message}


class DocumentValidationError(PDFShareError):
    """Uploaded bytes are not a usable PDF document."""

    kind = "validation_error"
    status_code = 400


class InvalidRequest(PDFShareError):
    """A request violates a stated invariant (bad range, page, color...)."""

    kind = "invalid_request"
    status_code = 400


class NotFound(PDFShareError):
    kind = "not_found"
    status_code = 404


class PermissionDenied(PDFShareError):
    kind = "forbidden"
    status_code = 403


class LinkError(PDFShareError):
    """A share link reached one of its terminal states."""

    kind = "link_error"
    status_code = 410


class LinkExpired(LinkError):
    kind = "link_expired"


class LinkDeactivated(LinkError):
    kind = "link_deactivated"


class LinkLimitReached(LinkError):
    kind = "link_limit_reached"


class StorageFailure(PDFShareError):
    """Durable read or write of an artifact failed."""

    kind = "storage_failure"
    status_code = 503


class TransformTimeout(PDFShareError):
    kind = "timeout"
    status_code = 504


class IntegrityError(PDFShareError):
    """Internal bookkeeping disagrees with stored data. Never auto-repaired."""

    kind = "integrity_error"
    status_code = 500
