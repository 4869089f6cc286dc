#!/usr/bin/env python3
"""errors.py

Failure taxonomy for the realtime core.

Socket handlers catch ChatError at the operation boundary and turn it into an
actor-only ``error`` event; HTTP routes map it onto a status code.
"""

from __future__ import annotations


class ChatError(Exception):
    code = "error"
    http_status = 500

    def __init__(self, message: str | None = None):
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__

    def to_dict(self) -> dict:
        return {"message": self.message, "code": self.code}


class ValidationError(ChatError):
    """Malformed input (missing room, empty content, bad ids)."""

    code = "invalid"
    http_status = 400


class PolicyDenied(ChatError):
    """A moderation rule said no."""

    code = "denied"
    http_status = 403


class Blocked(PolicyDenied):
    code = "blocked"


class NotFound(ChatError):
    code = "not_found"
    http_status = 404


class WrongRoom(ChatError):
    """The target lives in a different room than the acting session."""

    code = "wrong_room"
    http_status = 409


class Conflict(ChatError):
    code = "conflict"
    http_status = 409


class StorageUnavailable(ChatError):
    """The database behind a store or directory failed."""

    code = "storage_unavailable"
    http_status = 503


class UpstreamFailure(ChatError):
    """The document summarizer failed or answered with garbage."""

    code = "upstream_failure"
    http_status = 502

    def __init__(self, message: str | None = None, document_id: str | None = None):
        super().__init__(message)
        self.document_id = document_id

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["documentId"] = self.document_id
        return out
