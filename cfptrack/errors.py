"""Domain errors raised by the service layer.

The HTTP layer maps each class to a status code; the MCP server turns them
into ``{"error": ...}`` payloads.
"""
from __future__ import annotations


class TrackerError(Exception):
    """Base class for expected, client-visible failures."""
    status_code = 400


class NotFoundError(TrackerError):
    status_code = 404


class PermissionDeniedError(TrackerError):
    status_code = 403


class InvalidInputError(TrackerError):
    status_code = 422
