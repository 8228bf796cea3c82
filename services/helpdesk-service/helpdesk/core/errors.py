"""
Domain exceptions raised by the lifecycle, session, ledger and automation services.

The HTTP layer maps each class to a status code in main.py; services never
raise HTTPException themselves.
"""
from typing import Any, Dict, Optional


class HelpdeskError(Exception):
    """Base exception for helpdesk operations."""

    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class NotFound(HelpdeskError):
    """Unknown ticket, comment, session, time entry or user."""

    status_code = 404


class Forbidden(HelpdeskError):
    """Role or ownership violation."""

    status_code = 403


class Conflict(HelpdeskError):
    """The current state does not allow the requested change."""

    status_code = 409


class ValidationError(HelpdeskError):
    """Input rejected by a domain rule (threshold < 1, empty body, ...)."""

    status_code = 400
