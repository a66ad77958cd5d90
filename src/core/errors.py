"""Domain errors surfaced back to the user as conversational replies."""

from __future__ import annotations


class AgendaError(Exception):
    """Base class for user-facing command errors."""


class ValidationError(AgendaError):
    """Task fields are missing, malformed, or reminder_at is after due_at."""


class NotFoundError(AgendaError):
    """The referenced task doesn't exist or belongs to another user."""
