"""
Agenda Assistant — Data Models.

Users are created on their first WhatsApp message; tasks are created and
updated through the conversation. Both persist in SQLite.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class User:
    """A WhatsApp contact of the assistant, identified by phone number."""

    id: int
    phone: str                              # canonical "+<digits>"
    display_name: str
    last_contact_at: datetime | None = None  # UTC, last inbound interaction
    subscription_active: bool = False        # written by the billing webhook only
    created_at: datetime | None = None


@dataclass
class Task:
    """A reminder task owned by exactly one user.

    reminder_at must never be later than due_at.
    """

    id: int
    user_id: int
    description: str
    due_at: datetime                  # UTC
    reminder_at: datetime             # UTC
    meta: str | None = None           # free-form label/category, e.g. "Reunião"
    created_at: datetime | None = None
    updated_at: datetime | None = None
