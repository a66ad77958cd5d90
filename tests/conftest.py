"""Shared test fixtures and configuration.

Sets up fake environment variables so src.config doesn't sys.exit(),
and provides common fixtures like temp DBs and a mock notifier.
"""

import os

# Patch env vars BEFORE any src imports
os.environ.setdefault("TWILIO_ACCOUNT_SID", "ACfake-sid-for-tests")
os.environ.setdefault("TWILIO_AUTH_TOKEN", "fake-auth-token")
os.environ.setdefault("TWILIO_WHATSAPP_FROM", "whatsapp:+14155238886")
os.environ.setdefault("TWILIO_FIRST_CONTACT_TEMPLATE_SID", "HXfirstcontact")
os.environ.setdefault("LLM_API_KEY", "")
os.environ.setdefault("DATABASE_PATH", ":memory:")
os.environ.setdefault("TIMEZONE", "America/Sao_Paulo")
os.environ.setdefault("RUN_SCHEDULER", "false")

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import pytest

# Fixed "now" used across router and scheduler tests
NOW = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def tmp_db_path(tmp_path):
    """Return a temporary SQLite DB path."""
    return str(tmp_path / "test_agenda.db")


@pytest.fixture
def task_db(tmp_db_path):
    """Return a TaskDB instance backed by a temp file."""
    from src.data.db import TaskDB
    return TaskDB(db_path=tmp_db_path)


@pytest.fixture
def user_db(tmp_db_path):
    """Return a UserDB instance sharing the TaskDB temp file."""
    from src.data.db import UserDB
    return UserDB(db_path=tmp_db_path)


@pytest.fixture
def user(user_db):
    """A registered user who talked to the assistant one hour before NOW."""
    from datetime import timedelta

    created = user_db.add_user("+5579988064629", "Test User")
    user_db.touch_last_contact(created.id, NOW - timedelta(hours=1))
    return user_db.get_user(created.id)


@pytest.fixture
def notifier():
    """A NotificationPort double recording every send."""
    mock = AsyncMock()
    mock.send_text = AsyncMock()
    mock.send_template = AsyncMock()
    return mock


@pytest.fixture
def router(notifier, task_db, user_db):
    """A CommandRouter frozen at NOW."""
    from src.core.router import CommandRouter
    return CommandRouter(notifier, task_db, user_db, clock=lambda: NOW)
