"""Tests for src.data.db — TaskDB (SQLite storage)."""

import pytest
from datetime import datetime, timedelta, timezone

from src.data.db import TaskDB

DUE = datetime(2026, 3, 21, 15, 0, tzinfo=timezone.utc)
REMINDER = datetime(2026, 3, 21, 14, 0, tzinfo=timezone.utc)


class TestTaskDBAddAndGet:
    def test_add_task_returns_task(self, task_db):
        task = task_db.add_task(
            user_id=1, description="Dentista", due_at=DUE, reminder_at=REMINDER, meta="Saúde",
        )
        assert task.id is not None
        assert task.user_id == 1
        assert task.description == "Dentista"
        assert task.due_at == DUE
        assert task.reminder_at == REMINDER
        assert task.meta == "Saúde"
        assert task.created_at is not None

    def test_add_task_without_meta(self, task_db):
        task = task_db.add_task(1, "Pagar conta", DUE, REMINDER)
        assert task.meta is None

    def test_timestamps_stored_in_utc(self, task_db):
        local = datetime(2026, 3, 21, 12, 0, tzinfo=timezone(timedelta(hours=-3)))
        task = task_db.add_task(1, "Reunião", local, local)
        assert task.due_at == datetime(2026, 3, 21, 15, 0, tzinfo=timezone.utc)
        assert task.due_at.utcoffset() == timedelta(0)

    def test_get_task_not_found(self, task_db):
        assert task_db.get_task(999) is None

    def test_get_task_scoped_to_owner(self, task_db):
        task = task_db.add_task(1, "Mine", DUE, REMINDER)
        assert task_db.get_task(task.id, user_id=1) is not None
        assert task_db.get_task(task.id, user_id=2) is None


class TestTaskDBUpdate:
    def test_update_only_given_fields(self, task_db):
        task = task_db.add_task(1, "Old", DUE, REMINDER, meta="A")
        updated = task_db.update_task(task.id, 1, {"description": "New"})
        assert updated.description == "New"
        assert updated.due_at == DUE
        assert updated.reminder_at == REMINDER
        assert updated.meta == "A"

    def test_update_timestamps(self, task_db):
        task = task_db.add_task(1, "Task", DUE, REMINDER)
        new_due = DUE + timedelta(days=1)
        updated = task_db.update_task(task.id, 1, {"due_at": new_due})
        assert updated.due_at == new_due

    def test_update_other_owner_returns_none(self, task_db):
        task = task_db.add_task(1, "Mine", DUE, REMINDER)
        assert task_db.update_task(task.id, 2, {"description": "Hijacked"}) is None
        assert task_db.get_task(task.id).description == "Mine"

    def test_update_unknown_field_raises(self, task_db):
        task = task_db.add_task(1, "Task", DUE, REMINDER)
        with pytest.raises(ValueError):
            task_db.update_task(task.id, 1, {"user_id": 2})


class TestTaskDBQueries:
    def test_list_upcoming_ordered_and_filtered(self, task_db):
        now = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)
        task_db.add_task(1, "Later", now + timedelta(days=3), now)
        task_db.add_task(1, "Sooner", now + timedelta(hours=2), now)
        task_db.add_task(1, "Past", now - timedelta(hours=1), now - timedelta(hours=2))
        task_db.add_task(2, "Someone else", now + timedelta(hours=1), now)

        tasks = task_db.list_upcoming(1, now)
        assert [t.description for t in tasks] == ["Sooner", "Later"]

    def test_list_upcoming_with_horizon(self, task_db):
        now = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)
        task_db.add_task(1, "This week", now + timedelta(days=2), now)
        task_db.add_task(1, "Next month", now + timedelta(days=40), now)

        tasks = task_db.list_upcoming(1, now, until=now + timedelta(days=30))
        assert [t.description for t in tasks] == ["This week"]

    def test_list_for_user(self, task_db):
        task_db.add_task(1, "A", DUE, REMINDER)
        task_db.add_task(2, "B", DUE, REMINDER)
        task_db.add_task(1, "C", DUE + timedelta(hours=1), REMINDER)
        assert {t.description for t in task_db.list_for_user(1)} == {"A", "C"}

    def test_get_due_at_matches_minute(self, task_db):
        minute = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)
        task_db.add_task(1, "Exact", DUE, minute)
        task_db.add_task(1, "Same minute", DUE, minute + timedelta(seconds=45))
        task_db.add_task(1, "Next minute", DUE, minute + timedelta(minutes=1))
        task_db.add_task(1, "Previous minute", DUE, minute - timedelta(seconds=1))

        due = task_db.get_due_at(minute + timedelta(seconds=30))
        assert {t.description for t in due} == {"Exact", "Same minute"}


class TestTaskDBReminderLog:
    def test_claim_once_per_minute(self, task_db):
        minute = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)
        task = task_db.add_task(1, "Task", DUE, minute)
        assert task_db.claim_reminder(task.id, minute) is True
        assert task_db.claim_reminder(task.id, minute + timedelta(seconds=20)) is False

    def test_claim_different_minutes(self, task_db):
        minute = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)
        task = task_db.add_task(1, "Task", DUE, minute)
        assert task_db.claim_reminder(task.id, minute) is True
        assert task_db.claim_reminder(task.id, minute + timedelta(minutes=1)) is True

    def test_claim_survives_new_instance(self, tmp_db_path):
        minute = datetime(2026, 3, 20, 12, 0, tzinfo=timezone.utc)
        first = TaskDB(db_path=tmp_db_path)
        task = first.add_task(1, "Task", DUE, minute)
        assert first.claim_reminder(task.id, minute) is True
        assert TaskDB(db_path=tmp_db_path).claim_reminder(task.id, minute) is False
