"""
Agenda Assistant — Reminder Scheduler.

Runs once per minute: every task whose reminder falls in the current minute
gets exactly one notification.

WhatsApp only allows free text inside the 24h window opened by the user's
last message. Users silent for 24h or more get the pre-approved first-contact
template instead of the plain reminder.

This module is provider-agnostic: it depends on the NotificationPort protocol
and the stores, not on Twilio.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from src.config import settings
from src.core.messages import reminder_text
from src.core.time_utils import as_utc, floor_minute, utc_now
from src.ports.notification_port import (
    DeliveryError,
    OutboundMessage,
    TemplateMessage,
    TextMessage,
    deliver,
)

if TYPE_CHECKING:
    from src.data.db import TaskDB, UserDB
    from src.data.models import Task, User
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

CONVERSATION_WINDOW = timedelta(hours=24)


@dataclass
class ReminderSweep:
    """Counters for one scheduler tick."""

    minute: datetime
    templates_sent: int = 0
    reminders_sent: int = 0
    skipped: int = 0
    failed: int = 0


def needs_first_contact(user: User, now: datetime) -> bool:
    """True when the user has been silent for at least 24 hours."""
    if user.last_contact_at is None:
        return True
    return as_utc(now) - as_utc(user.last_contact_at) >= CONVERSATION_WINDOW


def build_reminder(task: Task, user: User, now: datetime) -> OutboundMessage:
    """Pick the first-contact template or the plain text reminder."""
    if needs_first_contact(user, now):
        return TemplateMessage(
            template_id=settings.TWILIO_FIRST_CONTACT_TEMPLATE_SID,
            variables={"1": user.display_name},
        )
    return TextMessage(reminder_text(task))


async def send_due_reminders(
    notifier: NotificationPort,
    task_db: TaskDB,
    user_db: UserDB,
    now: datetime | None = None,
) -> ReminderSweep:
    """Send the reminders scheduled for the current minute.

    Each task is handled on its own: a failure is logged and the sweep moves
    on to the next task.
    """
    now = as_utc(now or utc_now())
    minute = floor_minute(now)
    sweep = ReminderSweep(minute=minute)

    tasks = task_db.get_due_at(minute)
    if tasks:
        logger.info("Reminder sweep %s: %d task(s) due", minute.isoformat(), len(tasks))

    for task in tasks:
        try:
            await _send_task_reminder(task, notifier, task_db, user_db, now, minute, sweep)
        except DeliveryError as exc:
            sweep.failed += 1
            logger.error("Reminder for task #%d not delivered: %s", task.id, exc)
        except Exception:
            sweep.failed += 1
            logger.exception("Unexpected error sending reminder for task #%d", task.id)

    return sweep


async def _send_task_reminder(
    task: Task,
    notifier: NotificationPort,
    task_db: TaskDB,
    user_db: UserDB,
    now: datetime,
    minute: datetime,
    sweep: ReminderSweep,
) -> None:
    # Claimed before sending: at most one attempt per (task, minute)
    if not task_db.claim_reminder(task.id, minute):
        logger.debug("Reminder for task #%d at %s already fired", task.id, minute.isoformat())
        sweep.skipped += 1
        return

    user = user_db.get_user(task.user_id)
    if user is None:
        logger.warning("Task #%d has no owner (user %d missing)", task.id, task.user_id)
        sweep.skipped += 1
        return

    message = build_reminder(task, user, now)
    await deliver(notifier, user.phone, message)

    if isinstance(message, TemplateMessage):
        sweep.templates_sent += 1
        logger.info("First-contact template sent to user %d for task #%d", user.id, task.id)
    else:
        sweep.reminders_sent += 1
        logger.info("Reminder sent to user %d for task #%d", user.id, task.id)
