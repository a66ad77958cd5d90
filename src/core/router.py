"""
Agenda Assistant — Command Router.

Handles one inbound WhatsApp message end to end:
resolve user -> (subscription gate) -> classify -> (LLM task parsing for
conversational text) -> run handler -> touch last contact -> deliver replies.

The router decides what to say and sends it through the NotificationPort.
A failed send is reported in the DispatchResult and never rolls back a task
that was already saved.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Awaitable, Callable

from src.config import settings
from src.core import messages
from src.core.commands import Command, Intent, classify
from src.core.errors import AgendaError
from src.core.parser import parse_task_request
from src.core.responder import freeform_reply
from src.core.task_service import (
    CreateTaskPayload,
    UpdateTaskPayload,
    create_task,
    parse_create_payload,
    parse_update_payload,
    update_task,
)
from src.core.time_utils import utc_now
from src.ports.billing_port import BillingError
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
    from src.ports.billing_port import BillingPort
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

_CHECKOUT_URL_PREFIX = "https://checkout.stripe.com/c/pay/"


def normalize_identity(raw: str) -> str:
    """'whatsapp:+55 79 98806-4629' -> '+5579988064629'."""
    digits = re.sub(r"\D", "", raw or "")
    if not digits:
        raise ValueError(f"Not a phone identity: {raw!r}")
    return f"+{digits}"


# ---------------------------------------------------------------------------
# Request / result types
# ---------------------------------------------------------------------------


@dataclass
class InboundMessage:
    identity: str          # canonical "+<digits>"
    display_name: str
    body: str
    recipient: str = ""    # our own number, as received in "To"


@dataclass
class DispatchResult:
    user: User
    intent: Intent | None                   # None when the subscription gate answered
    messages: list[OutboundMessage] = field(default_factory=list)
    failed: list[OutboundMessage] = field(default_factory=list)
    task: Task | None = None
    error: AgendaError | None = None


@dataclass
class _HandlerOutcome:
    messages: list[OutboundMessage]
    task: Task | None = None


# ---------------------------------------------------------------------------
# CommandRouter
# ---------------------------------------------------------------------------


class CommandRouter:
    """Routes inbound messages to command handlers and sends the replies."""

    def __init__(
        self,
        notifier: NotificationPort,
        task_db: TaskDB,
        user_db: UserDB,
        billing: BillingPort | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._notifier = notifier
        self._task_db = task_db
        self._user_db = user_db
        self._billing = billing
        self._clock = clock
        self._handlers: dict[Intent, Callable[[User, Command], Awaitable[_HandlerOutcome]]] = {
            Intent.SHOW_MENU: self._handle_menu,
            Intent.LIST_UPCOMING_TASKS: self._handle_agenda,
            Intent.GENERATE_INSIGHTS: self._handle_insights,
            Intent.CREATE_TASK: self._handle_create,
            Intent.UPDATE_TASK: self._handle_update,
            Intent.FREEFORM: self._handle_freeform,
        }

    # ------------------------------------------------------------------
    # Public: inbound message
    # ------------------------------------------------------------------

    async def handle_inbound(self, message: InboundMessage) -> DispatchResult:
        """Process one inbound message and deliver every reply it produces."""
        user = self._user_db.find_or_create(message.identity, message.display_name)

        if self._needs_subscription(user):
            logger.info("User %d has no active subscription — sending payment request", user.id)
            result = DispatchResult(user=user, intent=None)
            result.messages = [await self._payment_request(user)]
        else:
            command = classify(message.body)
            if command.intent is Intent.FREEFORM:
                command = await self._interpret(user, command)
            logger.info("User %d → %s", user.id, command.intent.value)
            result = DispatchResult(user=user, intent=command.intent)
            try:
                outcome = await self._handlers[command.intent](user, command)
                result.messages = outcome.messages
                result.task = outcome.task
            except AgendaError as exc:
                logger.info("User %d command %s rejected: %s", user.id, command.intent.value, exc)
                result.error = exc
                result.messages = [TextMessage(messages.format_error(exc))]

        self._user_db.touch_last_contact(user.id, self._clock())
        result.failed = await self._deliver_all(user, result.messages)
        return result

    # ------------------------------------------------------------------
    # Public: task CRUD for the resolving user
    # ------------------------------------------------------------------

    def create_user_task(self, user: User, payload: CreateTaskPayload | dict) -> Task:
        if isinstance(payload, dict):
            payload = parse_create_payload(payload)
        return create_task(self._task_db, user, payload)

    def update_user_task(self, user: User, payload: UpdateTaskPayload | dict) -> Task:
        if isinstance(payload, dict):
            payload = parse_update_payload(payload)
        return update_task(self._task_db, user, payload)

    def upcoming_tasks(self, user: User) -> list[Task]:
        now = self._clock()
        until = None
        if settings.AGENDA_HORIZON_DAYS > 0:
            until = now + timedelta(days=settings.AGENDA_HORIZON_DAYS)
        return self._task_db.list_upcoming(user.id, now, until)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_menu(self, user: User, command: Command) -> _HandlerOutcome:
        return _HandlerOutcome([TextMessage(messages.MENU_TEXT)])

    async def _handle_agenda(self, user: User, command: Command) -> _HandlerOutcome:
        tasks = self.upcoming_tasks(user)
        return _HandlerOutcome([TextMessage(messages.format_agenda(tasks))])

    async def _handle_insights(self, user: User, command: Command) -> _HandlerOutcome:
        tasks = self._task_db.list_for_user(user.id)
        insights = messages.build_insights(tasks, self._clock())
        return _HandlerOutcome([TextMessage(messages.format_insights(insights))])

    async def _handle_create(self, user: User, command: Command) -> _HandlerOutcome:
        task = self.create_user_task(user, command.payload)
        return _HandlerOutcome([TextMessage(messages.format_task_created(task))], task=task)

    async def _handle_update(self, user: User, command: Command) -> _HandlerOutcome:
        task = self.update_user_task(user, command.payload)
        return _HandlerOutcome([TextMessage(messages.format_task_updated(task))], task=task)

    async def _handle_freeform(self, user: User, command: Command) -> _HandlerOutcome:
        reply = await freeform_reply(user, command.body, self.upcoming_tasks(user))
        return _HandlerOutcome([TextMessage(reply)])

    async def _interpret(self, user: User, command: Command) -> Command:
        """Let the LLM turn a conversational task request into create/update."""
        parsed = await parse_task_request(command.body, self._clock(), self.upcoming_tasks(user))
        return parsed or command

    # ------------------------------------------------------------------
    # Subscription gate
    # ------------------------------------------------------------------

    def _needs_subscription(self, user: User) -> bool:
        return (
            settings.SUBSCRIPTION_REQUIRED
            and self._billing is not None
            and not user.subscription_active
        )

    async def _payment_request(self, user: User) -> OutboundMessage:
        try:
            url = await self._billing.create_checkout_url(user)
        except BillingError as exc:
            logger.error("Checkout link unavailable for user %d: %s", user.id, exc)
            return TextMessage(messages.PAYMENT_UNAVAILABLE_TEXT.format(name=user.display_name))

        if not settings.TWILIO_PAYMENT_TEMPLATE_SID:
            return TextMessage(
                messages.PAYMENT_FALLBACK_TEXT.format(name=user.display_name, url=url)
            )
        return TemplateMessage(
            template_id=settings.TWILIO_PAYMENT_TEMPLATE_SID,
            variables={"1": user.display_name, "2": url.removeprefix(_CHECKOUT_URL_PREFIX)},
        )

    # ------------------------------------------------------------------
    # Delivery
    # ------------------------------------------------------------------

    async def _deliver_all(
        self, user: User, outbound: list[OutboundMessage],
    ) -> list[OutboundMessage]:
        """Send each message; return the ones the channel refused."""
        failed: list[OutboundMessage] = []
        for message in outbound:
            try:
                await deliver(self._notifier, user.phone, message)
            except DeliveryError as exc:
                logger.error("Reply to user %d not delivered: %s", user.id, exc)
                failed.append(message)
        return failed
