"""
Agenda Assistant — WhatsApp webhook server.

WhatsApp (through Twilio) is the only user interface. Every inbound message
hits POST /api/new_message, is authenticated with the Twilio signature, and is
handed to the CommandRouter in a background task so Twilio gets its 200
quickly. Stripe reports finished subscriptions on POST
/api/subscription_complete. The same process runs the per-minute reminder
sweep.

Requests with a bad signature are rejected with 403 and have no side effects.
"""

from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from fastapi import APIRouter, BackgroundTasks, FastAPI, Request, Response

from src.bot.security import AuthenticationError, verify_stripe_signature, verify_twilio_signature
from src.config import settings
from src.core.router import CommandRouter, InboundMessage, normalize_identity
from src.core.scheduler import send_due_reminders
from src.ports.notification_port import DeliveryError, TemplateMessage, TextMessage, deliver

if TYPE_CHECKING:
    from src.data.db import TaskDB, UserDB
    from src.ports.billing_port import BillingPort
    from src.ports.notification_port import NotificationPort

logger = logging.getLogger(__name__)

SUBSCRIPTION_COMPLETE_TEXT = "Olá, {name}! Sua assinatura está ativa. Envie !menu para começar."

api = APIRouter()


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


async def _read_params(request: Request) -> dict[str, str]:
    """Twilio posts form data; JSON bodies are accepted too."""
    if request.headers.get("content-type", "").startswith("application/json"):
        data = await request.json()
        if not isinstance(data, dict):
            return {}
    else:
        data = dict(await request.form())
    return {str(k): "" if v is None else str(v) for k, v in data.items()}


def _signed_url(request: Request) -> str:
    return settings.TWILIO_WEBHOOK_URL or str(request.url)


def _to_inbound(params: dict[str, str]) -> InboundMessage | None:
    sender = params.get("From") or params.get("WaId")
    if not sender:
        return None
    try:
        identity = normalize_identity(sender)
    except ValueError:
        return None
    display_name = params.get("ProfileName") or params.get("WaId") or identity
    return InboundMessage(
        identity=identity,
        display_name=display_name,
        body=params.get("Body", ""),
        recipient=params.get("To", ""),
    )


def _addressed_to_us(inbound: InboundMessage) -> bool:
    """True unless the "To" number is present and differs from our sender number."""
    if not inbound.recipient:
        return True
    try:
        return normalize_identity(inbound.recipient) == normalize_identity(settings.TWILIO_WHATSAPP_FROM)
    except ValueError:
        return False


async def _process_inbound(router: CommandRouter, inbound: InboundMessage) -> None:
    """Run the router for one message; failures are logged, never raised to Twilio."""
    try:
        result = await router.handle_inbound(inbound)
        if result.failed:
            logger.warning(
                "%d of %d replies to %s were not delivered",
                len(result.failed), len(result.messages), inbound.identity,
            )
    except Exception:
        logger.exception("Error processing message from %s", inbound.identity)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@api.post("/api/new_message")
async def new_message(request: Request, background_tasks: BackgroundTasks):
    """Handle an inbound WhatsApp message forwarded by Twilio."""
    try:
        params = await _read_params(request)
    except ValueError:
        logger.warning("Webhook call with an unreadable body, rejecting")
        return Response(status_code=400, content="Invalid payload")

    if settings.TWILIO_VALIDATE_SIGNATURE:
        try:
            verify_twilio_signature(
                settings.TWILIO_AUTH_TOKEN,
                _signed_url(request),
                params,
                request.headers.get("X-Twilio-Signature", ""),
            )
        except AuthenticationError as exc:
            logger.warning("Rejected webhook call: %s", exc)
            return Response(status_code=403, content="Invalid signature")

    inbound = _to_inbound(params)
    if inbound is None:
        logger.info("Webhook call without a sender, ignoring")
        return {"status": "ignored"}

    if not _addressed_to_us(inbound):
        logger.warning(
            "Message from %s was sent to %s, not to %s; ignoring",
            inbound.identity, inbound.recipient, settings.TWILIO_WHATSAPP_FROM,
        )
        return {"status": "ignored"}

    logger.info("Message from %s: %s", inbound.identity, inbound.body[:100])
    background_tasks.add_task(_process_inbound, request.app.state.router, inbound)
    return {"status": "ok"}


@api.post("/api/subscription_complete")
async def subscription_complete(request: Request):
    """Handle Stripe subscription events."""
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET not configured — rejecting request")
        return Response(status_code=503, content="Billing webhook not configured")

    body = await request.body()
    try:
        verify_stripe_signature(
            settings.STRIPE_WEBHOOK_SECRET, body, request.headers.get("Stripe-Signature", ""),
        )
    except AuthenticationError as exc:
        logger.warning("Rejected billing webhook: %s", exc)
        return Response(status_code=403, content="Invalid signature")

    try:
        event = json.loads(body)
    except json.JSONDecodeError:
        return Response(status_code=400, content="Invalid payload")

    event_type = event.get("type", "")
    obj = event.get("data", {}).get("object", {}) or {}
    state = request.app.state

    if event_type == "checkout.session.completed":
        return await _activate_subscription(state.user_db, state.notifier, obj)
    if event_type == "customer.subscription.deleted":
        return _deactivate_subscription(state.user_db, obj)

    logger.debug("Ignoring billing event %s", event_type)
    return {"status": "ignored"}


async def _activate_subscription(user_db: UserDB, notifier: NotificationPort, obj: dict):
    user = None
    reference = obj.get("client_reference_id")
    if reference and str(reference).isdigit():
        user = user_db.get_user(int(reference))
    if user is None:
        phone = (obj.get("customer_details") or {}).get("phone") or ""
        if any(ch.isdigit() for ch in phone):
            user = user_db.get_user_by_phone(normalize_identity(phone))
    if user is None:
        logger.warning("Checkout completed for an unknown user (ref=%s)", reference)
        return {"status": "ignored"}

    user_db.set_subscription_active(user.id, True)

    if settings.TWILIO_SUBSCRIPTION_COMPLETE_TEMPLATE_SID:
        message = TemplateMessage(
            template_id=settings.TWILIO_SUBSCRIPTION_COMPLETE_TEMPLATE_SID,
            variables={"1": user.display_name},
        )
    else:
        message = TextMessage(SUBSCRIPTION_COMPLETE_TEXT.format(name=user.display_name))
    try:
        await deliver(notifier, user.phone, message)
    except DeliveryError as exc:
        logger.error("Subscription confirmation to user %d not delivered: %s", user.id, exc)

    return {"status": "ok"}


def _deactivate_subscription(user_db: UserDB, obj: dict):
    user_id = str((obj.get("metadata") or {}).get("user_id", ""))
    if not user_id.isdigit() or not user_db.set_subscription_active(int(user_id), False):
        logger.warning("Subscription deleted for an unknown user (user_id=%s)", user_id)
        return {"status": "ignored"}
    return {"status": "ok"}


@api.get("/health")
async def health():
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# App builder
# ---------------------------------------------------------------------------


def _setup_reminder_job(scheduler: AsyncIOScheduler, app: FastAPI) -> None:
    """Register the reminder sweep at second 0 of every minute.

    A tick still running when the next one is due makes the next one skip.
    """

    async def _reminder_job() -> None:
        await send_due_reminders(app.state.notifier, app.state.task_db, app.state.user_db)

    scheduler.add_job(
        _reminder_job,
        trigger="cron",
        second=0,
        id="send_reminders",
        max_instances=1,
        coalesce=True,
        misfire_grace_time=30,
    )
    logger.info("Reminder sweep scheduled every minute (%s)", settings.TIMEZONE)


@asynccontextmanager
async def _lifespan(app: FastAPI):
    scheduler: AsyncIOScheduler | None = None
    if app.state.run_scheduler:
        scheduler = AsyncIOScheduler(timezone=settings.TIMEZONE)
        _setup_reminder_job(scheduler, app)
        scheduler.start()
    yield
    if scheduler is not None:
        scheduler.shutdown(wait=False)


def build_app(
    notifier: NotificationPort | None = None,
    task_db: TaskDB | None = None,
    user_db: UserDB | None = None,
    billing: BillingPort | None = None,
    run_scheduler: bool | None = None,
) -> FastAPI:
    """Build the FastAPI application with all endpoints.

    Args:
        notifier: Notification port implementation. Defaults to TwilioNotifier.
        task_db / user_db: Stores. Default to SQLite at DATABASE_PATH.
        billing: Billing port. Defaults to StripeBilling when STRIPE_SECRET_KEY is set.
        run_scheduler: Run the minute reminder job in-process. Defaults to RUN_SCHEDULER.
    """
    if notifier is None:
        from src.adapters.twilio_notifier import TwilioNotifier
        notifier = TwilioNotifier()

    if task_db is None or user_db is None:
        from src.data.db import TaskDB, UserDB
        task_db = task_db or TaskDB()
        user_db = user_db or UserDB()

    if billing is None and settings.STRIPE_SECRET_KEY:
        from src.adapters.stripe_billing import StripeBilling
        billing = StripeBilling()

    app = FastAPI(title="Agenda Assistant", lifespan=_lifespan)
    app.state.notifier = notifier
    app.state.task_db = task_db
    app.state.user_db = user_db
    app.state.router = CommandRouter(notifier, task_db, user_db, billing=billing)
    app.state.run_scheduler = settings.RUN_SCHEDULER if run_scheduler is None else run_scheduler
    app.include_router(api)

    logger.info("Webhook application built with %d routes", len(app.routes))
    return app


def main() -> None:
    """Entry point: build the app and serve it."""
    import uvicorn

    logger.info("Starting Agenda Assistant webhook on %s:%d...", settings.HOST, settings.PORT)
    uvicorn.run(build_app(), host=settings.HOST, port=settings.PORT, log_level="info")


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    main()
