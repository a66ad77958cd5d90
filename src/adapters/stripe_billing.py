"""Stripe billing adapter — implements BillingPort.

Creates a subscription Checkout Session through the Stripe REST API. After
payment (or cancellation) Stripe sends the user back to the WhatsApp chat.
"""

from __future__ import annotations

import logging

import httpx

from src.data.models import User
from src.ports.billing_port import BillingError

logger = logging.getLogger(__name__)

_CHECKOUT_SESSIONS_URL = "https://api.stripe.com/v1/checkout/sessions"
_TIMEOUT_SECONDS = 10


class StripeBilling:
    """Stripe Checkout implementation of BillingPort."""

    def __init__(
        self,
        secret_key: str | None = None,
        price_id: str | None = None,
        whatsapp_from: str | None = None,
    ) -> None:
        if secret_key is None or price_id is None or whatsapp_from is None:
            from src.config import settings
            secret_key = secret_key or settings.STRIPE_SECRET_KEY
            price_id = price_id or settings.STRIPE_PRICE_ID
            whatsapp_from = whatsapp_from or settings.TWILIO_WHATSAPP_FROM

        self._secret_key = secret_key
        self._price_id = price_id
        digits = "".join(ch for ch in whatsapp_from if ch.isdigit())
        self._return_url = f"https://wa.me/{digits}"

    async def create_checkout_url(self, user: User) -> str:
        if not self._secret_key or not self._price_id:
            raise BillingError("Stripe is not configured")

        data = {
            "mode": "subscription",
            "line_items[0][price]": self._price_id,
            "line_items[0][quantity]": "1",
            "phone_number_collection[enabled]": "true",
            "client_reference_id": str(user.id),
            "subscription_data[metadata][user_id]": str(user.id),
            "success_url": self._return_url,
            "cancel_url": self._return_url,
        }
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.post(
                    _CHECKOUT_SESSIONS_URL,
                    data=data,
                    headers={"Authorization": f"Bearer {self._secret_key}"},
                )
                resp.raise_for_status()
                session = resp.json()
        except httpx.HTTPError as exc:
            logger.error("Stripe checkout creation failed for user %d: %s", user.id, exc)
            raise BillingError(str(exc)) from exc
        except ValueError as exc:
            logger.error("Stripe returned a non-JSON checkout response for user %d", user.id)
            raise BillingError("Stripe response is not JSON") from exc

        url = session.get("url") if isinstance(session, dict) else None
        if not url:
            raise BillingError("Stripe response without a checkout url")
        logger.info("Checkout session %s created for user %d", session.get("id", "?"), user.id)
        return url
