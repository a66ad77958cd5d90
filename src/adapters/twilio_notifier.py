"""Twilio WhatsApp notification adapter — implements NotificationPort.

Talks to the Twilio Messages REST API directly over httpx. Free text goes out
as `Body`; templates go out as `ContentSid` + `ContentVariables`, which
WhatsApp requires to open a conversation after 24h of silence.
"""

from __future__ import annotations

import json
import logging

import httpx

from src.ports.notification_port import DeliveryError

logger = logging.getLogger(__name__)

_MESSAGES_URL = "https://api.twilio.com/2010-04-01/Accounts/{account_sid}/Messages.json"
_TIMEOUT_SECONDS = 10


def whatsapp_address(identity: str) -> str:
    """'+5579988064629' -> 'whatsapp:+5579988064629'."""
    if identity.startswith("whatsapp:"):
        return identity
    return f"whatsapp:{identity}"


class TwilioNotifier:
    """Twilio implementation of NotificationPort."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
    ) -> None:
        if account_sid is None or auth_token is None or from_number is None:
            from src.config import settings
            account_sid = account_sid or settings.TWILIO_ACCOUNT_SID
            auth_token = auth_token or settings.TWILIO_AUTH_TOKEN
            from_number = from_number or settings.TWILIO_WHATSAPP_FROM

        self._url = _MESSAGES_URL.format(account_sid=account_sid)
        self._auth = (account_sid, auth_token)
        self._from = whatsapp_address(from_number)

    async def send_text(self, recipient: str, content: str) -> None:
        await self._post(recipient, {"Body": content})

    async def send_template(
        self, recipient: str, template_id: str, variables: dict[str, str]
    ) -> None:
        if not template_id:
            raise DeliveryError("Template message without a configured template id")
        await self._post(
            recipient,
            {"ContentSid": template_id, "ContentVariables": json.dumps(variables)},
        )

    async def _post(self, recipient: str, fields: dict[str, str]) -> None:
        data = {"From": self._from, "To": whatsapp_address(recipient), **fields}
        try:
            async with httpx.AsyncClient(timeout=_TIMEOUT_SECONDS) as client:
                resp = await client.post(self._url, data=data, auth=self._auth)
                resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Twilio rejected message to %s: %s %s",
                recipient, exc.response.status_code, exc.response.text[:200],
            )
            raise DeliveryError(f"Twilio returned {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            logger.error("Twilio request failed for %s: %s", recipient, exc)
            raise DeliveryError(str(exc)) from exc

        # A 2xx means Twilio queued the message; the body only carries its sid
        try:
            payload = resp.json()
        except ValueError:
            logger.warning("Twilio accepted message to %s with a non-JSON body", recipient)
            payload = None
        sid = payload.get("sid", "?") if isinstance(payload, dict) else "?"
        logger.info("Message %s queued for %s", sid, recipient)
