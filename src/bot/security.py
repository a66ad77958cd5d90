"""Webhook authenticity checks for Twilio and Stripe callbacks."""

from __future__ import annotations

import base64
import hashlib
import hmac
import time
from typing import Mapping

STRIPE_TOLERANCE_SECONDS = 300


class AuthenticationError(Exception):
    """Raised when a webhook signature is missing or doesn't match."""


def compute_twilio_signature(auth_token: str, url: str, params: Mapping[str, object]) -> str:
    """Twilio's X-Twilio-Signature: base64(HMAC-SHA1(url + sorted key/value pairs))."""
    data = url + "".join(f"{key}{params[key]}" for key in sorted(params))
    digest = hmac.new(auth_token.encode("utf-8"), data.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


def verify_twilio_signature(
    auth_token: str, url: str, params: Mapping[str, object], signature: str,
) -> None:
    if not signature:
        raise AuthenticationError("missing X-Twilio-Signature header")
    expected = compute_twilio_signature(auth_token, url, params)
    if not hmac.compare_digest(expected, signature):
        raise AuthenticationError("X-Twilio-Signature mismatch")


def compute_stripe_signature(secret: str, timestamp: int, payload: bytes) -> str:
    signed = f"{timestamp}.".encode("utf-8") + payload
    return hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()


def verify_stripe_signature(
    secret: str,
    payload: bytes,
    header: str,
    now: float | None = None,
    tolerance: int = STRIPE_TOLERANCE_SECONDS,
) -> None:
    """Check a Stripe-Signature header ("t=...,v1=...")."""
    if not header:
        raise AuthenticationError("missing Stripe-Signature header")

    timestamp: int | None = None
    candidates: list[str] = []
    for part in header.split(","):
        key, _, value = part.strip().partition("=")
        if key == "t":
            try:
                timestamp = int(value)
            except ValueError as exc:
                raise AuthenticationError("malformed Stripe-Signature timestamp") from exc
        elif key == "v1":
            candidates.append(value)

    if timestamp is None or not candidates:
        raise AuthenticationError("malformed Stripe-Signature header")

    now = time.time() if now is None else now
    if abs(now - timestamp) > tolerance:
        raise AuthenticationError("Stripe-Signature timestamp outside tolerance")

    expected = compute_stripe_signature(secret, timestamp, payload)
    if not any(hmac.compare_digest(expected, candidate) for candidate in candidates):
        raise AuthenticationError("Stripe-Signature mismatch")
