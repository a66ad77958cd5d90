"""Billing port — abstract interface to the subscription provider.

The core only asks for a checkout link; subscription state is written back by
the provider's webhook.
"""

from __future__ import annotations

from typing import Protocol

from src.data.models import User


class BillingError(Exception):
    """Raised when the billing provider can't create a checkout session."""


class BillingPort(Protocol):
    """Abstract billing interface used by the command router."""

    async def create_checkout_url(self, user: User) -> str: ...
