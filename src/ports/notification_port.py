"""Notification port — abstract interface for sending messages to users.

Core modules depend on this protocol, never on a specific messaging provider.
An outbound message is either free text or a pre-approved template.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, Union


class DeliveryError(Exception):
    """Raised when the message channel fails to accept an outbound message."""


@dataclass(frozen=True)
class TextMessage:
    content: str


@dataclass(frozen=True)
class TemplateMessage:
    template_id: str
    variables: dict[str, str] = field(default_factory=dict)


OutboundMessage = Union[TextMessage, TemplateMessage]


class NotificationPort(Protocol):
    """Abstract notification interface used by core modules."""

    async def send_text(self, recipient: str, content: str) -> None: ...

    async def send_template(
        self, recipient: str, template_id: str, variables: dict[str, str]
    ) -> None: ...


async def deliver(
    notifier: NotificationPort, recipient: str, message: OutboundMessage,
) -> None:
    """Send one OutboundMessage through the matching port operation."""
    if isinstance(message, TemplateMessage):
        await notifier.send_template(recipient, message.template_id, message.variables)
    else:
        await notifier.send_text(recipient, message.content)
