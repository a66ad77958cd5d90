"""
Agenda Assistant — Freeform responder.

Anything that isn't a command gets a short conversational reply from the LLM,
with the user's next tasks as context. This path never touches tasks.

Graceful degradation: no API key, an API error or an empty answer all fall
back to the fixed "didn't understand" reply.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.core import llm
from src.core.messages import FALLBACK_REPLY
from src.core.time_utils import format_local

if TYPE_CHECKING:
    from src.data.models import Task, User

logger = logging.getLogger(__name__)

_MAX_CONTEXT_TASKS = 5

_SYSTEM_PROMPT = """\
You are a friendly WhatsApp agenda assistant talking to {name}.
Reply in Brazilian Portuguese, in at most three short sentences.
You cannot create, change or delete tasks yourself. If the user seems to want
a reminder, ask them to send what and when in a single message, for example
"Me lembra de pagar a conta sexta às 9h". For anything else about commands,
suggest sending !menu.

The user's next tasks:
{tasks}
"""


def _describe_tasks(tasks: list[Task]) -> str:
    if not tasks:
        return "(none)"
    return "\n".join(
        f"- {format_local(t.due_at)}: {t.description}" for t in tasks[:_MAX_CONTEXT_TASKS]
    )


async def freeform_reply(user: User, body: str, upcoming: list[Task]) -> str:
    """Return a best-effort conversational reply to a non-command message."""
    if not body or not llm.is_configured():
        return FALLBACK_REPLY

    try:
        reply = await llm.complete(
            system=_SYSTEM_PROMPT.format(name=user.display_name, tasks=_describe_tasks(upcoming)),
            user_message=body,
            max_tokens=300,
        )
    except Exception as exc:
        logger.warning("Freeform reply failed for user %d: %s", user.id, exc)
        return FALLBACK_REPLY

    reply = (reply or "").strip()
    return reply or FALLBACK_REPLY
