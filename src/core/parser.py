"""
Agenda Assistant — Task request parser.

Turns a conversational message ("Me lembra de ligar pro dentista amanhã às
15h") into the same create_task / update_task Command a structured JSON body
produces. The LLM only extracts fields; validation and persistence stay in
task_service, so a bad extraction ends up as a normal ValidationError reply.

Returns None whenever the message isn't a task request or the LLM can't be
used; the router then treats the message as freeform.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import TYPE_CHECKING

from src.core import llm
from src.core.commands import Command, Intent, command_from_data
from src.core.time_utils import as_utc, local_tz

if TYPE_CHECKING:
    from src.data.models import Task

logger = logging.getLogger(__name__)

_MAX_CONTEXT_TASKS = 10

_SYSTEM_PROMPT = """\
You are a task extraction engine for a WhatsApp agenda assistant.
The user writes in Brazilian Portuguese. Decide whether the message asks to
CREATE a reminder task or to CHANGE one of the user's existing tasks.

The current local date and time is {now} ({weekday}).
Interpret relative dates ("amanhã", "sexta que vem", "daqui a 2 horas")
relative to it. All timestamps are local time, format "YYYY-MM-DD HH:MM".

The user's upcoming tasks (id, due time, description):
{tasks}

Return ONE JSON object and nothing else.

Create a task:
{{"action": "create_task", "description": "string", "due_at": "YYYY-MM-DD HH:MM", "reminder_at": "YYYY-MM-DD HH:MM", "meta": "string or null"}}
- "description" = short text of what to remember.
- "reminder_at" = when to remind; same as "due_at" unless the user asks for
  an earlier reminder ("me avisa 1 hora antes").
- "meta" = a one-word category (e.g. "Saúde", "Trabalho") or null.

Change a task:
{{"action": "update_task", "task_id": integer, ...only the fields that change}}
- "task_id" must be one of the ids listed above.

Anything else (greetings, questions, requests without a date or time):
{{"action": "none"}}

No markdown, no explanation, no extra text.
"""


def _clean_llm_response(raw_text: str) -> str:
    """Remove markdown code fences around the JSON."""
    cleaned = raw_text.strip()
    for fence in ("```json", "```"):
        if cleaned.startswith(fence):
            cleaned = cleaned.removeprefix(fence)
            break
    if cleaned.endswith("```"):
        cleaned = cleaned.removesuffix("```")
    return cleaned.strip()


def _describe_tasks(tasks: list[Task]) -> str:
    if not tasks:
        return "(none)"
    tz = local_tz()
    return "\n".join(
        f"- #{t.id} {as_utc(t.due_at).astimezone(tz):%Y-%m-%d %H:%M}: {t.description}"
        for t in tasks[:_MAX_CONTEXT_TASKS]
    )


async def parse_task_request(
    body: str, now: datetime, upcoming: list[Task],
) -> Command | None:
    """Ask the LLM whether body is a create/update request; return its Command."""
    if not body or not llm.is_configured():
        return None

    local_now = as_utc(now).astimezone(local_tz())
    system = _SYSTEM_PROMPT.format(
        now=f"{local_now:%Y-%m-%d %H:%M}",
        weekday=f"{local_now:%A}",
        tasks=_describe_tasks(upcoming),
    )

    try:
        raw_text = await llm.complete(system=system, user_message=body, max_tokens=300)
    except Exception as exc:
        logger.error("Task extraction failed: %s", exc)
        return None

    raw_text = _clean_llm_response(raw_text or "")
    logger.debug("LLM raw response: %s", raw_text)
    if raw_text in ("", "null", "{}"):
        return None

    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as exc:
        logger.error("Failed to parse LLM response as JSON: %s — raw: '%s'", exc, raw_text[:200])
        return None
    if not isinstance(data, dict):
        logger.warning("LLM returned a non-object: %s", raw_text[:200])
        return None

    command = command_from_data(data, body)
    if command is None:
        logger.info("No task request in message: %s", body[:80])
        return None

    payload = command.payload
    if command.intent is Intent.CREATE_TASK and payload.get("due_at") and not payload.get("reminder_at"):
        payload["reminder_at"] = payload["due_at"]

    logger.info("Parsed %s from conversation: %s", command.intent.value, payload)
    return command
