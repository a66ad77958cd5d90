"""
Agenda Assistant — Command classification.

Turns one inbound message body into a Command. Reserved prefixes are matched
first and case-sensitively; then a JSON object carrying a known "action" is a
structured task payload; everything else is freeform.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class Intent(Enum):
    SHOW_MENU = "show_menu"
    LIST_UPCOMING_TASKS = "list_upcoming_tasks"
    GENERATE_INSIGHTS = "generate_insights"
    CREATE_TASK = "create_task"
    UPDATE_TASK = "update_task"
    FREEFORM = "freeform"


@dataclass
class Command:
    intent: Intent
    body: str
    payload: dict = field(default_factory=dict)


# Order matters: first match wins
_PREFIXES: tuple[tuple[str, Intent], ...] = (
    ("!menu", Intent.SHOW_MENU),
    ("!agenda", Intent.LIST_UPCOMING_TASKS),
    ("!insights", Intent.GENERATE_INSIGHTS),
)

_ACTIONS = {
    "create_task": Intent.CREATE_TASK,
    "update_task": Intent.UPDATE_TASK,
}


def _parse_structured(body: str) -> dict | None:
    """Return the JSON object in body if it is one, else None."""
    if not body.startswith("{"):
        return None
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.debug("Body looks like JSON but doesn't parse: %s", body[:80])
        return None
    if not isinstance(data, dict):
        return None
    return data


def command_from_data(data: dict, body: str) -> Command | None:
    """Map a decoded {"action": ..., ...} object to a task Command.

    Returns None when the action isn't a known task action.
    """
    action = data.get("action")
    intent = _ACTIONS.get(action) if isinstance(action, str) else None
    if intent is None:
        return None
    payload = {k: v for k, v in data.items() if k != "action"}
    return Command(intent=intent, body=body, payload=payload)


def classify(body: str | None) -> Command:
    """Classify an inbound message body into a Command."""
    text = (body or "").strip()

    for prefix, intent in _PREFIXES:
        if text.startswith(prefix):
            return Command(intent=intent, body=text)

    data = _parse_structured(text)
    if data is not None:
        command = command_from_data(data, text)
        if command is not None:
            return command
        logger.info("Ignoring JSON body with unknown action: %r", data.get("action"))

    return Command(intent=Intent.FREEFORM, body=text)
