"""Tests for src.core.commands — inbound body classification."""

import json

import pytest

from src.core.commands import Intent, classify, command_from_data


class TestReservedPrefixes:
    @pytest.mark.parametrize("body, intent", [
        ("!menu", Intent.SHOW_MENU),
        ("!agenda", Intent.LIST_UPCOMING_TASKS),
        ("!insights", Intent.GENERATE_INSIGHTS),
        ("  !menu  ", Intent.SHOW_MENU),
        ("!agenda da semana", Intent.LIST_UPCOMING_TASKS),
    ])
    def test_prefix_routes_to_fixed_handler(self, body, intent):
        assert classify(body).intent == intent

    @pytest.mark.parametrize("body", ["!MENU", "!Agenda", "menu", "ver !menu"])
    def test_prefix_is_case_sensitive_and_anchored(self, body):
        assert classify(body).intent == Intent.FREEFORM


class TestStructuredPayloads:
    def test_create_task_payload(self):
        body = json.dumps({
            "action": "create_task",
            "description": "Dentista",
            "due_at": "2026-03-21 15:00",
            "reminder_at": "2026-03-21 14:00",
        })
        command = classify(body)
        assert command.intent == Intent.CREATE_TASK
        assert command.payload["description"] == "Dentista"
        assert "action" not in command.payload

    def test_update_task_payload(self):
        command = classify('{"action": "update_task", "task_id": 3, "meta": "x"}')
        assert command.intent == Intent.UPDATE_TASK
        assert command.payload == {"task_id": 3, "meta": "x"}

    @pytest.mark.parametrize("body", [
        '{"action": "delete_task", "task_id": 3}',
        '{"action": ["create_task"]}',
        '{"description": "no action"}',
        '{"action": "create_task"',
        '[1, 2, 3]',
    ])
    def test_unknown_or_malformed_json_is_freeform(self, body):
        assert classify(body).intent == Intent.FREEFORM


class TestFreeform:
    @pytest.mark.parametrize("body", ["Hello", "", None, "   "])
    def test_everything_else_is_freeform(self, body):
        command = classify(body)
        assert command.intent == Intent.FREEFORM
        assert command.payload == {}


class TestCommandFromData:
    def test_known_action(self):
        command = command_from_data({"action": "update_task", "task_id": 3}, "Muda a #3")
        assert command.intent == Intent.UPDATE_TASK
        assert command.body == "Muda a #3"
        assert command.payload == {"task_id": 3}

    @pytest.mark.parametrize("data", [{"action": "none"}, {"action": 1}, {}])
    def test_unknown_action(self, data):
        assert command_from_data(data, "x") is None
