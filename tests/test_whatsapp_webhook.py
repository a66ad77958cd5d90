"""Tests for src.bot.whatsapp_webhook — FastAPI endpoints.

Uses FastAPI's TestClient; background tasks run before the call returns,
so the router's side effects are visible right after each request.
"""

import json
import time

import pytest
from unittest.mock import patch

from fastapi.testclient import TestClient

from src.bot.security import compute_stripe_signature, compute_twilio_signature
from src.bot.whatsapp_webhook import SUBSCRIPTION_COMPLETE_TEXT, build_app
from src.config import settings
from src.core.messages import MENU_TEXT
from src.ports.notification_port import DeliveryError

WEBHOOK_URL = "https://agenda.example.com/api/new_message"
STRIPE_SECRET = "whsec_test"
PHONE = "+5579988064629"


@pytest.fixture
def client(notifier, task_db, user_db):
    app = build_app(notifier=notifier, task_db=task_db, user_db=user_db, run_scheduler=False)
    with patch.object(settings, "TWILIO_WEBHOOK_URL", WEBHOOK_URL), \
         patch.object(settings, "STRIPE_WEBHOOK_SECRET", STRIPE_SECRET):
        yield TestClient(app)


def _twilio_params(body="!menu", sender=f"whatsapp:{PHONE}"):
    return {
        "From": sender,
        "To": "whatsapp:+14155238886",
        "Body": body,
        "ProfileName": "Ana",
        "WaId": sender.removeprefix("whatsapp:+"),
    }


def _post_message(client, params, signature=None):
    if signature is None:
        signature = compute_twilio_signature(settings.TWILIO_AUTH_TOKEN, WEBHOOK_URL, params)
    return client.post(
        "/api/new_message", data=params, headers={"X-Twilio-Signature": signature},
    )


def _post_stripe(client, event, secret=STRIPE_SECRET):
    body = json.dumps(event).encode("utf-8")
    timestamp = int(time.time())
    header = f"t={timestamp},v1={compute_stripe_signature(secret, timestamp, body)}"
    return client.post(
        "/api/subscription_complete",
        content=body,
        headers={"Stripe-Signature": header, "Content-Type": "application/json"},
    )


class TestNewMessage:
    def test_menu_from_unknown_sender(self, client, user_db, notifier):
        resp = _post_message(client, _twilio_params("!menu"))

        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
        user = user_db.get_user_by_phone(PHONE)
        assert user is not None
        assert user.display_name == "Ana"
        notifier.send_text.assert_called_once_with(PHONE, MENU_TEXT)

    def test_bad_signature_rejected_without_side_effects(self, client, user_db, notifier):
        resp = _post_message(client, _twilio_params("!menu"), signature="forged")

        assert resp.status_code == 403
        assert user_db.get_user_by_phone(PHONE) is None
        notifier.send_text.assert_not_called()

    def test_missing_signature_rejected(self, client, user_db):
        resp = client.post("/api/new_message", data=_twilio_params("!menu"))
        assert resp.status_code == 403
        assert user_db.list_users() == []

    def test_signature_check_can_be_disabled(self, client, user_db):
        with patch.object(settings, "TWILIO_VALIDATE_SIGNATURE", False):
            resp = client.post("/api/new_message", data=_twilio_params("!menu"))
        assert resp.status_code == 200
        assert user_db.get_user_by_phone(PHONE) is not None

    def test_no_sender_is_ignored(self, client, user_db):
        params = {"Body": "!menu"}
        resp = _post_message(client, params)
        assert resp.json() == {"status": "ignored"}
        assert user_db.list_users() == []

    def test_malformed_json_body_rejected(self, client, user_db):
        resp = client.post(
            "/api/new_message",
            content=b'{"From": "whatsapp:+5579988064629",',
            headers={"Content-Type": "application/json", "X-Twilio-Signature": "x"},
        )
        assert resp.status_code == 400
        assert user_db.list_users() == []

    def test_json_body_accepted(self, client, user_db):
        params = _twilio_params("!menu")
        signature = compute_twilio_signature(settings.TWILIO_AUTH_TOKEN, WEBHOOK_URL, params)
        resp = client.post(
            "/api/new_message", json=params, headers={"X-Twilio-Signature": signature},
        )
        assert resp.json() == {"status": "ok"}
        assert user_db.get_user_by_phone(PHONE) is not None

    def test_message_to_another_number_is_ignored(self, client, user_db, notifier):
        params = {**_twilio_params("!menu"), "To": "whatsapp:+15550001111"}

        resp = _post_message(client, params)

        assert resp.json() == {"status": "ignored"}
        assert user_db.list_users() == []
        notifier.send_text.assert_not_called()

    def test_delivery_failure_still_returns_ok(self, client, notifier, user_db):
        notifier.send_text.side_effect = DeliveryError("channel down")

        resp = _post_message(client, _twilio_params("!agenda"))

        assert resp.status_code == 200
        assert user_db.get_user_by_phone(PHONE) is not None


class TestSubscriptionComplete:
    def test_checkout_completed_activates_user(self, client, user_db, notifier):
        user = user_db.add_user(PHONE, "Ana")

        resp = _post_stripe(client, {
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": str(user.id)}},
        })

        assert resp.json() == {"status": "ok"}
        assert user_db.get_user(user.id).subscription_active is True
        notifier.send_text.assert_called_once_with(
            PHONE, SUBSCRIPTION_COMPLETE_TEXT.format(name="Ana"),
        )

    def test_checkout_completed_matches_by_phone(self, client, user_db):
        user = user_db.add_user(PHONE, "Ana")

        _post_stripe(client, {
            "type": "checkout.session.completed",
            "data": {"object": {"customer_details": {"phone": "+55 79 98806-4629"}}},
        })

        assert user_db.get_user(user.id).subscription_active is True

    def test_confirmation_uses_template_when_configured(self, client, user_db, notifier):
        user = user_db.add_user(PHONE, "Ana")

        with patch.object(settings, "TWILIO_SUBSCRIPTION_COMPLETE_TEMPLATE_SID", "HXdone"):
            _post_stripe(client, {
                "type": "checkout.session.completed",
                "data": {"object": {"client_reference_id": str(user.id)}},
            })

        notifier.send_template.assert_called_once_with(PHONE, "HXdone", {"1": "Ana"})

    def test_subscription_deleted_deactivates_user(self, client, user_db):
        user = user_db.add_user(PHONE, "Ana")
        user_db.set_subscription_active(user.id, True)

        resp = _post_stripe(client, {
            "type": "customer.subscription.deleted",
            "data": {"object": {"metadata": {"user_id": str(user.id)}}},
        })

        assert resp.json() == {"status": "ok"}
        assert user_db.get_user(user.id).subscription_active is False

    def test_unknown_user_is_ignored(self, client):
        resp = _post_stripe(client, {
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": "999"}},
        })
        assert resp.json() == {"status": "ignored"}

    def test_other_events_ignored(self, client):
        resp = _post_stripe(client, {"type": "invoice.paid", "data": {"object": {}}})
        assert resp.json() == {"status": "ignored"}

    def test_bad_signature_rejected(self, client, user_db):
        user = user_db.add_user(PHONE, "Ana")

        resp = _post_stripe(client, {
            "type": "checkout.session.completed",
            "data": {"object": {"client_reference_id": str(user.id)}},
        }, secret="whsec_other")

        assert resp.status_code == 403
        assert user_db.get_user(user.id).subscription_active is False

    def test_not_configured_returns_503(self, client):
        with patch.object(settings, "STRIPE_WEBHOOK_SECRET", ""):
            resp = _post_stripe(client, {"type": "invoice.paid"})
        assert resp.status_code == 503


class TestHealth:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}
