"""
Agenda Assistant — Centralized configuration.

Loads all settings from .env and validates required keys.
This module is the foundation for every other module in the project.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, field_validator

# Load .env from project root (two levels up from src/config.py)
_ENV_PATH = Path(__file__).resolve().parent.parent / ".env"
load_dotenv(_ENV_PATH)


class Settings(BaseModel):
    """Application settings loaded from environment variables."""

    # Twilio WhatsApp channel
    TWILIO_ACCOUNT_SID: str
    TWILIO_AUTH_TOKEN: str
    TWILIO_WHATSAPP_FROM: str           # e.g. "whatsapp:+14155238886"
    TWILIO_WEBHOOK_URL: str = ""        # public URL Twilio signs; empty → request URL
    TWILIO_VALIDATE_SIGNATURE: bool = True

    # Pre-approved WhatsApp templates (Twilio Content SIDs)
    TWILIO_FIRST_CONTACT_TEMPLATE_SID: str = ""
    TWILIO_PAYMENT_TEMPLATE_SID: str = ""
    TWILIO_SUBSCRIPTION_COMPLETE_TEMPLATE_SID: str = ""

    # LLM: provider-agnostic (gemini, anthropic, openai, cohere)
    LLM_PROVIDER: str = "openai"
    LLM_MODEL: str = ""          # empty → smart default per provider
    LLM_API_KEY: str = ""        # empty → freeform replies use the canned fallback

    # Billing: Stripe Checkout
    STRIPE_SECRET_KEY: str = ""
    STRIPE_PRICE_ID: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    SUBSCRIPTION_REQUIRED: bool = False

    # SQLite
    DATABASE_PATH: str = "data/agenda.db"

    # Scheduling
    TIMEZONE: str = "America/Sao_Paulo"
    AGENDA_HORIZON_DAYS: int = 30       # 0 → no horizon
    RUN_SCHEDULER: bool = True

    # Web server
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    @field_validator(
        "TWILIO_VALIDATE_SIGNATURE", "SUBSCRIPTION_REQUIRED", "RUN_SCHEDULER",
        mode="before",
    )
    @classmethod
    def parse_flag(cls, v: str | bool) -> bool:
        if isinstance(v, bool):
            return v
        return str(v).strip().lower() in ("1", "true", "yes", "on")

    @field_validator("AGENDA_HORIZON_DAYS", "PORT", mode="before")
    @classmethod
    def parse_int(cls, v: str | int) -> int:
        return int(v)


def _load_settings() -> Settings:
    """Load settings from environment, validating required keys."""
    account_sid = os.getenv("TWILIO_ACCOUNT_SID", "")
    auth_token = os.getenv("TWILIO_AUTH_TOKEN", "")
    whatsapp_from = os.getenv("TWILIO_WHATSAPP_FROM", "")

    for name, value in (
        ("TWILIO_ACCOUNT_SID", account_sid),
        ("TWILIO_AUTH_TOKEN", auth_token),
        ("TWILIO_WHATSAPP_FROM", whatsapp_from),
    ):
        if not value or value.startswith("your-"):
            print(f"ERROR: {name} is missing or not set in .env", file=sys.stderr)
            sys.exit(1)

    return Settings(
        TWILIO_ACCOUNT_SID=account_sid,
        TWILIO_AUTH_TOKEN=auth_token,
        TWILIO_WHATSAPP_FROM=whatsapp_from,
        TWILIO_WEBHOOK_URL=os.getenv("TWILIO_WEBHOOK_URL", ""),
        TWILIO_VALIDATE_SIGNATURE=os.getenv("TWILIO_VALIDATE_SIGNATURE", "true"),
        TWILIO_FIRST_CONTACT_TEMPLATE_SID=os.getenv("TWILIO_FIRST_CONTACT_TEMPLATE_SID", ""),
        TWILIO_PAYMENT_TEMPLATE_SID=os.getenv("TWILIO_PAYMENT_TEMPLATE_SID", ""),
        TWILIO_SUBSCRIPTION_COMPLETE_TEMPLATE_SID=os.getenv(
            "TWILIO_SUBSCRIPTION_COMPLETE_TEMPLATE_SID", "",
        ),
        LLM_PROVIDER=os.getenv("LLM_PROVIDER", "openai"),
        LLM_MODEL=os.getenv("LLM_MODEL", ""),
        LLM_API_KEY=os.getenv("LLM_API_KEY", ""),
        STRIPE_SECRET_KEY=os.getenv("STRIPE_SECRET_KEY", ""),
        STRIPE_PRICE_ID=os.getenv("STRIPE_PRICE_ID", ""),
        STRIPE_WEBHOOK_SECRET=os.getenv("STRIPE_WEBHOOK_SECRET", ""),
        SUBSCRIPTION_REQUIRED=os.getenv("SUBSCRIPTION_REQUIRED", "false"),
        DATABASE_PATH=os.getenv("DATABASE_PATH", "data/agenda.db"),
        TIMEZONE=os.getenv("TIMEZONE", "America/Sao_Paulo"),
        AGENDA_HORIZON_DAYS=os.getenv("AGENDA_HORIZON_DAYS", "30"),
        RUN_SCHEDULER=os.getenv("RUN_SCHEDULER", "true"),
        HOST=os.getenv("HOST", "0.0.0.0"),
        PORT=os.getenv("PORT", "8000"),
    )


# Singleton, imported by all other modules as:
#   from src.config import settings
settings = _load_settings()
