"""Root pytest configuration."""

import os
from pathlib import Path

import pytest
from dotenv import load_dotenv

# Load environment variables before tests run
_root = Path(__file__).parent
load_dotenv(_root / ".env")
load_dotenv(_root / ".env.local", override=True)

# Settings that change reminder behaviour; tests start from the built-in defaults
_REMINDER_ENV_PREFIXES = (
    "NEAR_TERM_",
    "ADVANCE_",
    "INTERAKT_",
    "SMS_",
    "SENDGRID_",
    "FROM_",
    "DISPLAY_TIMEZONE",
    "DISPATCH_CONCURRENCY",
    "TRANSPORT_TIMEOUT_SECONDS",
    "RAILWAY_ENVIRONMENT",
    "DEV_MODE",
)


@pytest.fixture(autouse=True)
def clean_reminder_env(monkeypatch):
    for name in list(os.environ):
        if name.startswith(_REMINDER_ENV_PREFIXES):
            monkeypatch.delenv(name, raising=False)
