"""
Centralized configuration for the class reminder service.

Everything comes from environment variables (loaded from .env / .env.local by
the entry points). Reminder classes are built once at process start.
"""

import os
from datetime import timedelta

from .enums import Channel, RecipientRole
from .types import ReminderClass


# =============================================================================
# Reminder classes - SINGLE SOURCE OF TRUTH
# =============================================================================

REMINDER_CLASS_DEFAULTS = {
    "near_term": {
        "label": "15min",
        "lead_minutes": 15,
        "cadence_seconds": 60,
        "tolerance_minutes": 5,
        "channels": "whatsapp,email",
        "recipient_roles": (RecipientRole.owner, RecipientRole.participant),
    },
    "advance": {
        "label": "8hr",
        "lead_minutes": 8 * 60,
        "cadence_seconds": 300,
        "tolerance_minutes": 30,
        "channels": "whatsapp",
        # The owner is still resolved, for the participant message
        "recipient_roles": (RecipientRole.participant,),
    },
}


def is_dev_mode() -> bool:
    """Check if running in development mode (DEV_MODE env)."""
    return os.getenv("DEV_MODE", "").lower() in ("true", "1", "yes")


def is_production() -> bool:
    """Check if running on Railway (production environment)."""
    return bool(os.environ.get("RAILWAY_ENVIRONMENT"))


def _env_number(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None
    return value


def parse_channels(raw: str) -> frozenset[Channel]:
    """Parse a comma-separated channel list ("whatsapp, email")."""
    channels = set()
    for part in raw.split(","):
        part = part.strip().lower()
        if not part:
            continue
        try:
            channels.add(Channel(part))
        except ValueError:
            raise ValueError(f"Unknown reminder channel: {part!r}") from None
    return frozenset(channels)


def build_reminder_class(name: str) -> ReminderClass:
    """
    Build one reminder class from its defaults and env overrides.

    Overrides use the upper-cased class name as prefix, e.g.
    NEAR_TERM_LEAD_MINUTES, NEAR_TERM_CADENCE_SECONDS,
    NEAR_TERM_TOLERANCE_MINUTES, NEAR_TERM_CHANNELS.
    """
    defaults = REMINDER_CLASS_DEFAULTS[name]
    prefix = name.upper()
    return ReminderClass(
        name=name,
        label=defaults["label"],
        lead=timedelta(
            minutes=_env_number(f"{prefix}_LEAD_MINUTES", defaults["lead_minutes"])
        ),
        poll_cadence=timedelta(
            seconds=_env_number(
                f"{prefix}_CADENCE_SECONDS", defaults["cadence_seconds"]
            )
        ),
        tolerance=timedelta(
            minutes=_env_number(
                f"{prefix}_TOLERANCE_MINUTES", defaults["tolerance_minutes"]
            )
        ),
        channels=parse_channels(
            os.environ.get(f"{prefix}_CHANNELS") or defaults["channels"]
        ),
        recipient_roles=frozenset(defaults["recipient_roles"]),
    )


def get_reminder_classes() -> dict[str, ReminderClass]:
    """All reminder classes, keyed by name."""
    return {name: build_reminder_class(name) for name in REMINDER_CLASS_DEFAULTS}


def get_dispatch_concurrency() -> int:
    """Max events processed at once within one tick."""
    return max(1, int(_env_number("DISPATCH_CONCURRENCY", 10)))


def get_display_timezone() -> str:
    """Timezone used when formatting times inside messages."""
    return os.environ.get("DISPLAY_TIMEZONE", "UTC")


def get_transport_timeout() -> float:
    """Timeout in seconds for one channel transport call."""
    return _env_number("TRANSPORT_TIMEOUT_SECONDS", 15)


def get_campaign_id(reminder_class_name: str) -> str | None:
    """Optional WhatsApp campaign id for a reminder class (INTERAKT_CAMPAIGN_NEAR_TERM)."""
    return os.environ.get(f"INTERAKT_CAMPAIGN_{reminder_class_name.upper()}") or None


# Required environment variables
# Format: (name, description, required_in_dev)
REQUIRED_ENV_VARS = [
    ("DATABASE_URL", "PostgreSQL connection string", True),
    ("INTERAKT_AUTH", "WhatsApp template API authorization header", False),
    ("SENDGRID_API_KEY", "SendGrid API key for reminder emails", False),
    ("SENTRY_DSN", "Sentry DSN for operator alerts", False),
]


def check_required_env_vars() -> tuple[bool, list[str]]:
    """
    Check that required environment variables are set.

    Returns:
        (all_ok, warnings): Tuple of success flag and list of warning messages
    """
    warnings = []
    errors = []
    in_dev = is_dev_mode()

    for name, description, required_in_dev in REQUIRED_ENV_VARS:
        value = os.environ.get(name)

        if not value:
            if is_production():
                errors.append(f"  ✗ {name}: Not set ({description})")
            elif required_in_dev or not in_dev:
                warnings.append(f"  ⚠ {name}: Not set ({description})")

    return not errors, errors + warnings


def get_sender_name() -> str:
    """Signature used in reminder emails."""
    return os.environ.get("FROM_NAME", "SuperSheldon Team")
