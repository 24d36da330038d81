"""Message template loading and rendering."""

from pathlib import Path

import yaml

from .enums import Channel, RecipientRole
from .timezone import format_readable
from .types import ReminderClass, Recipient, RenderedMessage
from .window import send_instant


_templates: dict | None = None

DEFAULT_SENDER_NAME = "SuperSheldon Team"


def load_templates() -> dict:
    """
    Load message templates from YAML file.

    Caches templates after first load.
    """
    global _templates
    if _templates is not None:
        return _templates

    yaml_path = Path(__file__).parent / "messages.yaml"
    with open(yaml_path) as f:
        _templates = yaml.safe_load(f)

    return _templates


def render_message(template: str, context: dict) -> str:
    """
    Render a message template with context variables.

    Raises:
        KeyError: If a required variable is missing from context
    """
    return template.format(**context)


def get_channel_template(
    reminder_class_name: str,
    role: RecipientRole,
    channel: Channel,
) -> dict | None:
    """Raw template entry for (class, role, channel), or None if there is none."""
    templates = load_templates()
    by_role = templates.get(reminder_class_name) or {}
    by_channel = by_role.get(RecipientRole(role).value) or {}
    return by_channel.get(Channel(channel).value)


def build_context(
    recipient: Recipient,
    reminder_class: ReminderClass,
    tz_name: str = "UTC",
    sender_name: str = DEFAULT_SENDER_NAME,
) -> dict:
    """Template variables for one recipient and reminder class."""
    event = recipient.event
    return {
        "name": recipient.display_name,
        "subject": event.subject,
        "title": event.title,
        "counterpart_name": recipient.counterpart_name,
        "start_time": format_readable(event.starts_at, tz_name),
        "send_time": format_readable(send_instant(event, reminder_class), tz_name),
        "event_id": event.event_id,
        "sender_name": sender_name,
    }


def render_for_channel(
    reminder_class_name: str,
    role: RecipientRole,
    channel: Channel,
    context: dict,
) -> RenderedMessage | None:
    """
    Render the message for one channel.

    Returns:
        The rendered message, or None if no template exists for this
        class/role/channel (the recipient is then ineligible for the channel)

    Raises:
        KeyError: If the template references a variable missing from context
    """
    entry = get_channel_template(reminder_class_name, role, channel)
    if not entry:
        return None

    if Channel(channel) == Channel.email:
        subject = render_message(entry["subject"], context)
        return RenderedMessage(
            template_name=f"{reminder_class_name}_{RecipientRole(role).value}_email",
            subject=subject,
            body=render_message(entry["body"], context),
        )

    return RenderedMessage(
        template_name=entry["template_name"],
        language_code=entry.get("language_code", "en"),
        body_values=[render_message(v, context) for v in entry.get("body_values", [])],
    )
