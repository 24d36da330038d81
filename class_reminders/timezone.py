"""
Formatting of event times for reminder messages.
"""

from datetime import datetime

import pytz


def _utc_offset_label(local_dt: datetime) -> str:
    """Offset label like "UTC", "UTC+7" or "UTC+5:30"."""
    offset = local_dt.strftime("%z")  # "+0700" or "-0500"
    if not offset:
        return "UTC"
    hours = int(offset[:3])
    minutes = int(offset[0] + offset[3:5])
    if minutes == 0:
        return f"UTC{hours:+d}" if hours != 0 else "UTC"
    return f"UTC{hours:+d}:{abs(minutes):02d}"


def format_readable(utc_dt: datetime, tz_name: str = "UTC") -> str:
    """
    Format an instant for a message body.

    Args:
        utc_dt: Datetime in UTC (naive datetimes treated as UTC)
        tz_name: Timezone string (e.g., "Asia/Kolkata"); unknown names fall back to UTC

    Returns:
        Formatted string like "Jan 01, 2024, 3:30 PM (UTC+5:30)"
    """
    if utc_dt.tzinfo is None:
        utc_dt = pytz.UTC.localize(utc_dt)

    try:
        local_dt = utc_dt.astimezone(pytz.timezone(tz_name))
    except pytz.UnknownTimeZoneError:
        local_dt = utc_dt.astimezone(pytz.UTC)

    date_str = local_dt.strftime("%b %d, %Y")
    time_str = local_dt.strftime("%I:%M %p").lstrip("0")  # "3:00 PM" not "03:00 PM"
    return f"{date_str}, {time_str} ({_utc_offset_label(local_dt)})"
