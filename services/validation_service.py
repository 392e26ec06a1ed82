import re
from datetime import date, datetime

import pytz

from services.errors import ValidationError

DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_int(value, field):
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError(f"Invalid {field}")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field}") from None


def parse_day_value(raw):
    """Parse a strict YYYY-MM-DD string; return None on failure."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    if raw is None or not DATE_PATTERN.match(str(raw)):
        return None
    try:
        return datetime.strptime(str(raw), "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None


def require_day(raw, message="Invalid date format. Use YYYY-MM-DD"):
    day = parse_day_value(raw)
    if day is None:
        raise ValidationError(message)
    return day


def parse_instant(raw):
    """
    Parse an ISO 8601 timestamp into a naive UTC datetime.

    Offsets are honoured and a trailing 'Z' is accepted; values without an
    offset are read as UTC. Returns None on failure.
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        value = raw
    else:
        text = str(raw).strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        try:
            value = datetime.fromisoformat(text)
        except (TypeError, ValueError):
            return None
    if value.tzinfo is not None:
        value = value.astimezone(pytz.UTC).replace(tzinfo=None)
    return value


def format_instant(value):
    if value is None:
        return None
    return pytz.UTC.localize(value).isoformat()


def clean_text(raw, field, max_length, required=False):
    """Trim a text field, enforcing its length limit. Blank optional values become None."""
    text = str(raw).strip() if raw is not None else ""
    if not text:
        if required:
            raise ValidationError(f"Event {field} is required")
        return None
    if len(text) > max_length:
        raise ValidationError(f"{field.capitalize()} must be {max_length} characters or fewer")
    return text


def clean_color(raw):
    color = clean_text(raw, "color", 7)
    if color is None:
        return None
    if not COLOR_PATTERN.match(color):
        raise ValidationError("Color must be a hex value like #RRGGBB")
    return color


def today_in(tz_name):
    try:
        tz = pytz.timezone(tz_name or "UTC")
    except pytz.UnknownTimeZoneError:
        tz = pytz.UTC
    return datetime.now(tz).date()
