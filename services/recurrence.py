"""
Recurrence rules for calendar events.

Only a bounded RRULE subset is understood: FREQ, INTERVAL, BYDAY (weekly
rules only) and at most one of UNTIL / COUNT. Rules are parsed once into a
RecurrencePattern; the raw string is only kept on the event row for storage.

Stepping uses calendar units (dateutil.relativedelta) measured from the series
start, so a series starting on the 31st clamps to shorter month ends instead
of drifting.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from typing import Iterator, Optional, Tuple

from dateutil.relativedelta import relativedelta

from services.errors import ValidationError
from services.validation_service import format_instant

logger = logging.getLogger(__name__)

DEFAULT_MAX_OCCURRENCES = 1000


class Frequency(str, Enum):
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"


class Weekday(Enum):
    MO = 0
    TU = 1
    WE = 2
    TH = 3
    FR = 4
    SA = 5
    SU = 6


_STEP_UNITS = {
    Frequency.DAILY: "days",
    Frequency.WEEKLY: "weeks",
    Frequency.MONTHLY: "months",
    Frequency.YEARLY: "years",
}

_KNOWN_KEYS = {"FREQ", "INTERVAL", "BYDAY", "UNTIL", "COUNT"}


def _invalid(reason):
    return ValidationError(f"Invalid recurrence rule: {reason}")


def _positive_int(raw, key):
    try:
        value = int(raw)
    except (TypeError, ValueError):
        raise _invalid(f"{key} must be a positive integer") from None
    if value < 1:
        raise _invalid(f"{key} must be a positive integer")
    return value


def _parse_weekdays(raw):
    days = set()
    for token in raw.split(","):
        token = token.strip().upper()
        try:
            days.add(Weekday[token].value)
        except KeyError:
            raise _invalid(f"unknown weekday '{token}'") from None
    return tuple(sorted(days))


def _parse_until(raw):
    for fmt in ("%Y%m%d", "%Y%m%dT%H%M%SZ", "%Y%m%dT%H%M%S", "%Y-%m-%d"):
        try:
            return datetime.strptime(raw, fmt).date()
        except ValueError:
            continue
    raise _invalid(f"UNTIL '{raw}' is not a date")


@dataclass(frozen=True)
class RecurrencePattern:
    frequency: Frequency
    interval: int = 1
    days_of_week: Tuple[int, ...] = ()
    until: Optional[date] = None
    count: Optional[int] = None

    @classmethod
    def parse(cls, rule):
        text = (rule or "").strip()
        if text.upper().startswith("RRULE:"):
            text = text[len("RRULE:"):]
        if not text:
            raise _invalid("rule is empty")

        parts = {}
        for token in text.split(";"):
            token = token.strip()
            if not token:
                continue
            key, sep, value = token.partition("=")
            key = key.strip().upper()
            value = value.strip()
            if not sep or not key or not value:
                raise _invalid(f"malformed token '{token}'")
            if key not in _KNOWN_KEYS:
                raise _invalid(f"unsupported token '{key}'")
            if key in parts:
                raise _invalid(f"duplicate {key}")
            parts[key] = value

        if "FREQ" not in parts:
            raise _invalid("FREQ is required")
        try:
            frequency = Frequency(parts["FREQ"].upper())
        except ValueError:
            raise _invalid(f"unsupported frequency '{parts['FREQ']}'") from None

        days = ()
        if "BYDAY" in parts:
            if frequency is not Frequency.WEEKLY:
                raise _invalid("BYDAY is only supported for WEEKLY rules")
            days = _parse_weekdays(parts["BYDAY"])
        if "UNTIL" in parts and "COUNT" in parts:
            raise _invalid("UNTIL and COUNT are mutually exclusive")

        return cls(
            frequency=frequency,
            interval=_positive_int(parts.get("INTERVAL", "1"), "INTERVAL"),
            days_of_week=days,
            until=_parse_until(parts["UNTIL"]) if "UNTIL" in parts else None,
            count=_positive_int(parts["COUNT"], "COUNT") if "COUNT" in parts else None,
        )

    def to_rule(self):
        tokens = [f"FREQ={self.frequency.value}"]
        if self.interval != 1:
            tokens.append(f"INTERVAL={self.interval}")
        if self.days_of_week:
            tokens.append("BYDAY=" + ",".join(Weekday(d).name for d in self.days_of_week))
        if self.until:
            tokens.append(f"UNTIL={self.until.strftime('%Y%m%d')}")
        if self.count:
            tokens.append(f"COUNT={self.count}")
        return ";".join(tokens)


def _overlaps_window(start, end, window_start, window_end):
    if end is None or end <= start:
        return window_start <= start < window_end
    return start < window_end and end > window_start


def _occurrence_payload(event, start, end):
    data = event.to_dict()
    data["start_datetime"] = format_instant(start)
    data["end_datetime"] = format_instant(end)
    data["is_recurring"] = True
    data["occurrence_date"] = start.date().isoformat()
    return data


def _override_payload(event, exception):
    override = exception.modified_event
    data = override.to_dict()
    # The series keeps its identity; the override only supplies the fields.
    data["id"] = event.id
    data["recurrence_rule"] = event.recurrence_rule
    data["override_event_id"] = override.id
    data["is_recurring"] = True
    data["occurrence_date"] = exception.exception_date.isoformat()
    return data


class RecurrenceExpander:
    """Materialises the occurrences of a recurring event that touch a date window."""

    def __init__(self, max_occurrences=DEFAULT_MAX_OCCURRENCES):
        self.max_occurrences = max_occurrences

    def expand(self, event, date_from, date_to, exceptions=()):
        pattern = RecurrencePattern.parse(event.recurrence_rule)
        window_start = datetime.combine(date_from, time.min)
        window_end = datetime.combine(date_to + timedelta(days=1), time.min)
        duration = None
        if event.end_datetime is not None:
            duration = event.end_datetime - event.start_datetime
        by_date = {ex.exception_date: ex for ex in exceptions}

        occurrences = []
        seen = set()
        for start in self.candidates(pattern, event.start_datetime, date_from, date_to, duration):
            seen.add(start.date())
            exception = by_date.get(start.date())
            if exception is not None and exception.cancelled:
                continue
            if exception is not None and exception.modified_event is not None:
                override = exception.modified_event
                occ_start, occ_end = override.start_datetime, override.end_datetime
                payload = _override_payload(event, exception)
            else:
                occ_start = start
                occ_end = start + duration if duration is not None else None
                payload = _occurrence_payload(event, occ_start, occ_end)
            if _overlaps_window(occ_start, occ_end, window_start, window_end):
                occurrences.append(payload)

        # Occurrences moved into this window from a date outside it.
        for exception in exceptions:
            override = exception.modified_event
            if exception.cancelled or override is None or exception.exception_date in seen:
                continue
            if not _overlaps_window(override.start_datetime, override.end_datetime, window_start, window_end):
                continue
            if self.occurs_on(pattern, event.start_datetime, exception.exception_date):
                occurrences.append(_override_payload(event, exception))
        return occurrences

    def occurs_on(self, pattern, series_start, day):
        """True when the series produces a candidate on that calendar day."""
        return any(start.date() == day for start in self.candidates(pattern, series_start, day, day))

    def candidates(self, pattern, series_start, date_from, date_to, duration=None) -> Iterator[datetime]:
        """Yield raw series starts (before exceptions) up to date_to."""
        # Occurrences starting this early can still run into the window.
        span = duration.days + 1 if duration is not None else 0
        earliest = date_from - timedelta(days=span)
        if pattern.frequency is Frequency.WEEKLY and pattern.days_of_week:
            return self._weekly_by_day(pattern, series_start, earliest, date_to)
        return self._stepped(pattern, series_start, earliest, date_to)

    def _stepped(self, pattern, series_start, earliest, date_to):
        unit = _STEP_UNITS[pattern.frequency]
        # index is the absolute ordinal, so COUNT still holds after skipping.
        index = self._skip_ahead(pattern, series_start.date(), earliest)
        produced = 0
        while True:
            if pattern.count is not None and index >= pattern.count:
                return
            candidate = series_start + relativedelta(**{unit: index * pattern.interval})
            if candidate.date() > date_to:
                return
            if pattern.until is not None and candidate.date() > pattern.until:
                return
            produced += 1
            if produced > self.max_occurrences:
                logger.warning("Recurrence expansion capped at %s occurrences", self.max_occurrences)
                return
            yield candidate
            index += 1

    def _weekly_by_day(self, pattern, series_start, earliest, date_to):
        anchor = series_start - timedelta(days=series_start.weekday())
        week_index = 0
        if earliest > anchor.date():
            week_index = max(0, (earliest - anchor.date()).days // 7 // pattern.interval - 1)
        emitted = 0
        if week_index:
            # Occurrences in the skipped weeks still count towards COUNT.
            first_week = sum(
                1 for weekday in pattern.days_of_week
                if anchor + timedelta(days=weekday) >= series_start
            )
            emitted = first_week + (week_index - 1) * len(pattern.days_of_week)
        produced = 0
        while True:
            week_start = anchor + timedelta(weeks=week_index * pattern.interval)
            if week_start.date() > date_to:
                return
            for weekday in pattern.days_of_week:
                candidate = week_start + timedelta(days=weekday)
                if candidate < series_start:
                    continue
                if candidate.date() > date_to:
                    return
                if pattern.until is not None and candidate.date() > pattern.until:
                    return
                if pattern.count is not None and emitted >= pattern.count:
                    return
                emitted += 1
                produced += 1
                if produced > self.max_occurrences:
                    logger.warning("Recurrence expansion capped at %s occurrences", self.max_occurrences)
                    return
                yield candidate
            week_index += 1

    @staticmethod
    def _skip_ahead(pattern, start_day, earliest):
        if earliest <= start_day:
            return 0
        if pattern.frequency is Frequency.DAILY:
            units = (earliest - start_day).days
        elif pattern.frequency is Frequency.WEEKLY:
            units = (earliest - start_day).days // 7
        elif pattern.frequency is Frequency.MONTHLY:
            units = (earliest.year - start_day.year) * 12 + (earliest.month - start_day.month)
        else:
            units = earliest.year - start_day.year
        return max(0, units // pattern.interval - 1)
