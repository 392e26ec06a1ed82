import math

from sqlalchemy import func

from models import db, CalendarEvent
from services.errors import NotFoundError, ValidationError
from services.validation_service import format_instant, parse_instant, parse_int


def overlap_minutes(start, end):
    """Whole minutes between two instants, halves rounded up."""
    seconds = (end - start).total_seconds()
    return max(0, math.floor(seconds / 60 + 0.5))


class ConflictDetector:
    """
    Finds stored events whose [start, end) interval intersects a proposed one.

    An event without an end occupies the single instant at its start. Series are
    checked by their stored parent row only; expanded occurrences are not.
    """

    def check(self, start_raw, end_raw=None, exclude_event_id=None):
        start = parse_instant(start_raw)
        if start is None:
            raise ValidationError('Invalid start datetime format')
        end = start
        if end_raw not in (None, ''):
            end = parse_instant(end_raw)
            if end is None:
                raise ValidationError('Invalid end datetime format')
            if end < start:
                raise ValidationError('End datetime must not be before start datetime')

        exclude_id = parse_int(exclude_event_id, 'exclude_event_id')
        if exclude_id is not None and db.session.get(CalendarEvent, exclude_id) is None:
            raise NotFoundError('Event not found')

        effective_end = func.coalesce(CalendarEvent.end_datetime, CalendarEvent.start_datetime)
        query = CalendarEvent.query.filter(
            CalendarEvent.start_datetime < end,
            effective_end > start
        )
        if exclude_id is not None:
            query = query.filter(CalendarEvent.id != exclude_id)
        events = query.order_by(CalendarEvent.start_datetime.asc(), CalendarEvent.id.asc()).all()

        conflicts = [self._describe(event, start, end) for event in events]
        return {'has_conflicts': bool(conflicts), 'conflicts': conflicts}

    @staticmethod
    def _describe(event, start, end):
        event_end = event.end_datetime or event.start_datetime
        overlap_start = max(start, event.start_datetime)
        overlap_end = max(overlap_start, min(end, event_end))
        return {
            'event': event.to_dict(),
            'overlap_start': format_instant(overlap_start),
            'overlap_end': format_instant(overlap_end),
            'overlap_minutes': overlap_minutes(overlap_start, overlap_end),
        }
