"""
Persistence for calendar events and their recurrence exceptions.

Every write validates the complete set of event fields, so an update is
checked exactly like a create once the changes are merged over the row.
"""
import logging
from datetime import datetime, time, timedelta

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from models import db, CalendarEvent, CalendarEventException
from services.errors import NotFoundError, PersistenceError, ValidationError
from services.recurrence import RecurrenceExpander, RecurrencePattern
from services.validation_service import (
    clean_color,
    clean_text,
    parse_bool,
    parse_day_value,
    parse_instant,
    parse_int,
)

logger = logging.getLogger(__name__)

EVENT_FIELDS = (
    'title',
    'description',
    'start_datetime',
    'end_datetime',
    'is_all_day',
    'location',
    'color',
    'recurrence_rule',
    'task_id',
)


def _day_start(day):
    return datetime.combine(day, time.min)


def _next_day_start(day):
    return datetime.combine(day + timedelta(days=1), time.min)


class EventStore:
    def __init__(self, task_links):
        self.task_links = task_links

    # --- validation ---

    def validate(self, data):
        """Check a full set of event fields and return column values."""
        title = clean_text(data.get('title'), 'title', 200, required=True)
        description = clean_text(data.get('description'), 'description', 1000)
        location = clean_text(data.get('location'), 'location', 200)
        color = clean_color(data.get('color'))
        recurrence_rule = clean_text(data.get('recurrence_rule'), 'recurrence rule', 255)
        if recurrence_rule:
            RecurrencePattern.parse(recurrence_rule)

        if data.get('start_datetime') in (None, ''):
            raise ValidationError('Start datetime is required')
        start = parse_instant(data.get('start_datetime'))
        if start is None:
            raise ValidationError('Invalid start datetime format')
        end = None
        if data.get('end_datetime') not in (None, ''):
            end = parse_instant(data.get('end_datetime'))
            if end is None:
                raise ValidationError('Invalid end datetime format')

        is_all_day = parse_bool(data.get('is_all_day'))
        if end is not None and not is_all_day and end <= start:
            raise ValidationError('End datetime must be after start datetime')

        return {
            'title': title,
            'description': description,
            'start_datetime': start,
            'end_datetime': end,
            'is_all_day': is_all_day,
            'location': location,
            'color': color,
            'recurrence_rule': recurrence_rule,
            'task_id': parse_int(data.get('task_id'), 'task_id'),
        }

    def _ensure_task(self, task_id):
        # Not in the same transaction as the insert; the task may vanish in between.
        if task_id is not None and not self.task_links.exists(task_id):
            raise NotFoundError('Referenced task not found')

    def _commit(self, operation):
        try:
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Failed to %s: %s", operation, exc)
            raise PersistenceError.wrap(operation, exc) from exc

    # --- events ---

    def create(self, data):
        values = self.validate(data or {})
        self._ensure_task(values['task_id'])
        event = CalendarEvent(**values)
        db.session.add(event)
        self._commit('create event')
        logger.info("Created calendar event %s", event.id)
        return event

    def get(self, event_id):
        event = db.session.get(CalendarEvent, event_id)
        if event is None:
            raise NotFoundError('Event not found')
        return event

    def update(self, event_id, changes):
        event = self.get(event_id)
        changes = changes or {}
        merged = {field: getattr(event, field) for field in EVENT_FIELDS}
        merged.update({field: changes[field] for field in EVENT_FIELDS if field in changes})
        values = self.validate(merged)
        self._ensure_task(values['task_id'])
        for field, value in values.items():
            setattr(event, field, value)
        self._commit('update event')
        logger.info("Updated calendar event %s", event.id)
        return event

    def series_parent(self, event):
        """Return the recurring parent an override event belongs to, if any."""
        exception = CalendarEventException.query.filter_by(modified_event_id=event.id).first()
        return exception.parent_event if exception else None

    def delete(self, event_id, delete_series=False):
        event = self.get(event_id)
        target = event
        if delete_series:
            target = self.series_parent(event) or event
        # A series owns the override events hanging off its exceptions.
        doomed = [target] + [ex.modified_event for ex in target.exceptions if ex.modified_event is not None]
        doomed_ids = [ev.id for ev in doomed]
        target_id = target.id
        whole_series = target_id != event.id or (delete_series and target.is_recurring)
        linked = CalendarEventException.query.filter(
            CalendarEventException.modified_event_id.in_(doomed_ids)
        ).all()
        for exception in linked:
            db.session.delete(exception)
        for ev in doomed:
            db.session.delete(ev)
        self._commit('delete event')
        logger.info("Deleted calendar event %s (series=%s)", target_id, whole_series)
        if whole_series:
            return 'Event series deleted successfully'
        return 'Event deleted successfully'

    def list_events(self, date_from=None, date_to=None, task_id=None):
        """Events whose start falls on a calendar day inside the inclusive window."""
        query = CalendarEvent.query
        if date_from is not None:
            query = query.filter(CalendarEvent.start_datetime >= _day_start(date_from))
        if date_to is not None:
            query = query.filter(CalendarEvent.start_datetime < _next_day_start(date_to))
        if task_id is not None:
            query = query.filter(CalendarEvent.task_id == task_id)
        return query.order_by(CalendarEvent.start_datetime.asc(), CalendarEvent.id.asc()).all()

    def list_recurring(self, until):
        return CalendarEvent.query.filter(
            CalendarEvent.recurrence_rule.isnot(None),
            CalendarEvent.start_datetime < _next_day_start(until)
        ).order_by(CalendarEvent.start_datetime.asc(), CalendarEvent.id.asc()).all()

    # --- exceptions ---

    def exceptions_for(self, parent_ids):
        grouped = {}
        if not parent_ids:
            return grouped
        rows = CalendarEventException.query.options(
            joinedload(CalendarEventException.modified_event)
        ).filter(CalendarEventException.parent_event_id.in_(parent_ids)).all()
        for row in rows:
            grouped.setdefault(row.parent_event_id, []).append(row)
        return grouped

    def override_parents(self, override_ids):
        """Recurring parents owning the given override events."""
        if not override_ids:
            return []
        rows = CalendarEventException.query.filter(
            CalendarEventException.modified_event_id.in_(override_ids)
        ).all()
        return [row.parent_event for row in rows]

    def override_event_ids(self):
        rows = db.session.query(CalendarEventException.modified_event_id).filter(
            CalendarEventException.modified_event_id.isnot(None)
        ).all()
        return {row[0] for row in rows}

    def add_exception(self, parent_id, exception_date, cancelled=False, modified_event=None):
        parent = self.get(parent_id)
        if not parent.is_recurring:
            raise ValidationError('Exceptions can only be added to recurring events')
        day = parse_day_value(exception_date)
        if day is None:
            raise ValidationError('Invalid exception date. Use YYYY-MM-DD')
        cancelled = parse_bool(cancelled)
        if cancelled and modified_event:
            raise ValidationError('An exception cannot both cancel and modify an occurrence')
        if not cancelled and not modified_event:
            raise ValidationError('An exception must cancel or modify the occurrence')

        pattern = RecurrencePattern.parse(parent.recurrence_rule)
        if not RecurrenceExpander().occurs_on(pattern, parent.start_datetime, day):
            raise ValidationError('Event does not occur on that date')
        existing = CalendarEventException.query.filter_by(
            parent_event_id=parent.id, exception_date=day
        ).first()
        if existing:
            raise ValidationError('An exception already exists for that date')

        override = None
        if modified_event:
            if not isinstance(modified_event, dict):
                raise ValidationError('modified_event must be an object')
            values = self.validate(modified_event)
            if values['recurrence_rule']:
                raise ValidationError('A modified occurrence cannot have its own recurrence rule')
            self._ensure_task(values['task_id'])
            override = CalendarEvent(**values)
            db.session.add(override)

        exception = CalendarEventException(
            parent_event_id=parent.id,
            exception_date=day,
            cancelled=cancelled,
            modified_event=override
        )
        db.session.add(exception)
        self._commit('create exception')
        logger.info("Added exception for event %s on %s", parent.id, day.isoformat())
        return exception

    def delete_exception(self, exception_id):
        exception = db.session.get(CalendarEventException, exception_id)
        if exception is None:
            raise NotFoundError('Exception not found')
        override = exception.modified_event
        payload = exception.to_dict()
        db.session.delete(exception)
        if override is not None:
            db.session.delete(override)
        self._commit('delete exception')
        logger.info("Deleted exception %s of event %s", payload['id'], payload['parent_event_id'])
        return payload
