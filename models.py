import sqlite3
from datetime import datetime

import pytz
from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import CheckConstraint, Index, UniqueConstraint, event, text
from sqlalchemy.engine import Engine

from services.validation_service import format_instant

db = SQLAlchemy()

# 64-bit ids; SQLite only autoincrements a plain INTEGER primary key.
IdType = db.BigInteger().with_variant(db.Integer, 'sqlite')


def _utcnow():
    return datetime.now(pytz.UTC).replace(tzinfo=None)


@event.listens_for(Engine, 'connect')
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    if isinstance(dbapi_connection, sqlite3.Connection):
        cursor = dbapi_connection.cursor()
        cursor.execute('PRAGMA foreign_keys=ON')
        cursor.close()


class CalendarEvent(db.Model):
    """
    Calendar entry. Start/end are absolute instants stored as naive UTC.
    A non-null recurrence_rule makes the row the parent of a recurring series.
    """
    __tablename__ = 'calendar_events'
    __table_args__ = (
        CheckConstraint(
            'is_all_day OR end_datetime IS NULL OR end_datetime > start_datetime',
            name='chk_calendar_event_valid_time_range'
        ),
        Index('idx_calendar_events_date_range', 'start_datetime', 'end_datetime'),
        Index('idx_calendar_events_start_datetime', 'start_datetime'),
        Index('idx_calendar_events_end_datetime', 'end_datetime'),
        Index(
            'idx_calendar_events_recurrence', 'recurrence_rule',
            sqlite_where=text('recurrence_rule IS NOT NULL'),
            postgresql_where=text('recurrence_rule IS NOT NULL')
        ),
        Index('idx_calendar_events_title', 'title'),
        Index('idx_calendar_events_task_id', 'task_id'),
    )

    id = db.Column(IdType, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, nullable=True)
    start_datetime = db.Column(db.DateTime, nullable=False)
    end_datetime = db.Column(db.DateTime, nullable=True)
    is_all_day = db.Column(db.Boolean, nullable=False, default=False)
    location = db.Column(db.String(200), nullable=True)
    color = db.Column(db.String(7), nullable=True)
    recurrence_rule = db.Column(db.String(255), nullable=True)
    # Weak reference into the Task domain: id only, never loaded as a relationship.
    task_id = db.Column(IdType, db.ForeignKey('tasks.id', ondelete='SET NULL'), nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    exceptions = db.relationship(
        'CalendarEventException',
        backref='parent_event',
        lazy=True,
        cascade='all, delete-orphan',
        foreign_keys='CalendarEventException.parent_event_id',
        order_by='CalendarEventException.exception_date'
    )

    @property
    def is_recurring(self):
        return self.recurrence_rule is not None

    def to_dict(self):
        return {
            'id': self.id,
            'title': self.title,
            'description': self.description,
            'start_datetime': format_instant(self.start_datetime),
            'end_datetime': format_instant(self.end_datetime),
            'is_all_day': bool(self.is_all_day),
            'location': self.location,
            'color': self.color,
            'recurrence_rule': self.recurrence_rule,
            'task_id': self.task_id,
            'created_at': format_instant(self.created_at),
            'updated_at': format_instant(self.updated_at),
        }


class CalendarEventException(db.Model):
    """A single occurrence of a recurring event, either cancelled or replaced by an override event."""
    __tablename__ = 'calendar_event_exceptions'
    __table_args__ = (
        UniqueConstraint('parent_event_id', 'exception_date', name='uq_calendar_event_exception_day'),
        Index('idx_calendar_event_exceptions_parent', 'parent_event_id'),
        Index('idx_calendar_event_exceptions_date', 'exception_date'),
    )

    id = db.Column(IdType, primary_key=True)
    parent_event_id = db.Column(
        IdType, db.ForeignKey('calendar_events.id', ondelete='CASCADE'), nullable=False
    )
    exception_date = db.Column(db.Date, nullable=False)
    cancelled = db.Column(db.Boolean, nullable=False, default=False)
    modified_event_id = db.Column(
        IdType, db.ForeignKey('calendar_events.id', ondelete='CASCADE'), nullable=True
    )
    modified_event = db.relationship('CalendarEvent', foreign_keys=[modified_event_id])
    created_at = db.Column(db.DateTime, default=_utcnow)

    def to_dict(self):
        return {
            'id': self.id,
            'parent_event_id': self.parent_event_id,
            'exception_date': self.exception_date.isoformat() if self.exception_date else None,
            'cancelled': bool(self.cancelled),
            'modified_event_id': self.modified_event_id,
            'created_at': format_instant(self.created_at),
        }


class Task(db.Model):
    """Table owned by the Task domain. The calendar only reads it."""
    __tablename__ = 'tasks'

    id = db.Column(IdType, primary_key=True)
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    priority = db.Column(db.String(10), default='medium')  # high | medium | low
    due_date = db.Column(db.Date, nullable=True, index=True)
    completed = db.Column(db.Boolean, default=False)
    completed_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=_utcnow)
    updated_at = db.Column(db.DateTime, default=_utcnow, onupdate=_utcnow)

    def to_summary(self):
        return {
            'id': self.id,
            'title': self.title,
            'completed': bool(self.completed),
            'priority': self.priority,
        }

    def to_deadline(self):
        return {
            'id': self.id,
            'title': self.title,
            'due_date': self.due_date.isoformat() if self.due_date else None,
            'priority': self.priority,
            'completed': bool(self.completed),
        }
