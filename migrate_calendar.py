"""
Create the calendar tables and any of their indexes that are missing.
Usage:  python migrate_calendar.py
"""
from sqlalchemy import inspect

from app import create_app
from models import db, CalendarEvent, CalendarEventException, Task


def ensure_calendar_schema(engine):
    """Create missing tables and indexes; return the names of what was added."""
    added = []
    inspector = inspect(engine)
    existing_tables = set(inspector.get_table_names())
    # tasks first: calendar_events.task_id points at it.
    for model in (Task, CalendarEvent, CalendarEventException):
        table = model.__table__
        if table.name not in existing_tables:
            table.create(engine)
            added.append(table.name)
            continue
        existing_indexes = {index['name'] for index in inspector.get_indexes(table.name)}
        for index in sorted(table.indexes, key=lambda ix: ix.name):
            if index.name not in existing_indexes:
                index.create(engine)
                added.append(index.name)
    return added


def main():
    app = create_app()
    with app.app_context():
        added = ensure_calendar_schema(db.engine)
        for name in added:
            print(f"Added {name}")
        print("calendar tables are ensured.")


if __name__ == '__main__':
    main()
