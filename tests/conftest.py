import pytest

from app import create_app
from models import db, Task
from services.event_store import EventStore
from services.task_links import SqlTaskSource, TaskLinkResolver, TaskSource


class FakeTaskSource(TaskSource):
    """In-memory task source; never touches the database."""

    def __init__(self, tasks=None, deadlines=None):
        self.tasks = tasks or {}
        self.deadline_rows = deadlines or []
        self.deadline_calls = []

    def lookup(self, task_id):
        return self.tasks.get(task_id)

    def deadlines(self, date_from, date_to):
        self.deadline_calls.append((date_from, date_to))
        return list(self.deadline_rows)


class BrokenTaskSource(TaskSource):
    def lookup(self, task_id):
        raise RuntimeError('task service unavailable')

    def deadlines(self, date_from, date_to):
        raise RuntimeError('task service unavailable')


@pytest.fixture
def app():
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'CALENDAR_PARALLEL_FETCH': False,
        'DEFAULT_TIMEZONE': 'UTC',
    })
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def task_links(app):
    return TaskLinkResolver(SqlTaskSource())


@pytest.fixture
def store(task_links):
    return EventStore(task_links)


@pytest.fixture
def make_task(app):
    def _make(title='Write report', due_date=None, priority='medium', completed=False):
        task = Task(title=title, due_date=due_date, priority=priority, completed=completed)
        db.session.add(task)
        db.session.commit()
        return task
    return _make


@pytest.fixture
def weekly_standup(store):
    """Mondays 09:00-09:30 UTC from 2024-01-01."""
    return store.create({
        'title': 'Standup',
        'start_datetime': '2024-01-01T09:00:00Z',
        'end_datetime': '2024-01-01T09:30:00Z',
        'recurrence_rule': 'FREQ=WEEKLY;BYDAY=MO',
    })


@pytest.fixture
def fake_task_source():
    return FakeTaskSource


@pytest.fixture
def broken_task_source():
    return BrokenTaskSource()
