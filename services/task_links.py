"""
Read-only link from calendar events into the Task domain.

The calendar stores a task id on an event and nothing else. Everything it
learns about a task goes through a TaskSource, so the Task domain can live in
the same database (SqlTaskSource) or anywhere else.
"""
import logging
from enum import Enum

from sqlalchemy import case

from models import Task

logger = logging.getLogger(__name__)


class Priority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self):
        return {Priority.HIGH: 0, Priority.MEDIUM: 1, Priority.LOW: 2}[self]


class TaskSource:
    """Capability the calendar needs from the Task domain."""

    def lookup(self, task_id):
        """Return {id, title, completed, priority} or None when the task does not exist."""
        raise NotImplementedError

    def deadlines(self, date_from, date_to):
        """Return [{id, title, due_date, priority, completed}] due in the inclusive window."""
        raise NotImplementedError


class SqlTaskSource(TaskSource):
    def lookup(self, task_id):
        task = Task.query.filter(Task.id == task_id).first()
        return task.to_summary() if task else None

    def deadlines(self, date_from, date_to):
        priority_rank = case(
            {p.value: p.rank for p in Priority},
            value=Task.priority,
            else_=len(Priority),
        )
        tasks = Task.query.filter(
            Task.due_date.isnot(None),
            Task.due_date >= date_from,
            Task.due_date <= date_to
        ).order_by(Task.due_date.asc(), priority_rank.asc(), Task.id.asc()).all()
        return [task.to_deadline() for task in tasks]


def sort_deadlines(deadlines):
    """Order by due date, then high > medium > low, then id."""
    def _key(item):
        try:
            rank = Priority(str(item.get("priority") or "").lower()).rank
        except ValueError:
            rank = len(Priority)
        return (item.get("due_date") or "", rank, item.get("id") or 0)

    return sorted(deadlines, key=_key)


class TaskLinkResolver:
    def __init__(self, source):
        self.source = source

    def lookup(self, task_id):
        """Best-effort task summary; any failure reads as 'no task'."""
        if task_id is None:
            return None
        try:
            return self.source.lookup(task_id)
        except Exception as exc:
            logger.warning("Task lookup failed for task %s: %s", task_id, exc)
            return None

    def exists(self, task_id):
        return self.lookup(task_id) is not None

    def enrich(self, events):
        """Attach a `task` summary to every event payload whose task resolves."""
        cache = {}
        for data in events:
            task_id = data.get("task_id")
            if task_id is None:
                continue
            if task_id not in cache:
                cache[task_id] = self.lookup(task_id)
            if cache[task_id] is not None:
                data["task"] = cache[task_id]
        return events

    def deadlines(self, date_from, date_to):
        # Failures propagate; the view decides how to degrade.
        return sort_deadlines(self.source.deadlines(date_from, date_to))
