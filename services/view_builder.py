"""
Day, week and month views.

Each view is a date window filled from two sources: stored one-off events and
the expansion of every recurring series that can reach the window. Task
deadlines are fetched separately and may run on a worker thread.
"""
import calendar
import logging
from datetime import date, timedelta

from background_jobs import start_app_context_job
from services.errors import ValidationError
from services.recurrence import RecurrenceExpander
from services.validation_service import parse_instant, parse_int, require_day

logger = logging.getLogger(__name__)


def _start_key(data):
    return (parse_instant(data['start_datetime']), data['id'])


def week_bounds(day):
    week_start = day - timedelta(days=day.weekday())
    return week_start, week_start + timedelta(days=6)


def month_grid_bounds(year, month):
    first = date(year, month, 1)
    last = date(year, month, calendar.monthrange(year, month)[1])
    grid_start = first - timedelta(days=first.weekday())
    grid_end = last + timedelta(days=6 - last.weekday())
    return first, last, grid_start, grid_end


class ViewBuilder:
    def __init__(self, store, task_links, expander=None, today=None, app=None):
        self.store = store
        self.task_links = task_links
        self.expander = expander or RecurrenceExpander()
        self.today = today or date.today
        # With an app, the deadline fetch runs on its own thread.
        self.app = app

    def collect_events(self, date_from, date_to, include_tasks=False):
        """One-off events plus expanded series occurrences touching the window, sorted by start."""
        override_ids = self.store.override_event_ids()
        payloads = []
        moved_in = []
        for event in self.store.list_events(date_from, date_to):
            # Series show up through expansion; overrides only through their series.
            if event.id in override_ids:
                moved_in.append(event.id)
                continue
            if event.is_recurring:
                continue
            data = event.to_dict()
            data['is_recurring'] = False
            payloads.append(data)

        parents = self.store.list_recurring(date_to)
        # An override can land before its series starts.
        known = {parent.id for parent in parents}
        for parent in self.store.override_parents(moved_in):
            if parent.id not in known:
                known.add(parent.id)
                parents.append(parent)
        exceptions = self.store.exceptions_for([parent.id for parent in parents])
        for parent in parents:
            try:
                payloads.extend(
                    self.expander.expand(parent, date_from, date_to, exceptions.get(parent.id, ()))
                )
            except ValidationError as exc:
                logger.warning("Skipping event %s with unusable recurrence rule: %s", parent.id, exc.message)

        payloads.sort(key=_start_key)
        if include_tasks:
            self.task_links.enrich(payloads)
        return payloads

    def _gather(self, window_from, window_to, deadlines_from, deadlines_to, include_tasks):
        job = None
        if include_tasks and self.app is not None:
            job = start_app_context_job(
                self.app, self.task_links.deadlines, args=(deadlines_from, deadlines_to)
            )
        try:
            events = self.collect_events(window_from, window_to, include_tasks)
        except Exception:
            if job is not None:
                job.thread.join()
            raise

        deadlines = None
        if include_tasks:
            try:
                if job is not None:
                    deadlines = job.wait()
                else:
                    deadlines = self.task_links.deadlines(deadlines_from, deadlines_to)
            except Exception as exc:
                logger.warning(
                    "Task deadlines unavailable for %s..%s: %s",
                    deadlines_from.isoformat(), deadlines_to.isoformat(), exc
                )
                deadlines = None
        return events, deadlines

    @staticmethod
    def _bucket(events, first_day, last_day):
        buckets = {}
        for data in events:
            day = parse_instant(data['start_datetime']).date()
            # Spilled in from before the first day.
            if day < first_day:
                day = first_day
            if day <= last_day:
                buckets.setdefault(day, []).append(data)
        return buckets

    def _day(self, day, buckets, today, month=None):
        return {
            'date': day.isoformat(),
            'events': buckets.get(day, []),
            'is_today': day == today,
            'is_current_month': month is None or (day.year, day.month) == month,
        }

    def _week(self, week_start, buckets, today, month=None):
        days = [week_start + timedelta(days=offset) for offset in range(7)]
        return {
            'week_start': days[0].isoformat(),
            'week_end': days[-1].isoformat(),
            'days': [self._day(day, buckets, today, month) for day in days],
        }

    @staticmethod
    def _with_deadlines(payload, deadlines):
        if deadlines is not None:
            payload['task_deadlines'] = deadlines
        return payload

    def day_view(self, day, include_tasks=False):
        day = require_day(day)
        events, deadlines = self._gather(day, day, day, day, include_tasks)
        buckets = self._bucket(events, day, day)
        return self._with_deadlines({'day': self._day(day, buckets, self.today())}, deadlines)

    def week_view(self, day, include_tasks=False):
        day = require_day(day)
        week_start, week_end = week_bounds(day)
        events, deadlines = self._gather(week_start, week_end, week_start, week_end, include_tasks)
        buckets = self._bucket(events, week_start, week_end)
        # Week cells never compare against a month, so every cell counts as current.
        week = self._week(week_start, buckets, self.today())
        return self._with_deadlines({'week': week}, deadlines)

    def month_view(self, year, month, include_tasks=False):
        year = parse_int(year, 'year')
        if year is None or not 1900 <= year <= 2100:
            raise ValidationError('Year must be between 1900 and 2100')
        month = parse_int(month, 'month')
        if month is None or not 1 <= month <= 12:
            raise ValidationError('Month must be between 1 and 12')

        first, last, grid_start, grid_end = month_grid_bounds(year, month)
        # Deadlines cover the month itself, not the padded grid.
        events, deadlines = self._gather(grid_start, grid_end, first, last, include_tasks)
        buckets = self._bucket(events, grid_start, grid_end)
        today = self.today()

        weeks = []
        cursor = grid_start
        while cursor <= grid_end:
            weeks.append(self._week(cursor, buckets, today, (year, month)))
            cursor += timedelta(days=7)

        payload = {
            'month': {
                'year': year,
                'month': month,
                'month_name': calendar.month_name[month],
                'weeks': weeks,
            }
        }
        return self._with_deadlines(payload, deadlines)
