"""Calendar API routes."""
from flask import Blueprint, current_app, jsonify, request

from services.conflict_service import ConflictDetector
from services.errors import ValidationError
from services.event_store import EventStore
from services.recurrence import RecurrenceExpander
from services.task_links import TaskLinkResolver
from services.validation_service import parse_bool, parse_int, require_day, today_in
from services.view_builder import ViewBuilder

calendar_bp = Blueprint('calendar', __name__, url_prefix='/api/calendar')


def _task_links():
    return TaskLinkResolver(current_app.extensions['task_source'])


def _view_builder(task_links):
    app = current_app._get_current_object()
    timezone = app.config.get('DEFAULT_TIMEZONE')
    return ViewBuilder(
        EventStore(task_links),
        task_links,
        expander=RecurrenceExpander(app.config.get('CALENDAR_MAX_OCCURRENCES', 1000)),
        today=lambda: today_in(timezone),
        app=app if app.config.get('CALENDAR_PARALLEL_FETCH') else None,
    )


def _json_body():
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError('Request body must be a JSON object')
    return data


def _optional_day(raw, field):
    if raw in (None, ''):
        return None
    return require_day(raw, f'Invalid {field}. Use YYYY-MM-DD')


def _include_tasks():
    return parse_bool(request.args.get('include_tasks'))


@calendar_bp.route('/events', methods=['POST'])
def create_event():
    event = EventStore(_task_links()).create(_json_body())
    return jsonify({'event': event.to_dict()}), 201


@calendar_bp.route('/events', methods=['GET'])
def list_events():
    start = _optional_day(request.args.get('start_date'), 'start_date')
    end = _optional_day(request.args.get('end_date'), 'end_date')
    if start and end and end < start:
        raise ValidationError('end_date must be on or after start_date')
    task_id = parse_int(request.args.get('task_id'), 'task_id')
    include_tasks = _include_tasks()
    include_recurring = parse_bool(request.args.get('include_recurring'))
    task_links = _task_links()

    if include_recurring and start and end:
        events = _view_builder(task_links).collect_events(start, end, include_tasks)
        if task_id is not None:
            events = [data for data in events if data.get('task_id') == task_id]
    else:
        events = []
        for event in EventStore(task_links).list_events(start, end, task_id=task_id):
            data = event.to_dict()
            data['is_recurring'] = event.is_recurring
            events.append(data)
        if include_tasks:
            task_links.enrich(events)
    return jsonify({'events': events})


@calendar_bp.route('/events/<int:event_id>', methods=['GET'])
def get_event(event_id):
    task_links = _task_links()
    event = EventStore(task_links).get(event_id)
    data = event.to_dict()
    data['is_recurring'] = event.is_recurring
    data['exceptions'] = [exception.to_dict() for exception in event.exceptions]
    task = task_links.lookup(event.task_id)
    if task is not None:
        data['task'] = task
    return jsonify({'event': data})


@calendar_bp.route('/events/<int:event_id>', methods=['PUT'])
def update_event(event_id):
    event = EventStore(_task_links()).update(event_id, _json_body())
    return jsonify({'event': event.to_dict()})


@calendar_bp.route('/events/<int:event_id>', methods=['DELETE'])
def delete_event(event_id):
    delete_series = request.args.get('delete_series')
    if delete_series is None:
        delete_series = _json_body().get('delete_series')
    message = EventStore(_task_links()).delete(event_id, delete_series=parse_bool(delete_series))
    return jsonify({'success': True, 'message': message})


@calendar_bp.route('/events/<int:event_id>/exceptions', methods=['POST'])
def create_exception(event_id):
    data = _json_body()
    exception = EventStore(_task_links()).add_exception(
        event_id,
        data.get('exception_date'),
        cancelled=data.get('cancelled', False),
        modified_event=data.get('modified_event')
    )
    payload = {'exception': exception.to_dict()}
    if exception.modified_event is not None:
        payload['modified_event'] = exception.modified_event.to_dict()
    return jsonify(payload), 201


@calendar_bp.route('/exceptions/<int:exception_id>', methods=['DELETE'])
def delete_exception(exception_id):
    EventStore(_task_links()).delete_exception(exception_id)
    return jsonify({'success': True, 'message': 'Exception deleted successfully'})


@calendar_bp.route('/events/day/<day>', methods=['GET'])
def day_view(day):
    task_links = _task_links()
    return jsonify(_view_builder(task_links).day_view(day, include_tasks=_include_tasks()))


@calendar_bp.route('/events/week/<day>', methods=['GET'])
def week_view(day):
    task_links = _task_links()
    return jsonify(_view_builder(task_links).week_view(day, include_tasks=_include_tasks()))


@calendar_bp.route('/events/month/<year>/<month>', methods=['GET'])
def month_view(year, month):
    task_links = _task_links()
    return jsonify(_view_builder(task_links).month_view(year, month, include_tasks=_include_tasks()))


@calendar_bp.route('/conflicts', methods=['POST'])
def check_conflicts():
    data = _json_body()
    result = ConflictDetector().check(
        data.get('start_datetime'),
        data.get('end_datetime'),
        exclude_event_id=data.get('exclude_event_id')
    )
    return jsonify(result)
