from datetime import datetime

import pytest

from services.conflict_service import ConflictDetector, overlap_minutes
from services.errors import NotFoundError, ValidationError


def _event(store, title, start, end=None):
    return store.create({'title': title, 'start_datetime': start, 'end_datetime': end})


def test_partial_overlap_is_reported(store):
    standup = _event(store, 'Standup', '2024-01-15T09:00:00Z', '2024-01-15T09:30:00Z')
    result = ConflictDetector().check('2024-01-15T09:15:00Z', '2024-01-15T09:45:00Z')
    assert result['has_conflicts'] is True
    assert len(result['conflicts']) == 1
    conflict = result['conflicts'][0]
    assert conflict['event']['id'] == standup.id
    assert conflict['overlap_start'] == '2024-01-15T09:15:00+00:00'
    assert conflict['overlap_end'] == '2024-01-15T09:30:00+00:00'
    assert conflict['overlap_minutes'] == 15


def test_touching_intervals_do_not_conflict(store):
    _event(store, 'Standup', '2024-01-15T09:00:00Z', '2024-01-15T09:30:00Z')
    result = ConflictDetector().check('2024-01-15T09:30:00Z', '2024-01-15T10:00:00Z')
    assert result == {'has_conflicts': False, 'conflicts': []}


def test_conflicts_ordered_by_start_then_id(store):
    late = _event(store, 'Late', '2024-01-15T10:00:00Z', '2024-01-15T11:00:00Z')
    early_a = _event(store, 'Early A', '2024-01-15T09:00:00Z', '2024-01-15T10:30:00Z')
    early_b = _event(store, 'Early B', '2024-01-15T09:00:00Z', '2024-01-15T09:45:00Z')
    result = ConflictDetector().check('2024-01-15T08:00:00Z', '2024-01-15T12:00:00Z')
    assert [c['event']['id'] for c in result['conflicts']] == [early_a.id, early_b.id, late.id]


def test_excluded_event_is_skipped(store):
    standup = _event(store, 'Standup', '2024-01-15T09:00:00Z', '2024-01-15T09:30:00Z')
    result = ConflictDetector().check(
        '2024-01-15T09:00:00Z', '2024-01-15T09:30:00Z', exclude_event_id=standup.id
    )
    assert result['has_conflicts'] is False


def test_unknown_excluded_event(store):
    with pytest.raises(NotFoundError):
        ConflictDetector().check('2024-01-15T09:00:00Z', '2024-01-15T09:30:00Z', exclude_event_id=9999)


def test_point_check_inside_event(store):
    _event(store, 'Workshop', '2024-01-15T09:00:00Z', '2024-01-15T12:00:00Z')
    result = ConflictDetector().check('2024-01-15T10:00:00Z')
    assert result['has_conflicts'] is True
    assert result['conflicts'][0]['overlap_minutes'] == 0


def test_event_without_end_occupies_its_start(store):
    _event(store, 'Reminder', '2024-01-15T09:10:00Z')
    _event(store, 'At the edge', '2024-01-15T09:00:00Z')
    result = ConflictDetector().check('2024-01-15T09:00:00Z', '2024-01-15T09:30:00Z')
    assert [c['event']['title'] for c in result['conflicts']] == ['Reminder']
    assert result['conflicts'][0]['overlap_minutes'] == 0


def test_overlap_minutes_rounds_half_up(store):
    _event(store, 'Quick call', '2024-01-15T09:00:00Z', '2024-01-15T09:01:30Z')
    result = ConflictDetector().check('2024-01-15T09:00:00Z', '2024-01-15T10:00:00Z')
    assert result['conflicts'][0]['overlap_minutes'] == 2


def test_overlap_minutes_helper():
    start = datetime(2024, 1, 15, 9, 0)
    assert overlap_minutes(start, datetime(2024, 1, 15, 9, 0, 29)) == 0
    assert overlap_minutes(start, datetime(2024, 1, 15, 9, 0, 30)) == 1
    assert overlap_minutes(start, datetime(2024, 1, 15, 9, 45)) == 45
    assert overlap_minutes(start, start) == 0


def test_invalid_inputs(store):
    with pytest.raises(ValidationError):
        ConflictDetector().check('tomorrow morning')
    with pytest.raises(ValidationError):
        ConflictDetector().check('2024-01-15T09:00:00Z', 'noon')
    with pytest.raises(ValidationError):
        ConflictDetector().check('2024-01-15T09:00:00Z', '2024-01-15T08:00:00Z')
