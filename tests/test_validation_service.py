from datetime import date, datetime

import pytest

from services.errors import ValidationError
from services.validation_service import (
    clean_color,
    clean_text,
    format_instant,
    parse_bool,
    parse_day_value,
    parse_instant,
    parse_int,
    require_day,
)


def test_parse_instant_normalizes_offsets_to_utc():
    assert parse_instant('2024-01-15T10:00:00+01:00') == datetime(2024, 1, 15, 9, 0)
    assert parse_instant('2024-01-15T09:00:00Z') == datetime(2024, 1, 15, 9, 0)


def test_parse_instant_reads_naive_values_as_utc():
    assert parse_instant('2024-01-15T09:00:00') == datetime(2024, 1, 15, 9, 0)


def test_parse_instant_rejects_garbage():
    assert parse_instant('next tuesday') is None
    assert parse_instant('') is None
    assert parse_instant(None) is None


def test_format_instant_carries_utc_offset():
    assert format_instant(datetime(2024, 1, 15, 9, 0)) == '2024-01-15T09:00:00+00:00'
    assert format_instant(None) is None


def test_parse_day_value_is_strict():
    assert parse_day_value('2024-02-29') == date(2024, 2, 29)
    assert parse_day_value('2023-02-29') is None
    assert parse_day_value('2024-1-5') is None
    assert parse_day_value('20240105') is None


def test_require_day_raises_with_format_hint():
    with pytest.raises(ValidationError) as excinfo:
        require_day('01/05/2024')
    assert excinfo.value.message == 'Invalid date format. Use YYYY-MM-DD'
    assert excinfo.value.status_code == 400


def test_parse_bool_accepts_query_string_spellings():
    for raw in ('1', 'true', 'TRUE', 'yes', 'on', True):
        assert parse_bool(raw) is True
    for raw in ('0', 'false', 'no', '', False):
        assert parse_bool(raw) is False
    assert parse_bool(None, default=True) is True


def test_parse_int():
    assert parse_int('42', 'task_id') == 42
    assert parse_int(None, 'task_id') is None
    with pytest.raises(ValidationError):
        parse_int('abc', 'task_id')
    with pytest.raises(ValidationError):
        parse_int(True, 'task_id')


def test_clean_text_trims_and_limits():
    assert clean_text('  Standup  ', 'title', 200, required=True) == 'Standup'
    assert clean_text('   ', 'location', 200) is None
    with pytest.raises(ValidationError) as excinfo:
        clean_text('   ', 'title', 200, required=True)
    assert excinfo.value.message == 'Event title is required'
    with pytest.raises(ValidationError) as excinfo:
        clean_text('x' * 201, 'title', 200)
    assert excinfo.value.message == 'Title must be 200 characters or fewer'


def test_clean_color():
    assert clean_color('#1a2B3c') == '#1a2B3c'
    assert clean_color(None) is None
    for bad in ('red', '#12345', '#1234567', '123456'):
        with pytest.raises(ValidationError):
            clean_color(bad)
