from datetime import datetime, timedelta, timezone

import pytest

from emission_engine.api.cumulative import (
    CumulativeStreamTracker,
    compute_stream,
    validate_cumulative_values,
    validate_data_quality,
)
from emission_engine.api.errors import InvalidInput
from emission_engine.api.store import InMemoryDocumentStore
from emission_engine.models.emission_data import ActivityRecord

JAN_1 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _record(day, value, input_type='manual', **overrides):
    fields = dict(
        client_id='c1',
        node_id='n1',
        scope_identifier='S1-diesel',
        scope_type='Scope 1',
        input_type=input_type,
        timestamp=JAN_1 + timedelta(days=day - 1),
        data_values={'fuel_consumption': value},
        emission_factor='Custom',
    )
    fields.update(overrides)
    return ActivityRecord(**fields)


def test_compute_stream_running_totals():
    records = [_record(3, 20), _record(1, 10), _record(2, 5)]

    ordered = compute_stream(records)

    assert [r.data_values['fuel_consumption'] for r in ordered] == [10, 5, 20]
    assert [r.cumulative_values['fuel_consumption'] for r in ordered] == [10, 15, 35]
    assert [r.high_data['fuel_consumption'] for r in ordered] == [10, 10, 20]
    assert [r.low_data['fuel_consumption'] for r in ordered] == [10, 5, 5]
    assert [r.data_entry_cumulative.entry_count for r in ordered] == [1, 2, 3]
    assert ordered[-1].data_entry_cumulative.cumulative_total_value == 35
    assert ordered[-1].data_entry_cumulative.incoming_total_value == 20
    assert ordered[-1].last_entered_data == {'fuel_consumption': 20}


def test_cumulative_equals_sum_of_predecessors():
    ordered = compute_stream([_record(day, day * 1.5) for day in range(1, 8)])

    for index, record in enumerate(ordered):
        expected = sum(r.data_values['fuel_consumption'] for r in ordered[:index + 1])
        assert record.cumulative_values['fuel_consumption'] == pytest.approx(expected)


def test_compute_stream_is_idempotent():
    records = [_record(1, 10), _record(2, 5)]

    first = [r.model_dump() for r in compute_stream(records)]
    second = [r.model_dump() for r in compute_stream(records)]

    assert first == second


def test_new_key_starts_from_zero():
    ordered = compute_stream([
        _record(1, 10),
        _record(2, 5, data_values={'fuel_consumption': 5, 'other': 2}),
    ])

    assert ordered[1].cumulative_values == {'fuel_consumption': 15, 'other': 2}


def test_non_finite_values_count_as_zero():
    ordered = compute_stream([_record(1, '4.5'), _record(2, float('inf'))])

    assert ordered[1].cumulative_values == {'fuel_consumption': 4.5}
    assert ordered[1].last_entered_data == {'fuel_consumption': 0.0}
    assert ordered[1].data_entry_cumulative.cumulative_total_value == 4.5


def test_validate_cumulative_values():
    assert validate_cumulative_values({'a': '1.5', 'b': 2}) == {'a': 1.5, 'b': 2.0}

    with pytest.raises(InvalidInput, match='Value for key "b" must be numeric'):
        validate_cumulative_values({'a': 1, 'b': 'abc'})


class TestValidateDataQuality:
    def test_valid(self):
        assert validate_data_quality(_record(1, 10), now=JAN_1 + timedelta(days=1)) == ('valid', [])

    def test_empty_values_invalid(self):
        status, errors = validate_data_quality(_record(1, 10, data_values={}), now=JAN_1)

        assert status == 'invalid'
        assert errors[0]['message'] == 'No data values provided'

    def test_future_and_missing_factor_warn(self):
        status, errors = validate_data_quality(_record(5, 10, emission_factor=None), now=JAN_1)

        assert status == 'warning'
        assert len(errors) == 2


class TestTracker:
    @pytest.fixture
    def store(self):
        return InMemoryDocumentStore()

    @pytest.fixture
    def tracker(self, store):
        return CumulativeStreamTracker(store)

    def _insert(self, store, tracker, record):
        return tracker.track_new_record(store.insert_record(record))

    def test_appending_advances_from_predecessor(self, store, tracker):
        self._insert(store, tracker, _record(1, 10))
        affected = self._insert(store, tracker, _record(2, 5))

        assert len(affected) == 1
        assert affected[0].cumulative_values['fuel_consumption'] == 15
        assert store.get_record(affected[0].id).data_entry_cumulative.entry_count == 2

    def test_back_dated_insert_rebuilds_later_records(self, store, tracker):
        self._insert(store, tracker, _record(1, 10))
        later = self._insert(store, tracker, _record(3, 20))[0]

        affected = self._insert(store, tracker, _record(2, 5))

        assert [r.id for r in affected][1] == later.id
        assert affected[0].cumulative_values['fuel_consumption'] == 15
        assert store.get_record(later.id).cumulative_values['fuel_consumption'] == 35
        assert store.get_record(later.id).data_entry_cumulative.entry_count == 3

    def test_streams_are_separated_by_input_type(self, store, tracker):
        self._insert(store, tracker, _record(1, 10))
        affected = self._insert(store, tracker, _record(2, 7, input_type='API'))

        assert affected[0].cumulative_values['fuel_consumption'] == 7

    def test_rebuild_after_delete(self, store, tracker):
        first = self._insert(store, tracker, _record(1, 10))[0]
        second = self._insert(store, tracker, _record(2, 5))[0]
        store.delete_record(first.id)

        rebuilt = tracker.rebuild_stream_cumulatives('c1', 'n1', 'S1-diesel', 'manual')

        assert [r.id for r in rebuilt] == [second.id]
        assert store.get_record(second.id).cumulative_values['fuel_consumption'] == 5

    def test_identical_timestamps_are_ordered_by_id(self, store, tracker):
        self._insert(store, tracker, _record(1, 10, id='b', created_at=JAN_1))

        affected = self._insert(store, tracker, _record(1, 5, id='a', created_at=JAN_1))

        assert [r.id for r in affected] == ['a', 'b']
        assert [r.id for r in store.find_records('c1')] == ['a', 'b']
        assert store.get_record('b').cumulative_values['fuel_consumption'] == 15
        assert store.get_record('b').data_entry_cumulative.entry_count == 2

    def test_latest_cumulative(self, store, tracker):
        assert tracker.get_latest_cumulative('c1', 'n1', 'S1-diesel')['data_entry_cumulative']['entry_count'] == 0

        self._insert(store, tracker, _record(1, 10))
        self._insert(store, tracker, _record(2, 5))
        latest = tracker.get_latest_cumulative('c1', 'n1', 'S1-diesel', 'manual')

        assert latest['cumulative_values'] == {'fuel_consumption': 15}
        assert latest['high_data'] == {'fuel_consumption': 10}
        assert latest['data_entry_cumulative']['entry_count'] == 2
