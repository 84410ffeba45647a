from datetime import datetime, timezone

import pytest

from emission_engine.api.errors import InvalidInput, RecordNotFound
from emission_engine.api.periods import make_period
from emission_engine.api.summary import (
    GroupingKey,
    SummaryAggregator,
    calculate_trends,
    extract_emission_values,
    trend,
)

FEB = datetime(2024, 2, 10, 6, 0, tzinfo=timezone.utc)
JAN = datetime(2024, 1, 15, 6, 0, tzinfo=timezone.utc)


@pytest.fixture
def aggregator(store, sink, settings):
    return SummaryAggregator(store, sink, settings)


@pytest.fixture
def february(store, make_record):
    records = [
        make_record(2000, FEB),
        make_record(
            1000, FEB,
            scope_identifier='S2-grid', scope_type='Scope 2', input_type='API', emission_factor='Country',
        ),
        make_record(500, FEB, scope_type='Scope 9'),
        make_record(4000, FEB, processing_status='pending'),
    ]
    return [store.insert_record(r) for r in records]


class TestExtractEmissionValues:
    def test_prefers_cumulative_in_tonnes(self):
        values = extract_emission_values({
            'incoming': {'a': {'CO2e': 500}},
            'cumulative': {'a': {'CO2e': 2000, 'CO2': 1500}, 'b': {'CO2e': 1000, 'combined_uncertainty': 100}},
        })

        assert values['CO2e'] == 3
        assert values['CO2'] == 1.5
        assert values['uncertainty'] == 0.1

    def test_falls_back_to_incoming(self):
        values = extract_emission_values({'incoming': {'a': {'CO2e': 500}}, 'cumulative': {'a': {'CO2e': 0}}})

        assert values['CO2e'] == 0.5

    def test_uses_emission_when_co2e_missing(self):
        assert extract_emission_values({'incoming': {'fugitive': {'emission': 250}}})['CO2e'] == 0.25

    def test_empty(self):
        assert extract_emission_values(None)['CO2e'] == 0


def test_trend_from_zero_is_full_increase():
    assert trend(5, 0) == {'value': 5, 'percentage': 100, 'direction': 'up'}


def test_trend_unchanged():
    assert trend(10, 10) == {'value': 0, 'percentage': 0, 'direction': 'same'}


def test_trend_decrease_and_both_zero():
    assert trend(5, 10) == {'value': -5, 'percentage': -50.0, 'direction': 'down'}
    assert trend(0, 0) == {'value': 0, 'percentage': 0, 'direction': 'same'}


def test_calculate_trends_handles_missing_previous_scopes():
    current = {'total_emissions': {'CO2e': 4}, 'by_scope': {s: {'CO2e': 1} for s in ('Scope 1', 'Scope 2', 'Scope 3')}}
    previous = {'total_emissions': {'CO2e': 2}}

    trends = calculate_trends(current, previous)

    assert trends['total_emissions_change']['percentage'] == 100
    assert trends['scope_changes']['Scope 2']['direction'] == 'up'


@pytest.mark.parametrize('raw,expected', [
    ('Plant A', 'Plant A'),
    ('v1.2.3', 'v1_2_3'),
    ('', 'invalid_key'),
    ('   ', 'invalid_key'),
    (None, 'invalid_key'),
    (42, 'invalid_key'),
])
def test_grouping_key(raw, expected):
    assert GroupingKey(raw) == expected


class TestCalculateEmissionSummary:
    def test_no_flowchart_returns_none(self, aggregator):
        assert aggregator.calculate_emission_summary('ghost', 'monthly', 2024, 2) is None

    def test_groupings(self, aggregator, february):
        summary = aggregator.calculate_emission_summary('c1', 'monthly', 2024, 2, user_id='u1')

        assert summary['total_emissions']['CO2e'] == pytest.approx(3.5)
        assert summary['total_emissions']['data_point_count'] == 3
        assert summary['by_scope']['Scope 1']['CO2e'] == pytest.approx(2)
        assert summary['by_scope']['Scope 2']['CO2e'] == pytest.approx(1)
        assert summary['by_category']['Stationary Combustion']['activities']['Diesel']['CO2e'] == pytest.approx(2.5)
        assert summary['by_activity']['Grid']['category_name'] == 'Purchased Electricity'
        assert summary['by_node']['n1']['by_scope']['Scope 1']['data_point_count'] == 1
        assert summary['by_department']['Operations']['node_count'] == 1
        assert summary['by_location']['Pune']['CO2e'] == pytest.approx(3.5)
        assert summary['by_input_type']['API']['CO2e'] == pytest.approx(1)
        assert summary['by_input_type']['manual']['data_point_count'] == 2
        assert summary['by_emission_factor']['Custom']['scope_types']['Scope 1'] == 1
        assert summary['metadata']['calculated_by'] == 'u1'
        assert summary['metadata']['total_data_points'] == 3
        assert summary['trends'] is None

    def test_scope_totals_never_exceed_total(self, aggregator, february):
        summary = aggregator.calculate_emission_summary('c1', 'monthly', 2024, 2)

        by_scope = sum(v['CO2e'] for v in summary['by_scope'].values())
        assert by_scope <= summary['total_emissions']['CO2e']

    def test_unknown_node_recorded_as_error(self, aggregator, store, make_record):
        store.insert_record(make_record(1000, FEB, node_id='gone'))

        summary = aggregator.calculate_emission_summary('c1', 'monthly', 2024, 2)

        assert summary['total_emissions']['CO2e'] == 0
        assert summary['metadata']['errors'] == ['Node gone not found in flowchart']

    def test_records_outside_period_ignored(self, aggregator, store, make_record):
        store.insert_record(make_record(1000, datetime(2024, 3, 1, tzinfo=timezone.utc)))

        summary = aggregator.calculate_emission_summary('c1', 'monthly', 2024, 2)

        assert summary['metadata']['total_data_points'] == 0

    def test_trends_against_previous_period(self, aggregator, store, make_record, february):
        store.insert_record(make_record(1000, JAN))
        aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 1)

        summary = aggregator.calculate_emission_summary('c1', 'monthly', 2024, 2)

        total = summary['trends']['total_emissions_change']
        assert total['value'] == pytest.approx(2.5)
        assert total['percentage'] == 250
        assert total['direction'] == 'up'
        assert summary['trends']['scope_changes']['Scope 2']['percentage'] == 100


class TestSaving:
    def test_version_increments_and_events(self, aggregator, store, sink, february):
        first = aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2)
        second = aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2)

        assert first['metadata']['version'] == 1
        assert second['metadata']['version'] == 2
        assert [c.args[0] for c in sink.publish.call_args_list] == ['summary-created', 'summary-updated']
        assert len(store.list_summaries('c1', 'monthly')) == 1

    def test_empty_period_not_saved(self, aggregator, store):
        assert aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2) is None
        assert store.list_summaries('c1') == []

    def test_update_summaries_on_data_change(self, aggregator, store, february):
        periods = aggregator.update_summaries_on_data_change(february[0])

        assert [p['type'] for p in periods] == ['daily', 'monthly', 'yearly', 'all-time']
        assert store.find_summary('c1', make_period('daily', 2024, 2, day=10)) is not None
        assert store.find_summary('c1', make_period('all-time')) is not None


class TestReading:
    def test_stored_summary_returned(self, aggregator, february):
        aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2)

        summary = aggregator.get_emission_summary('c1', 'monthly', 2024, 2)

        assert summary['metadata']['version'] == 1

    def test_missing_summary_is_computed(self, aggregator, february):
        summary = aggregator.get_emission_summary('c1', 'monthly', 2024, 2)

        assert summary['total_emissions']['CO2e'] == pytest.approx(3.5)

    def test_stale_summary_is_recomputed(self, aggregator, february):
        aggregator.settings['stale_after_seconds'] = -1
        aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2)

        assert aggregator.get_emission_summary('c1', 'monthly', 2024, 2)['metadata']['version'] == 2

    def test_empty_period_falls_back_to_latest_earlier_summary(self, aggregator, february):
        aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2)

        summary = aggregator.get_emission_summary('c1', 'monthly', 2024, 4)

        assert summary['period']['month'] == 2
        assert summary['metadata']['fallback_for'] == make_period('monthly', 2024, 4)

    def test_no_fallback_when_disabled(self, aggregator, february):
        aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2)

        with pytest.raises(RecordNotFound):
            aggregator.get_emission_summary('c1', 'monthly', 2024, 4, prefer_latest=False)

    def test_latest_without_period_parts(self, aggregator, make_record, store):
        store.insert_record(make_record(1000, JAN))
        aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 1)

        assert aggregator.get_emission_summary('c1', 'monthly')['period']['month'] == 1

    def test_invalid_period_type(self, aggregator):
        with pytest.raises(InvalidInput):
            aggregator.get_emission_summary('c1', 'hourly', 2024, 1)

    def test_multiple_summaries_newest_first(self, aggregator, store, make_record, february):
        store.insert_record(make_record(1000, JAN))
        store.insert_record(make_record(1000, datetime(2023, 12, 5, tzinfo=timezone.utc)))
        for year, month in ((2023, 12), (2024, 1), (2024, 2)):
            aggregator.recalculate_and_save_summary('c1', 'monthly', year, month)

        summaries = aggregator.get_multiple_summaries('c1', 'monthly', limit=2)
        in_2024 = aggregator.get_multiple_summaries('c1', 'monthly', 2024, 1, 2024, 12)

        assert [(s['period']['year'], s['period']['month']) for s in summaries] == [(2024, 2), (2024, 1)]
        assert len(in_2024) == 2


class TestFilteredSummary:
    @pytest.fixture(autouse=True)
    def saved(self, aggregator, february):
        aggregator.recalculate_and_save_summary('c1', 'monthly', 2024, 2)

    def test_scope(self, aggregator):
        result = aggregator.get_filtered_summary('c1', 'monthly', 2024, 2, scope='Scope 2')

        assert result['filter_type'] == 'scope'
        assert list(result['data']['categories']) == ['Purchased Electricity']
        assert result['data']['nodes']['n1']['scope_emissions']['CO2e'] == pytest.approx(1)

    def test_invalid_scope(self, aggregator):
        with pytest.raises(InvalidInput):
            aggregator.get_filtered_summary('c1', 'monthly', 2024, 2, scope='Scope 4')

    def test_category_percentage(self, aggregator):
        result = aggregator.get_filtered_summary('c1', 'monthly', 2024, 2, category='Purchased Electricity')

        assert result['data']['percentage'] == pytest.approx(28.57)

    def test_department_and_location(self, aggregator):
        department = aggregator.get_filtered_summary('c1', 'monthly', 2024, 2, department='Operations')
        location = aggregator.get_filtered_summary('c1', 'monthly', 2024, 2, location='Pune')

        assert department['data']['node_count'] == 1
        assert list(location['data']['nodes']) == ['n1']

    def test_unknown_slice(self, aggregator):
        with pytest.raises(RecordNotFound, match="Node ID 'n9'"):
            aggregator.get_filtered_summary('c1', 'monthly', 2024, 2, node_id='n9')

    def test_full_summary_without_filters(self, aggregator):
        assert aggregator.get_filtered_summary('c1', 'monthly', 2024, 2)['filter_type'] == 'full'

    def test_missing_summary(self, aggregator):
        with pytest.raises(RecordNotFound):
            aggregator.get_filtered_summary('c1', 'monthly', 2023, 2)


def test_scope12_totals(aggregator, february):
    aggregator.update_summaries_on_data_change(february[0])

    totals = aggregator.get_latest_scope12_total('c1')

    assert totals['latest_period']['type'] == 'all-time'
    assert totals['scope1_co2e'] == pytest.approx(2)
    assert totals['scope2_co2e'] == pytest.approx(1)
    assert totals['scope12_total_co2e'] == pytest.approx(3)
    assert aggregator.get_node_s1_s2_from_latest_summary('c1', 'n1') == pytest.approx(3)
    assert aggregator.get_node_s1_s2_from_latest_summary('c1', 'n2') == 0


def test_scope12_totals_without_summaries(aggregator):
    with pytest.raises(RecordNotFound):
        aggregator.get_latest_scope12_total('c1')
