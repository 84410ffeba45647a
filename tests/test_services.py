from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest

from emission_engine.api.emission_service import EmissionCalculationService
from emission_engine.api.errors import ConfigurationMissing, InvalidInput, RecordNotFound
from emission_engine.api.periods import make_period
from emission_engine.main import build_services
from emission_engine.models.emission_data import ActivityRecord, ScopeConfiguration


@pytest.fixture
def ingestion(services):
    return services['ingestion']


@pytest.fixture
def calculations(services):
    return services['calculations']


def _api_entry(ingestion, value, date='10/02/2024', time='10:00', scope='S1-diesel', node='n1'):
    return ingestion.save_api_entry('c1', node, scope, {'fuelConsumption': value, 'date': date, 'time': time})


class TestIngestion:
    def test_api_entry_is_tracked_and_calculated(self, ingestion, store):
        record = _api_entry(ingestion, 10)

        assert record.input_type == 'API'
        assert record.timestamp == datetime(2024, 2, 10, 4, 30, tzinfo=timezone.utc)
        assert record.date == '10/02/2024'
        assert record.processing_status == 'processed'
        assert record.emission_calculation_status == 'completed'
        assert record.summary_update_status == 'completed'
        assert record.calculated_emissions['incoming']['fuel_consumption']['CO2e'] == pytest.approx(25.45)
        assert record.data_entry_cumulative.entry_count == 1
        assert record.validation_status == 'valid'

        summary = store.find_summary('c1', make_period('monthly', 2024, 2))
        assert summary['total_emissions']['CO2e'] == pytest.approx(0.02545)

    def test_save_publishes_event(self, ingestion, sink):
        record = _api_entry(ingestion, 10)

        saved_events = [c for c in sink.publish.call_args_list if c.args[0] == 'data-entry-saved']
        assert len(saved_events) == 1
        assert saved_events[0].args[2]['record_id'] == record.id

    def test_iot_entries_form_their_own_stream(self, ingestion):
        _api_entry(ingestion, 10)

        record = ingestion.save_iot_entry('c1', 'n1', 'S1-diesel', {'fuel_consumption': 4, 'date': '11/02/2024', 'time': '10:00'})

        assert record.input_type == 'IOT'
        assert record.cumulative_values == {'fuel_consumption': 4}

    def test_manual_entries_partial_failure(self, ingestion):
        outcome = ingestion.save_manual_entries('c1', 'n1', 'S2-grid', [
            {'electricity': 100, 'date': '01/03/2024', 'time': '09:00'},
            {'electricity': 'abc', 'date': '02/03/2024', 'time': '09:00'},
        ])

        assert outcome['saved_count'] == 1
        assert outcome['failed_count'] == 1
        assert outcome['errors'][0]['row'] == 2
        assert 'must be numeric' in outcome['errors'][0]['error']

    def test_manual_entries_require_rows(self, ingestion):
        with pytest.raises(InvalidInput):
            ingestion.save_manual_entries('c1', 'n1', 'S2-grid', [])

    def test_unknown_scope(self, ingestion):
        with pytest.raises(ConfigurationMissing):
            ingestion.save_api_entry('c1', 'n1', 'S9-none', {'x': 1})

    def test_csv_rows_accumulate(self, ingestion, store):
        content = b'date,time,electricity\n01/03/2024,09:00,100\n02/03/2024,09:00,50\n'

        outcome = ingestion.save_csv_entries('c1', 'n1', 'S2-grid', content, 'march.csv')

        assert outcome['saved_count'] == 2
        assert outcome['filename'] == 'march.csv'
        last = store.get_record(outcome['entries'][1].id)
        assert last.input_type == 'manual'
        assert last.cumulative_values == {'consumed_electricity': 150}
        assert last.calculated_emissions['cumulative']['consumed_electricity']['CO2e'] == pytest.approx(75)

    def test_csv_without_rows(self, ingestion):
        with pytest.raises(InvalidInput, match='no data rows'):
            ingestion.save_csv_entries('c1', 'n1', 'S2-grid', b'date,electricity\n')

    def test_back_dated_entry_recalculates_later_entries(self, ingestion, store):
        later = _api_entry(ingestion, 20, date='03/01/2024')

        _api_entry(ingestion, 10, date='01/01/2024')

        stored = store.get_record(later.id)
        assert stored.cumulative_values == {'fuel_consumption': 30}
        assert stored.calculated_emissions['cumulative']['fuel_consumption']['CO2e'] == pytest.approx(76.35)


class TestEditAndDelete:
    def test_edit_values_rebuilds_later_entries(self, ingestion, store, sink):
        first = _api_entry(ingestion, 10, date='01/01/2024')
        second = _api_entry(ingestion, 20, date='02/01/2024')

        edited = ingestion.edit_entry(first.id, {'fuel_consumption': 5})

        assert edited.data_values == {'fuel_consumption': 5}
        stored = store.get_record(second.id)
        assert stored.cumulative_values == {'fuel_consumption': 25}
        assert stored.calculated_emissions['cumulative']['fuel_consumption']['CO2e'] == pytest.approx(63.625)
        assert sink.publish.call_args.args[0] == 'data-entry-edited'

    def test_edit_date_moves_entry(self, ingestion, store):
        first = _api_entry(ingestion, 10, date='01/01/2024')
        second = _api_entry(ingestion, 20, date='02/01/2024')

        ingestion.edit_entry(first.id, date='03/01/2024')

        assert store.get_record(second.id).cumulative_values == {'fuel_consumption': 20}
        assert store.get_record(first.id).cumulative_values == {'fuel_consumption': 30}
        assert store.get_record(first.id).date == '03/01/2024'

    def test_edit_rejects_non_numeric(self, ingestion):
        record = _api_entry(ingestion, 10)

        with pytest.raises(InvalidInput):
            ingestion.edit_entry(record.id, {'fuel_consumption': 'lots'})

    def test_edit_unknown_entry(self, ingestion):
        with pytest.raises(RecordNotFound):
            ingestion.edit_entry('missing', {'fuel_consumption': 1})

    def test_delete_rebuilds_stream(self, ingestion, store, sink):
        first = _api_entry(ingestion, 10, date='01/01/2024')
        second = _api_entry(ingestion, 20, date='02/01/2024')

        result = ingestion.delete_entry(first.id)

        assert result == {'record_id': first.id, 'deleted': True, 'rebuilt_count': 1}
        remaining = store.get_record(second.id)
        assert remaining.cumulative_values == {'fuel_consumption': 20}
        assert remaining.data_entry_cumulative.entry_count == 1
        assert store.get_record(first.id) is None
        assert sink.publish.call_args.args[0] == 'data-entry-deleted'

    def test_delete_last_entry_keeps_stored_summary(self, ingestion, store):
        record = _api_entry(ingestion, 10)

        ingestion.delete_entry(record.id)

        summary = store.find_summary('c1', make_period('monthly', 2024, 2))
        assert summary['metadata']['version'] == 1

    def test_delete_unknown_entry(self, ingestion):
        with pytest.raises(RecordNotFound):
            ingestion.delete_entry('missing')


class TestCalculationService:
    def test_recalculation_is_idempotent(self, ingestion, calculations, store):
        record = _api_entry(ingestion, 10)

        first = calculations.calculate_emissions('c1', 'n1', 'S1-diesel', record.id)
        second = calculations.calculate_emissions('c1', 'n1', 'S1-diesel', record.id)

        assert first == second
        assert store.get_record(record.id).calculated_emissions == second['emissions']

    def test_unknown_record(self, calculations):
        with pytest.raises(RecordNotFound):
            calculations.calculate_emissions('c1', 'n1', 'S1-diesel', 'missing')

    def test_unsupported_category_marks_record_failed(self, ingestion, calculations, store):
        record = ingestion.save_api_entry('c1', 'n1', 'S2-water', {'consumed_electricity': 10})

        result = calculations.calculate_emissions('c1', 'n1', 'S2-water', record.id)

        stored = store.get_record(record.id)
        assert result['success'] is False
        assert stored.emission_calculation_status == 'failed'
        assert stored.processing_status == 'pending'
        assert 'Unsupported Scope 2 category' in stored.emission_calculation_error

    def test_missing_scope_configuration(self, calculations, store):
        record = store.insert_record(ActivityRecord(
            client_id='c1', node_id='n1', scope_identifier='gone', timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ))

        with pytest.raises(ConfigurationMissing):
            calculations.calculate_emissions('c1', 'n1', 'gone', record.id)

    def test_invalid_scope_type(self, calculations, store):
        record = store.insert_record(ActivityRecord(
            client_id='c1', node_id='n1', scope_identifier='S1-diesel', scope_type='Scope 5',
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc),
        ))

        with pytest.raises(InvalidInput):
            calculations.calculate_emissions('c1', 'n1', 'S1-diesel', record.id)

    def test_batch_recalculation(self, ingestion, calculations, store):
        _api_entry(ingestion, 10, date='01/01/2024')
        _api_entry(ingestion, 20, date='02/01/2024')
        ingestion.save_api_entry('c1', 'n1', 'S2-water', {'consumed_electricity': 10, 'date': '03/01/2024', 'time': '10:00'})

        outcome = calculations.recalculate_emissions_batch('c1', batch_size=2)

        assert outcome['total'] == 3
        assert outcome['success'] == 2
        assert outcome['failed'] == 1
        assert 'Unsupported Scope 2 category' in outcome['errors'][0]['error']
        assert store.find_summary('c1', make_period('yearly', 2024)) is not None
        assert store.find_summary('c1', make_period('all-time')) is not None

    def test_batch_filters_by_node(self, ingestion, calculations):
        _api_entry(ingestion, 10)
        ingestion.save_api_entry('c1', 'n2', 'S2-grid', {'electricity': 5})

        outcome = calculations.recalculate_emissions_batch('c1', node_id='n2', recalculate_summaries=False)

        assert outcome == {'total': 1, 'success': 1, 'failed': 0, 'errors': []}

    def test_prerequisites(self, calculations):
        assert calculations.validate_emission_prerequisites('c1', 'n1', 'S1-diesel')['is_valid'] is True
        assert calculations.validate_emission_prerequisites('c1', 'n1', 'nope')['message'] == 'Scope configuration not found'
        assert calculations.validate_emission_prerequisites('ghost', 'n1', 'S1-diesel')['message'] == (
            'No active flowchart found for client'
        )

    def test_leased_assets_use_node_building_total(self, store):
        aggregator = MagicMock()
        aggregator.get_node_s1_s2_from_latest_summary.return_value = 200.0
        service = EmissionCalculationService(store, aggregator)
        config = ScopeConfiguration(
            scope_identifier='S3-lease',
            scope_type='Scope 3',
            category_name='Upstream Leased Assets',
            calculation_model='tier 2',
        )
        record = ActivityRecord(
            client_id='c1', node_id='n1', scope_identifier='S3-lease', scope_type='Scope 3',
            timestamp=datetime(2024, 1, 1, tzinfo=timezone.utc), data_values={'leased_area': 10},
        )

        values = service._calculation_values(record, config)

        assert values['building_total_s1_s2'] == 200.0
        aggregator.get_node_s1_s2_from_latest_summary.assert_called_once_with('c1', 'n1')


def test_second_refresh_phase_is_queued(settings, store, sink):
    scheduler = MagicMock()
    services = build_services(settings, store, sink, job_scheduler=scheduler)

    _api_entry(services['ingestion'], 10)

    job_ids = [c.kwargs['id'] for c in scheduler.add_job.call_args_list]
    assert 'summary:c1:monthly:2024:2' in job_ids
    assert 'summary:c1:all-time' in job_ids
