from datetime import datetime, timezone

import pytest

from emission_engine.api.file_processor import is_csv_file, parse_csv_bytes
from emission_engine.api.normalizer import (
    normalize_data_payload,
    normalize_time_input,
    parse_entry_timestamp,
    to_numeric_map,
    unwrap_data_row,
)
from emission_engine.models.emission_data import ScopeConfiguration


def _config(scope_type, category, tier='tier 1', activity=''):
    return ScopeConfiguration(
        scope_identifier='s',
        scope_type=scope_type,
        category_name=category,
        activity=activity,
        calculation_model=tier,
        emission_factor='Custom',
    )


COMBUSTION = _config('Scope 1', 'Stationary Combustion')


class TestNormalizeDataPayload:
    def test_combustion_alias(self):
        assert normalize_data_payload({'fuelConsumed': 12}, COMBUSTION) == {'fuel_consumption': 12}

    def test_first_alias_wins(self):
        payload = {'consumption': 3, 'fuelConsumption': 7}

        assert normalize_data_payload(payload, COMBUSTION) == {'fuel_consumption': 7}

    def test_missing_field_defaults_to_zero(self):
        assert normalize_data_payload({}, COMBUSTION) == {'fuel_consumption': 0}

    def test_csv_values_coerced(self):
        config = _config('Scope 2', 'Purchased Steam')

        assert normalize_data_payload({'steam': '42.5'}, config, 'CSV') == {'consumed_steam': 42.5}
        assert normalize_data_payload({'steam': 'n/a'}, config, 'CSV') == {'consumed_steam': 0.0}

    def test_non_csv_values_kept_raw(self):
        config = _config('Scope 2', 'Purchased Electricity')

        assert normalize_data_payload({'electricity': 'abc'}, config) == {'consumed_electricity': 'abc'}

    def test_wrapped_values_are_aliased_like_flat_rows(self):
        config = _config('Scope 3', 'Purchased Goods and Services')
        wrapped = {'dataValues': {'procurementSpend': 100}, 'date': '01/01/2024'}

        assert normalize_data_payload(wrapped, config) == normalize_data_payload({'procurementSpend': 100}, config)
        assert normalize_data_payload(wrapped, config) == {'procurement_spend': 100, 'physical_quantity': 0}
        assert normalize_data_payload({'data_values': {'fuelConsumed': 7}}, COMBUSTION) == {'fuel_consumption': 7}

    def test_unsupported_scope2_category_falls_back_to_electricity(self):
        config = _config('Scope 2', 'Purchased Water')

        assert normalize_data_payload({'power_electricity': 9}, config) == {'consumed_electricity': 9}

    def test_generic_fugitive_uses_refrigeration_fields(self):
        config = _config('Scope 1', 'Fugitive Emissions', activity='Fire suppression')

        normalized = normalize_data_payload({'numberOfUnits': 4, 'leakage': 0.1}, config)

        assert normalized['number_of_units'] == 4
        assert normalized['leakage_rate'] == 0.1
        assert normalized['purchases'] == 0

    def test_optional_keys_omitted_when_absent(self):
        config = _config('Scope 3', 'Investments')

        normalized = normalize_data_payload({'investeeRevenue': 5}, config)

        assert normalized['investee_revenue'] == 5
        assert 'equity_share' not in normalized

    def test_leased_assets_keep_unparseable_text(self):
        config = _config('Scope 3', 'Upstream Leased Assets', tier='tier 2')

        normalized = normalize_data_payload({'leasedArea': 'n/a', 'totalArea': '1000'}, config)

        assert normalized['leased_area'] == 'n/a'
        assert normalized['total_area'] == 1000.0
        assert 'occupancy_factor' not in normalized
        assert 'building_total_s1_s2' not in normalized

    def test_employee_commuting_tier2_is_a_note(self):
        config = _config('Scope 3', 'Employee Commuting', tier='tier 2')

        assert normalize_data_payload({'employeeCount': 5}, config) == {'note': 'Tier 2 calculation in progress'}

    def test_unknown_scope3_category(self):
        assert normalize_data_payload({'x': 1}, _config('Scope 3', 'Space Tourism')) == {}

    def test_unknown_scope_type(self):
        assert normalize_data_payload({'x': 1}, _config('Scope 7', 'Whatever')) == {}


def test_to_numeric_map_drops_meta_and_text_keys():
    values = {'a': '1.5', 'b': 'x', 'c': float('inf'), 'date': '01/01/2024', 'note': 'hello'}

    assert to_numeric_map(values) == {'a': 1.5, 'b': 0.0, 'c': 0.0}


def test_unwrap_data_row_keeps_date_and_time():
    row = {' data_values ': {'a': 1}, 'date': '01/02/2024', 'time': '10:00'}

    assert unwrap_data_row(row) == {'a': 1, 'date': '01/02/2024', 'time': '10:00'}


@pytest.mark.parametrize('raw,expected', [
    ('9.5', '09:05:00'),
    ('10:30', '10:30:00'),
    ('7:5:9', '07:05:09'),
    ('', None),
    (None, None),
])
def test_normalize_time_input(raw, expected):
    assert normalize_time_input(raw) == expected


class TestParseEntryTimestamp:
    def test_wall_clock_is_ist(self):
        date_str, time_str, ts = parse_entry_timestamp({'date': '05/01/2024', 'time': '10:30'})

        assert (date_str, time_str) == ('05/01/2024', '10:30:00')
        assert ts == datetime(2024, 1, 5, 5, 0, tzinfo=timezone.utc)

    def test_year_first_dates(self):
        _, _, ts = parse_entry_timestamp({'date': '2024-01-05', 'time': '00:00'}, offset_minutes=0)

        assert ts == datetime(2024, 1, 5, tzinfo=timezone.utc)

    def test_timestamp_wins_over_date(self):
        row = {'timestamp': '2024-03-01T00:00:00Z', 'date': '01/01/2020', 'time': '00:00'}

        date_str, time_str, ts = parse_entry_timestamp(row)

        assert ts == datetime(2024, 3, 1, tzinfo=timezone.utc)
        assert (date_str, time_str) == ('01/03/2024', '05:30:00')

    def test_unusable_values_fall_back_to_now(self):
        now = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

        _, _, ts = parse_entry_timestamp({'date': 'yesterday', 'timestamp': 'soon'}, now=now)

        assert ts == now


class TestCsvParsing:
    def test_bom_and_blank_rows(self):
        content = '\ufeffdate, electricity \n01/03/2024,100\n,\n02/03/2024,50\n'.encode('utf-8')

        parsed = parse_csv_bytes(content, 'data.csv')

        assert parsed['row_count'] == 2
        assert parsed['columns'] == ['date', 'electricity']
        assert parsed['data'][1] == {'date': '02/03/2024', 'electricity': '50'}

    def test_latin1_fallback(self):
        content = 'site,electricity\nZ\xfcrich,10\n'.encode('latin-1')

        parsed = parse_csv_bytes(content, 'data.csv')

        assert parsed['data'][0]['site'] == 'Z\xfcrich'

    def test_is_csv_file(self):
        assert is_csv_file('Report.CSV')
        assert not is_csv_file('report.xlsx')
        assert not is_csv_file(None)
