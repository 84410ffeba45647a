"""
Payload normalization for manual, API, IoT and CSV activity rows.

Clients send the same quantity under many names (``fuelConsumption``,
``fuel_consumed``, ``consumption`` ...). Rows are mapped onto the canonical
snake_case keys the scope calculators read, and wall-clock date/time pairs
are resolved into UTC instants.
"""

import logging
import math
import re
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from dateutil import parser as date_parser

from emission_engine.api.calculations.categories import resolve_category_kind
from emission_engine.api.calculations.config_lookup import coerce_number
from emission_engine.models.emission_data import CalculationTier, CategoryKind, ScopeConfiguration

logger = logging.getLogger(__name__)

IST_OFFSET_MINUTES = 330
META_KEYS = ('date', 'time', 'timestamp')
CSV_INPUT = 'CSV'

AliasTable = List[Tuple[str, Tuple[str, ...]]]

SCOPE1_ALIASES: Dict[CategoryKind, AliasTable] = {
    CategoryKind.COMBUSTION: [
        ('fuel_consumption', ('fuel_consumption', 'fuelConsumption', 'fuel_consumed', 'fuelConsumed', 'consumption')),
    ],
    CategoryKind.SF6: [
        ('nameplate_capacity', ('nameplate_capacity', 'nameplateCapacity')),
        ('default_leakage_rate', ('default_leakage_rate', 'defaultLeakageRate')),
        ('decrease_inventory', ('decrease_inventory', 'decreaseInventory')),
        ('acquisitions', ('acquisitions',)),
        ('disbursements', ('disbursements',)),
        ('net_capacity_increase', ('net_capacity_increase', 'netCapacityIncrease')),
    ],
    CategoryKind.CH4_LEAKS: [
        ('activity_data', ('activity_data', 'activityData')),
        ('number_of_components', ('number_of_components', 'numberOfComponents')),
    ],
    CategoryKind.REFRIGERATION: [
        ('number_of_units', ('number_of_units', 'numberOfUnits', 'unit_count')),
        ('leakage_rate', ('leakage_rate', 'leakageRate', 'leakage')),
        ('installed_capacity', ('installed_capacity', 'installedCapacity')),
        ('end_year_capacity', ('end_year_capacity', 'endYearCapacity')),
        ('purchases', ('purchases',)),
        ('disposals', ('disposals',)),
    ],
    CategoryKind.PROCESS: [
        ('production_output', ('production_output', 'productionOutput')),
        ('raw_material_input', ('raw_material_input', 'rawMaterialInput')),
    ],
}

SCOPE2_ALIASES: Dict[CategoryKind, AliasTable] = {
    CategoryKind.PURCHASED_ELECTRICITY: [
        ('consumed_electricity', ('consumed_electricity', 'electricity', 'power_electricity', 'electricity_consumed')),
    ],
    CategoryKind.PURCHASED_STEAM: [
        ('consumed_steam', ('consumed_steam', 'steam', 'power_steam', 'steam_consumed')),
    ],
    CategoryKind.PURCHASED_HEATING: [
        ('consumed_heating', ('consumed_heating', 'heating', 'power_heating', 'heating_consumed')),
    ],
    CategoryKind.PURCHASED_COOLING: [
        ('consumed_cooling', ('consumed_cooling', 'cooling', 'power_cooling', 'cooling_consumed')),
    ],
}

TRANSPORT_SPEND_ALIASES = (
    'transportation_spend', 'transportationSpend', 'transport_spend',
    'transportSpend', 'transport_Spend', 'spendTransport',
)

SCOPE3_ALIASES: Dict[CategoryKind, AliasTable] = {
    CategoryKind.PURCHASED_GOODS: [
        ('procurement_spend', ('procurement_spend', 'procurementSpend')),
        ('physical_quantity', ('physical_quantity', 'physicalQuantity')),
    ],
    CategoryKind.CAPITAL_GOODS: [
        ('procurement_spend', ('procurement_spend', 'procurementSpend', 'capital_spend')),
        ('asset_quantity', ('asset_quantity', 'assetQuantity')),
    ],
    CategoryKind.FUEL_AND_ENERGY: [
        ('fuel_consumed', ('fuel_consumed', 'fuelConsumed')),
        ('fuel_consumption', ('fuel_consumption', 'consumed_fuel', 'consumedFuel')),
        ('electricity_consumption', ('electricity_consumption', 'electricityConsumption', 'electricity_consumed')),
        ('td_loss_factor', ('td_loss_factor', 'tdLossFactor', 'TDLossFactor')),
    ],
    CategoryKind.UPSTREAM_TRANSPORT: [
        ('transportation_spend', TRANSPORT_SPEND_ALIASES),
        ('transport_spend', TRANSPORT_SPEND_ALIASES),
        ('allocation', ('allocation', 'weight')),
        ('distance', ('distance', 'km')),
    ],
    CategoryKind.DOWNSTREAM_TRANSPORT: [
        ('transport_spend', TRANSPORT_SPEND_ALIASES),
        ('transportation_spend', TRANSPORT_SPEND_ALIASES),
        ('allocation', ('allocation', 'transportMass', 'weight')),
        ('distance', ('distance', 'transportDistance', 'km')),
    ],
    CategoryKind.WASTE: [
        ('waste_mass', ('waste_mass', 'wasteMass', 'mass_waste')),
        ('recycling_rate', ('recycling_rate', 'recyclingRate', 'defaultRecyclingRate')),
    ],
    CategoryKind.BUSINESS_TRAVEL: [
        ('travel_spend', ('travel_spend', 'travelSpend')),
        ('number_of_passengers', ('number_of_passengers', 'numberOfPassengers', 'passengers')),
        ('distance_travelled', ('distance_travelled', 'distanceTravelled', 'distance')),
        ('hotel_nights', ('hotel_nights', 'hotelNights')),
    ],
    CategoryKind.EMPLOYEE_COMMUTING: [
        ('employee_count', ('employee_count', 'employeeCount', 'employee_Count')),
        ('average_commute_distance', (
            'average_commute_distance', 'averageCommuteDistance', 'average_Commuting_Distance',
        )),
        ('working_days', ('working_days', 'workingDays', 'working_Days')),
    ],
    CategoryKind.PROCESSING_OF_SOLD_PRODUCTS: [
        ('product_quantity', ('product_quantity', 'productQuantity')),
    ],
    CategoryKind.USE_OF_SOLD_PRODUCTS: [
        ('product_quantity', ('product_quantity', 'productQuantity')),
        ('average_lifetime_energy_consumption', (
            'average_lifetime_energy_consumption', 'averageLifetimeEnergyConsumption',
        )),
        ('use_pattern', ('use_pattern', 'usePattern')),
        ('energy_efficiency', ('energy_efficiency', 'energyEfficiency')),
    ],
    CategoryKind.END_OF_LIFE: [
        ('mass_eol', ('mass_eol', 'massEol')),
        ('to_disposal', ('to_disposal', 'toDisposal')),
        ('to_landfill', ('to_landfill', 'toLandfill')),
        ('to_incineration', ('to_incineration', 'toIncineration')),
    ],
    CategoryKind.FRANCHISES: [
        ('franchise_count', ('franchise_count', 'franchiseCount', 'noOfFranchises')),
        ('avg_emission_per_franchise', (
            'avg_emission_per_franchise', 'avgEmissionPerFranchise', 'averageEmissionPerFranchise',
        )),
        ('franchise_total_s1_emission', ('franchise_total_s1_emission', 'franchiseTotalS1Emission', 'totalS1Emission')),
        ('franchise_total_s2_emission', ('franchise_total_s2_emission', 'franchiseTotalS2Emission', 'totalS2Emission')),
        ('energy_consumption', ('energy_consumption', 'energyConsumption', 'energy_Consumption')),
    ],
    CategoryKind.INVESTMENTS: [
        ('investee_revenue', ('investee_revenue', 'investeeRevenue')),
        ('investee_scope1_emission', ('investee_scope1_emission', 'investeeScope1Emission', 'scope1Emission')),
        ('investee_scope2_emission', ('investee_scope2_emission', 'investeeScope2Emission', 'scope2Emission')),
        ('energy_consumption', ('energy_consumption', 'energyConsumption')),
        ('equity_share', ('equity_share', 'equitySharePercentage', 'equity_share_percentage', 'equityShare', 'equity')),
    ],
}

LEASED_ASSET_ALIASES: AliasTable = [
    ('leased_area', ('leased_area', 'leasedArea')),
    ('total_area', ('total_area', 'totalArea')),
    ('energy_consumption', ('energy_consumption', 'energyConsumption', 'energy', 'kWh', 'MWh')),
    ('building_total_s1_s2', (
        'building_total_s1_s2', 'BuildingTotalS1_S2', 'buildingTotalS1S2', 'BuildingTotals1_S2',
    )),
    ('occupancy_factor', ('occupancy_factor', 'occupancyEF', 'occupancyFactor', 'OccupancyFactor')),
]

# keys left out of the payload when the row does not carry them, so that
# scope configuration or calculator defaults apply
OPTIONAL_KEYS = frozenset({
    'equity_share',
    'use_pattern',
    'energy_efficiency',
    'occupancy_factor',
    'building_total_s1_s2',
})

# descriptive keys that never take part in numeric tracking
TEXT_KEYS = ('note',)

_MISSING = object()


def parse_number(value: Any) -> float:
    """CSV cell to number; blanks and junk become 0"""
    number = coerce_number(value)
    return 0.0 if number is None else number


def _get_value(source: Mapping[str, Any], aliases: Tuple[str, ...], csv_input: bool, default: Any = 0) -> Any:
    for key in aliases:
        value = source.get(key)
        if value is not None:
            return parse_number(value) if csv_input else value
    return default


def _pick_keep_text(source: Mapping[str, Any], aliases: Tuple[str, ...], default: Any = 0) -> Any:
    """Numeric when possible, otherwise the raw text for diagnosis"""
    for key in aliases:
        value = source.get(key)
        if value is not None and value != '':
            number = coerce_number(value)
            return number if number is not None else value
    return default


def unwrap_data_row(row: Mapping[str, Any]) -> Dict[str, Any]:
    """Lift ``data_values``/``dataValues`` out of a wrapped row, keeping date/time/timestamp"""
    row = {str(k).strip(): v for k, v in (row or {}).items()}
    inner = row.get('data_values') if isinstance(row.get('data_values'), Mapping) else row.get('dataValues')
    if not isinstance(inner, Mapping):
        return row
    unwrapped = dict(inner)
    for key in META_KEYS:
        if key in row and key not in unwrapped:
            unwrapped[key] = row[key]
    return unwrapped


def _alias_table(scope_config: ScopeConfiguration, kind: CategoryKind) -> Optional[AliasTable]:
    if kind in SCOPE1_ALIASES:
        return SCOPE1_ALIASES[kind]
    if kind == CategoryKind.UNSUPPORTED_SCOPE1 and 'Fugitive' in (scope_config.category_name or ''):
        return SCOPE1_ALIASES[CategoryKind.REFRIGERATION]
    if kind in SCOPE2_ALIASES:
        return SCOPE2_ALIASES[kind]
    if kind == CategoryKind.UNSUPPORTED_SCOPE2:
        return SCOPE2_ALIASES[CategoryKind.PURCHASED_ELECTRICITY]
    return SCOPE3_ALIASES.get(kind)


def normalize_data_payload(
    raw: Mapping[str, Any],
    scope_config: ScopeConfiguration,
    input_type: str = 'manual',
) -> Dict[str, Any]:
    """
    Map a raw activity row onto canonical data keys

    Args:
        raw: Row as received (may wrap values in data_values/dataValues)
        scope_config: Scope the row belongs to
        input_type: 'CSV' coerces every value to a number (non-numeric -> 0)

    Returns:
        Canonical key -> value mapping (values may still be strings for non-CSV input)
    """
    source = unwrap_data_row(raw)
    csv_input = input_type == CSV_INPUT
    try:
        kind = resolve_category_kind(scope_config)
    except ValueError:
        logger.warning(f"Cannot normalize payload for unknown scope type '{scope_config.scope_type}'")
        return {}

    if kind in (CategoryKind.UPSTREAM_LEASED_ASSETS, CategoryKind.DOWNSTREAM_LEASED_ASSETS):
        return {
            key: value
            for key, value in (
                (key, _pick_keep_text(source, aliases, _MISSING if key in OPTIONAL_KEYS else 0))
                for key, aliases in LEASED_ASSET_ALIASES
            )
            if value is not _MISSING
        }

    if kind == CategoryKind.EMPLOYEE_COMMUTING and scope_config.calculation_model != CalculationTier.TIER_1.value:
        return {'note': 'Tier 2 calculation in progress'}

    table = _alias_table(scope_config, kind)
    if table is None:
        logger.warning(f"Unknown category '{scope_config.category_name}' while normalizing payload")
        return {}

    return {
        key: value
        for key, value in (
            (key, _get_value(source, aliases, csv_input, _MISSING if key in OPTIONAL_KEYS else 0))
            for key, aliases in table
        )
        if value is not _MISSING
    }


def to_numeric_map(values: Mapping[str, Any]) -> Dict[str, float]:
    """Coerce every value to a finite float; meta keys are dropped, junk becomes 0"""
    result = {}
    for key, value in (values or {}).items():
        if key in META_KEYS or key in TEXT_KEYS:
            continue
        number = coerce_number(value)
        result[key] = number if number is not None and math.isfinite(number) else 0.0
    return result


def _pad2(value: int) -> str:
    return f"{value:02d}"


def normalize_time_input(time_str: Any) -> Optional[str]:
    if time_str is None or str(time_str).strip() == '':
        return None
    text = re.sub(r'[\r\n]', '', str(time_str).strip()).replace('.', ':')
    parts = []
    for part in text.split(':')[:3]:
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    while len(parts) < 3:
        parts.append(0)
    return ':'.join(_pad2(p) for p in parts)


def _split_date(date_str: Any) -> Optional[Tuple[int, int, int]]:
    if date_str is None:
        return None
    text = re.sub(r'[\r\n]', '', str(date_str).strip())
    parts = re.sub(r'[.\-:]', '/', text).split('/')
    if len(parts) != 3:
        return None
    try:
        if len(parts[0]) == 4:
            year, month, day = int(parts[0]), int(parts[1]), int(parts[2])
        else:
            day, month, year = int(parts[0]), int(parts[1]), int(parts[2])
    except ValueError:
        return None
    if not day or not month or not year:
        return None
    return year, month, day


def build_local_timestamp(date_str: Any, time_str: Any, offset_minutes: int = IST_OFFSET_MINUTES) -> Optional[datetime]:
    """Wall-clock date/time at ``offset_minutes`` east of UTC -> UTC instant"""
    date_parts = _split_date(date_str)
    time_text = normalize_time_input(time_str)
    if not date_parts or not time_text:
        return None
    hh, mm, ss = (int(x) for x in time_text.split(':'))
    try:
        wall_clock = datetime(*date_parts, hh, mm, ss, tzinfo=timezone.utc)
    except ValueError:
        return None
    return wall_clock - timedelta(minutes=offset_minutes)


def _wall_clock_strings(instant: datetime, offset_minutes: int) -> Tuple[str, str]:
    local = instant.astimezone(timezone.utc) + timedelta(minutes=offset_minutes)
    return local.strftime('%d/%m/%Y'), local.strftime('%H:%M:%S')


def _first_key(row: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if row.get(key) is not None:
            return row[key]
    return None


def parse_entry_timestamp(
    row: Mapping[str, Any],
    offset_minutes: int = IST_OFFSET_MINUTES,
    now: Optional[datetime] = None,
) -> Tuple[str, str, datetime]:
    """
    Resolve the date, time and UTC instant of an activity row

    Args:
        row: Raw row; ``timestamp`` wins over ``date`` + ``time``
        offset_minutes: Offset of the wall-clock values from UTC (IST by default)
        now: Fallback instant when nothing usable is present

    Returns:
        (date 'DD/MM/YYYY', time 'HH:MM:SS', timezone-aware UTC timestamp)
    """
    row = {str(k).strip(): v for k, v in (row or {}).items()}
    raw_ts = _first_key(row, 'timestamp', 'Timestamp', 'TIMESTAMP')

    if raw_ts:
        instant = None
        if isinstance(raw_ts, datetime):
            instant = raw_ts
        else:
            try:
                instant = date_parser.isoparse(str(raw_ts))
            except (ValueError, OverflowError):
                logger.warning(f"Ignoring unparseable timestamp '{raw_ts}'")
        if instant is not None:
            if instant.tzinfo is None:
                instant = instant.replace(tzinfo=timezone.utc)
            instant = instant.astimezone(timezone.utc)
            date_str, time_str = _wall_clock_strings(instant, offset_minutes)
            return date_str, time_str, instant

    raw_date = _first_key(row, 'date', 'Date', 'DATE')
    raw_time = _first_key(row, 'time', 'Time', 'TIME')
    instant = build_local_timestamp(raw_date, raw_time, offset_minutes)
    if instant is None:
        instant = now or datetime.now(timezone.utc)
        date_str, time_str = _wall_clock_strings(instant, offset_minutes)
        return date_str, time_str, instant

    year, month, day = _split_date(raw_date)
    return f"{_pad2(day)}/{_pad2(month)}/{year}", normalize_time_input(raw_time), instant
