"""
Period emission summaries.

The aggregator scans processed activity records in a period window, reads the
best available emission total off each record, converts it to tonnes and
rolls it up by scope, category, activity, node, department, location, input
type and emission factor source. Summaries are upserted per period with a
monotonically increasing version.
"""

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from emission_engine.api.calculations.config_lookup import coerce_number
from emission_engine.api.errors import InvalidInput, RecordNotFound
from emission_engine.api.flowchart import node_context
from emission_engine.api.notifications import SUMMARY_CREATED, SUMMARY_UPDATED, NotificationSink
from emission_engine.api.periods import (
    describe_period,
    fill_period_parts,
    get_date_range,
    get_previous_period,
    make_period,
    period_for_timestamp,
    validate_period_type,
)
from emission_engine.api.settings import DEFAULT_SETTINGS
from emission_engine.api.store import DocumentStore
from emission_engine.models.emission_data import ActivityRecord, PeriodType, ProcessingStatus, ScopeType

logger = logging.getLogger(__name__)

SCOPES = tuple(s.value for s in ScopeType)
INPUT_TYPES = ('manual', 'API', 'IOT')
GAS_FIELDS = ('CO2e', 'CO2', 'CH4', 'N2O', 'uncertainty')
PRECISION = 6


class GroupingKey(str):
    """
    Key of a dynamic summary grouping

    Dots are replaced with underscores so the key survives document stores
    that treat them as path separators; anything that is not a non-empty
    string becomes ``invalid_key``.
    """

    INVALID = 'invalid_key'

    def __new__(cls, value: Any):
        if not isinstance(value, str) or not value.strip():
            value = cls.INVALID
        return super().__new__(cls, value.replace('.', '_'))


def _zero_values(**extra) -> Dict[str, Any]:
    values = {field: 0.0 for field in GAS_FIELDS}
    values['data_point_count'] = 0
    values.update(extra)
    return values


def _ensure_entry(mapping: Dict[str, Any], key: Any, **extra) -> Dict[str, Any]:
    safe = str(GroupingKey(key))
    if safe not in mapping:
        mapping[safe] = _zero_values(**extra)
    return mapping[safe]


def add_emission_values(target: Dict[str, Any], values: Dict[str, float], data_point_count: int = 1) -> None:
    for field in GAS_FIELDS:
        target[field] = target.get(field, 0.0) + values.get(field, 0.0)
    target['data_point_count'] = target.get('data_point_count', 0) + data_point_count


def _sum_bucket(bucket: Any) -> Dict[str, float]:
    totals = {field: 0.0 for field in GAS_FIELDS}
    if not isinstance(bucket, dict):
        return totals
    for value in bucket.values():
        if not isinstance(value, dict):
            continue
        totals['CO2e'] += coerce_number(value.get('CO2e') or value.get('emission')) or 0.0
        totals['CO2'] += coerce_number(value.get('CO2')) or 0.0
        totals['CH4'] += coerce_number(value.get('CH4')) or 0.0
        totals['N2O'] += coerce_number(value.get('N2O')) or 0.0
        totals['uncertainty'] += coerce_number(value.get('combined_uncertainty')) or 0.0
    return totals


def extract_emission_values(calculated_emissions: Optional[Dict[str, Any]]) -> Dict[str, float]:
    """
    Total gas values of a record in tonnes

    Sums every activity key of the ``cumulative`` bucket, falling back to the
    ``incoming`` bucket when that sums to zero. Stored values are kilograms.
    """
    if not calculated_emissions:
        return {field: 0.0 for field in GAS_FIELDS}

    totals = _sum_bucket(calculated_emissions.get('cumulative'))
    if totals['CO2e'] == 0:
        totals = _sum_bucket(calculated_emissions.get('incoming'))

    return {field: round(value / 1000, PRECISION) for field, value in totals.items()}


def trend(current: float, previous: float) -> Dict[str, Any]:
    change = current - previous
    if previous > 0:
        percentage = change / previous * 100
    else:
        percentage = 100 if current > 0 else 0
    direction = 'up' if change > 0 else 'down' if change < 0 else 'same'
    return {'value': change, 'percentage': round(percentage, 2), 'direction': direction}


def calculate_trends(current: Dict[str, Any], previous: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'total_emissions_change': trend(current['total_emissions']['CO2e'], previous['total_emissions']['CO2e']),
        'scope_changes': {
            scope: trend(current['by_scope'][scope]['CO2e'], (previous.get('by_scope') or {}).get(scope, {}).get('CO2e', 0.0))
            for scope in SCOPES
        },
    }


def _scope_total(by_scope: Any) -> Dict[str, float]:
    s1 = s2 = 0.0
    if not isinstance(by_scope, dict):
        return {'s1': s1, 's2': s2}
    for key, value in by_scope.items():
        label = str(key).lower().replace(' ', '')
        amount = coerce_number(value.get('CO2e') if isinstance(value, dict) else value) or 0.0
        if label == 'scope1':
            s1 += amount
        elif label == 'scope2':
            s2 += amount
    return {'s1': s1, 's2': s2}


def _percentage(part: float, total: float) -> float:
    return round(part / total * 100, 2) if total > 0 else 0


def _as_datetime(value: Any) -> Optional[datetime]:
    return value if isinstance(value, datetime) else None


class SummaryAggregator:
    """Builds, stores and reads period emission summaries for a client"""

    def __init__(
        self,
        store: DocumentStore,
        sink: Optional[NotificationSink] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.sink = sink
        self.settings = (settings or DEFAULT_SETTINGS)['summary']

    # building

    def _node_map(self, client_id: str) -> Optional[Dict[str, Dict[str, Any]]]:
        main = self.store.get_active_flowchart(client_id)
        process = self.store.get_active_flowchart(client_id, process=True)
        if not main and not process:
            return None

        nodes = {}
        for chart in (process, main):
            for node in (chart or {}).get('nodes') or []:
                context = node_context(node)
                context['scope_details'] = (node.get('details') or {}).get('scope_details') or []
                nodes[node.get('id')] = context
        return nodes

    def _empty_summary(self, client_id: str, period: Dict[str, Any], records: List[ActivityRecord], user_id: Optional[str]) -> Dict[str, Any]:
        return {
            'client_id': client_id,
            'period': period,
            'total_emissions': _zero_values(),
            'by_scope': {scope: _zero_values() for scope in SCOPES},
            'by_category': {},
            'by_activity': {},
            'by_node': {},
            'by_department': {},
            'by_location': {},
            'by_input_type': {input_type: {'CO2e': 0.0, 'data_point_count': 0} for input_type in INPUT_TYPES},
            'by_emission_factor': {},
            'trends': None,
            'metadata': {
                'total_data_points': len(records),
                'data_entries_included': [r.id for r in records],
                'last_calculated': datetime.now(timezone.utc),
                'calculated_by': user_id,
                'version': 1,
                'is_complete': True,
                'has_errors': False,
                'errors': [],
                'calculation_duration_ms': 0,
            },
        }

    def _accumulate(self, summary: Dict[str, Any], record: ActivityRecord, nodes: Dict[str, Dict[str, Any]]) -> None:
        values = extract_emission_values(record.calculated_emissions)
        if values['CO2e'] == 0:
            logger.debug(f"Skipping entry {record.id} with zero emissions")
            return

        node = nodes.get(record.node_id)
        if node is None:
            summary['metadata']['errors'].append(f"Node {record.node_id} not found in flowchart")
            return

        detail = next(
            (s for s in node['scope_details'] if s.get('scope_identifier') == record.scope_identifier),
            {},
        )
        category = detail.get('category_name') or record.category_name or 'Unknown Category'
        activity = detail.get('activity') or record.activity or 'Unknown Activity'
        scope_type = record.scope_type
        known_scope = scope_type in SCOPES

        add_emission_values(summary['total_emissions'], values)
        if known_scope:
            add_emission_values(summary['by_scope'][scope_type], values)

        category_entry = _ensure_entry(summary['by_category'], category, scope_type=scope_type, activities={})
        add_emission_values(category_entry, values)
        add_emission_values(_ensure_entry(category_entry['activities'], activity), values)

        activity_entry = _ensure_entry(summary['by_activity'], activity, scope_type=scope_type, category_name=category)
        add_emission_values(activity_entry, values)

        node_entry = _ensure_entry(
            summary['by_node'],
            record.node_id,
            node_label=node['node_label'],
            department=node['department'],
            location=node['location'],
            by_scope={scope: {'CO2e': 0.0, 'data_point_count': 0} for scope in SCOPES},
        )
        add_emission_values(node_entry, values)
        if known_scope:
            node_scope = node_entry['by_scope'][scope_type]
            node_scope['CO2e'] += values['CO2e']
            node_scope['data_point_count'] += 1

        add_emission_values(_ensure_entry(summary['by_department'], node['department']), values)
        add_emission_values(_ensure_entry(summary['by_location'], node['location']), values)

        input_entry = summary['by_input_type'].get(record.input_type)
        if input_entry is not None:
            input_entry['CO2e'] += values['CO2e']
            input_entry['data_point_count'] += 1

        factor_entry = _ensure_entry(
            summary['by_emission_factor'],
            record.emission_factor or 'Unknown',
            scope_types={scope: 0 for scope in SCOPES},
        )
        add_emission_values(factor_entry, values)
        if known_scope:
            factor_entry['scope_types'][scope_type] += 1

    @staticmethod
    def _count_nodes(summary: Dict[str, Any]) -> None:
        by_department: Dict[str, set] = {}
        by_location: Dict[str, set] = {}
        for node_id, node in summary['by_node'].items():
            by_department.setdefault(str(GroupingKey(node['department'])), set()).add(node_id)
            by_location.setdefault(str(GroupingKey(node['location'])), set()).add(node_id)
        for key, node_ids in by_department.items():
            if key in summary['by_department']:
                summary['by_department'][key]['node_count'] = len(node_ids)
        for key, node_ids in by_location.items():
            if key in summary['by_location']:
                summary['by_location'][key]['node_count'] = len(node_ids)

    def calculate_emission_summary(
        self,
        client_id: str,
        period_type: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
        week: Optional[int] = None,
        day: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """
        Aggregate a client's processed records for one period

        Args:
            client_id: Client whose records are summarised
            period_type: daily, weekly, monthly, yearly or all-time
            year, month, week, day: Period parts for the type
            user_id: Recorded as ``metadata.calculated_by``

        Returns:
            The summary dictionary (not saved), or None when the client has
            no active flowchart
        """
        started = time.monotonic()
        period = make_period(period_type, year, month, week, day)
        start, end = get_date_range(period, self.settings.get('all_time_start'))

        nodes = self._node_map(client_id)
        if nodes is None:
            logger.warning(f"No active flowchart found for client {client_id}")
            return None

        records = self.store.find_records(
            client_id,
            start=start,
            end=end,
            processing_status=ProcessingStatus.PROCESSED.value,
        )
        logger.info(f"Calculating {period_type} emission summary for client {client_id} from {len(records)} entries")

        summary = self._empty_summary(client_id, describe_period(period, start, end), records, user_id)
        for record in records:
            try:
                self._accumulate(summary, record, nodes)
            except Exception as e:
                logger.warning(f"Error processing entry {record.id}: {e}")
                summary['metadata']['errors'].append(f"Error processing entry {record.id}: {e}")
                summary['metadata']['has_errors'] = True

        self._count_nodes(summary)

        previous = get_previous_period(period)
        if previous is not None:
            try:
                previous_summary = self.store.find_summary(client_id, previous)
                if previous_summary:
                    summary['trends'] = calculate_trends(summary, previous_summary)
            except Exception as e:
                logger.warning(f"Error calculating trends for client {client_id}: {e}")
                summary['metadata']['errors'].append(f"Error calculating trends: {e}")

        summary['metadata']['calculation_duration_ms'] = int((time.monotonic() - started) * 1000)
        logger.info(
            f"Summary totals (tonnes) for {client_id}: total={summary['total_emissions']['CO2e']}, "
            + ", ".join(f"{scope}={summary['by_scope'][scope]['CO2e']}" for scope in SCOPES)
        )
        return summary

    # persistence

    def save_emission_summary(self, summary: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        """Upsert a summary by its period, bumping the stored version"""
        if not summary:
            return None

        existing = self.store.find_summary(summary['client_id'], summary['period'])
        saved = dict(summary)
        saved['metadata'] = dict(summary.get('metadata') or {})
        saved['metadata']['version'] = ((existing or {}).get('metadata') or {}).get('version', 0) + 1
        saved['metadata']['last_calculated'] = datetime.now(timezone.utc)
        if existing and existing.get('id'):
            saved['id'] = existing['id']

        saved = self.store.upsert_summary(saved)
        logger.info(
            f"Saved {saved['period']['type']} summary for client {saved['client_id']} "
            f"(version {saved['metadata']['version']})"
        )

        if self.sink:
            self.sink.publish(
                SUMMARY_UPDATED if existing else SUMMARY_CREATED,
                saved['client_id'],
                {
                    'summary_id': saved.get('id'),
                    'period': saved['period'],
                    'total_emissions': saved['total_emissions'],
                },
            )
        return saved

    def recalculate_and_save_summary(
        self,
        client_id: str,
        period_type: str,
        year: Optional[int] = None,
        month: Optional[int] = None,
        week: Optional[int] = None,
        day: Optional[int] = None,
        user_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Recompute and store a period; nothing is stored for an empty period"""
        summary = self.calculate_emission_summary(client_id, period_type, year, month, week, day, user_id)
        if not summary or summary['metadata']['total_data_points'] == 0:
            return None
        return self.save_emission_summary(summary)

    def refresh_periods_for(self, ts: datetime) -> List[Dict[str, Any]]:
        """Periods touched by a record at ``ts``"""
        return [period_for_timestamp(period_type, ts) for period_type in self.settings.get('refresh_periods') or []]

    def recalculate_period(self, client_id: str, period: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.recalculate_and_save_summary(
            client_id, period['type'], period.get('year'), period.get('month'), period.get('week'), period.get('day')
        )

    def update_summaries_on_data_change(self, record: ActivityRecord) -> List[Dict[str, Any]]:
        """
        Refresh every configured period containing the record's timestamp

        Returns:
            The periods that were refreshed
        """
        periods = self.refresh_periods_for(record.timestamp)
        for period in periods:
            self.recalculate_period(record.client_id, period)
        logger.info(f"Updated {len(periods)} summaries for client {record.client_id} after entry {record.id}")
        return periods

    # reading

    def _latest(self, client_id: str, period_type: Optional[str] = None) -> Optional[Dict[str, Any]]:
        summaries = self.store.list_summaries(client_id, period_type)
        return summaries[0] if summaries else None

    def _is_stale(self, summary: Dict[str, Any]) -> bool:
        last = _as_datetime((summary.get('metadata') or {}).get('last_calculated'))
        if last is None:
            return True
        age = (datetime.now(timezone.utc) - last).total_seconds()
        return age > self.settings.get('stale_after_seconds', 3600)

    def get_emission_summary(
        self,
        client_id: str,
        period_type: str = PeriodType.MONTHLY.value,
        year: Optional[int] = None,
        month: Optional[int] = None,
        week: Optional[int] = None,
        day: Optional[int] = None,
        recalculate: bool = False,
        prefer_latest: Optional[bool] = None,
        user_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Read a summary, recomputing it when missing or stale

        Without period parts the latest stored summary of the type is returned.
        Missing parts default to the current date.

        Raises:
            InvalidInput: unknown period type
            RecordNotFound: nothing to return for the period
        """
        validate_period_type(period_type)
        if prefer_latest is None:
            prefer_latest = self.settings.get('prefer_latest', True)

        y, m, w, d = fill_period_parts(period_type, datetime.now(timezone.utc), year, month, week, day)
        no_parts = not any((year, month, week, day))

        if recalculate:
            summary = self.recalculate_and_save_summary(client_id, period_type, y, m, w, d, user_id)
        elif no_parts:
            summary = self._latest(client_id, period_type)
        else:
            period = make_period(period_type, y, m, w, d)
            summary = self.store.find_summary(client_id, period)
            if not summary or self._is_stale(summary):
                recomputed = self.recalculate_and_save_summary(client_id, period_type, y, m, w, d, user_id)
                if recomputed and recomputed['metadata']['total_data_points'] > 0:
                    summary = recomputed
                elif prefer_latest:
                    _, requested_end = get_date_range(period, self.settings.get('all_time_start'))
                    summary = next(
                        (
                            s for s in self.store.list_summaries(client_id, period_type)
                            if _as_datetime(s['period'].get('to')) and s['period']['to'] <= requested_end
                        ),
                        None,
                    )
                    if summary:
                        summary['metadata'] = dict(summary.get('metadata') or {})
                        summary['metadata']['fallback_for'] = make_period(period_type, y, m, w, d)

        if not summary:
            raise RecordNotFound('No data found for the specified period')
        return summary

    def get_multiple_summaries(
        self,
        client_id: str,
        period_type: str = PeriodType.MONTHLY.value,
        start_year: Optional[int] = None,
        start_month: Optional[int] = None,
        end_year: Optional[int] = None,
        end_month: Optional[int] = None,
        limit: int = 12,
    ) -> List[Dict[str, Any]]:
        validate_period_type(period_type)
        summaries = self.store.list_summaries(client_id, period_type)

        if start_year and end_year:
            def in_range(summary):
                period = summary['period']
                year, month = period.get('year') or 0, period.get('month') or 0
                if not start_year <= year <= end_year:
                    return False
                if start_month and month < start_month:
                    return False
                if end_month and month > end_month:
                    return False
                return True

            summaries = [s for s in summaries if in_range(s)]

        summaries.sort(
            key=lambda s: tuple(s['period'].get(part) or 0 for part in ('year', 'month', 'week', 'day')),
            reverse=True,
        )
        return summaries[:limit]

    def get_filtered_summary(
        self,
        client_id: str,
        period_type: Optional[str] = None,
        year: Optional[int] = None,
        month: Optional[int] = None,
        week: Optional[int] = None,
        day: Optional[int] = None,
        scope: Optional[str] = None,
        category: Optional[str] = None,
        node_id: Optional[str] = None,
        department: Optional[str] = None,
        activity: Optional[str] = None,
        location: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        One slice of a stored summary

        Only the first filter given is applied, in the order scope, category,
        node, department, activity, location.

        Returns:
            ``{'filter_type': ..., 'data': ...}``
        """
        if period_type:
            summary = self.store.find_summary(client_id, make_period(period_type, year, month, week, day))
        else:
            summary = self._latest(client_id)
        if not summary:
            raise RecordNotFound('No summary data found for the specified client and period.')

        total = summary['total_emissions']['CO2e']
        period = summary['period']

        if scope:
            if scope not in SCOPES:
                raise InvalidInput('Invalid scope type. Use "Scope 1", "Scope 2", or "Scope 3".')
            data = {
                'scope_type': scope,
                'period': period,
                'emissions': summary['by_scope'].get(scope, {}),
                'categories': {k: v for k, v in summary['by_category'].items() if v.get('scope_type') == scope},
                'activities': {k: v for k, v in summary['by_activity'].items() if v.get('scope_type') == scope},
                'nodes': {
                    k: dict(v, scope_emissions=v['by_scope'][scope])
                    for k, v in summary['by_node'].items()
                    if v.get('by_scope', {}).get(scope, {}).get('CO2e', 0) > 0
                },
            }
            return {'filter_type': 'scope', 'data': data}

        if category:
            entry = self._slice(summary, 'by_category', category, 'Category')
            data = {
                'category_name': category,
                'period': period,
                'emissions': entry,
                'activities': entry.get('activities') or {},
                'scope_type': entry.get('scope_type'),
                'percentage': _percentage(entry['CO2e'], total),
            }
            return {'filter_type': 'category', 'data': data}

        if node_id:
            entry = self._slice(summary, 'by_node', node_id, 'Node ID')
            data = {
                'node_id': node_id,
                'node_label': entry.get('node_label'),
                'department': entry.get('department'),
                'location': entry.get('location'),
                'period': period,
                'total_emissions': {field: entry.get(field, 0.0) for field in GAS_FIELDS},
                'by_scope': entry.get('by_scope'),
                'percentage': _percentage(entry['CO2e'], total),
            }
            return {'filter_type': 'node', 'data': data}

        if department:
            entry = self._slice(summary, 'by_department', department, 'Department')
            data = {
                'department_name': department,
                'period': period,
                'emissions': entry,
                'nodes': {k: v for k, v in summary['by_node'].items() if v.get('department') == department},
                'node_count': entry.get('node_count', 0),
                'percentage': _percentage(entry['CO2e'], total),
            }
            return {'filter_type': 'department', 'data': data}

        if activity:
            entry = self._slice(summary, 'by_activity', activity, 'Activity')
            data = {
                'activity_name': activity,
                'period': period,
                'emissions': entry,
                'scope_type': entry.get('scope_type'),
                'category_name': entry.get('category_name'),
                'percentage': _percentage(entry['CO2e'], total),
            }
            return {'filter_type': 'activity', 'data': data}

        if location:
            entry = self._slice(summary, 'by_location', location, 'Location')
            data = {
                'location_name': location,
                'period': period,
                'emissions': entry,
                'nodes': {k: v for k, v in summary['by_node'].items() if v.get('location') == location},
                'node_count': entry.get('node_count', 0),
                'percentage': _percentage(entry['CO2e'], total),
            }
            return {'filter_type': 'location', 'data': data}

        return {'filter_type': 'full', 'data': summary}

    @staticmethod
    def _slice(summary: Dict[str, Any], section: str, key: str, label: str) -> Dict[str, Any]:
        entry = (summary.get(section) or {}).get(str(GroupingKey(key)))
        if entry is None:
            raise RecordNotFound(f"{label} '{key}' not found in this summary period.")
        return entry

    def get_latest_scope12_total(self, client_id: str) -> Dict[str, Any]:
        """Scope 1 and Scope 2 CO2e of the client's most recent summary"""
        latest = self._latest(client_id)
        if not latest:
            raise RecordNotFound('No emission summary found for this client')

        totals = _scope_total(latest.get('by_scope'))
        if totals['s1'] + totals['s2'] == 0:
            for node in (latest.get('by_node') or {}).values():
                part = _scope_total(node.get('by_scope'))
                totals['s1'] += part['s1']
                totals['s2'] += part['s2']

        return {
            'client_id': client_id,
            'latest_period': latest.get('period'),
            'scope1_co2e': totals['s1'],
            'scope2_co2e': totals['s2'],
            'scope12_total_co2e': totals['s1'] + totals['s2'],
            'source_summary_id': latest.get('id'),
        }

    def get_node_s1_s2_from_latest_summary(self, client_id: str, node_id: str) -> float:
        """Scope 1 + Scope 2 CO2e of one node in the latest summary, 0 when unknown"""
        if not client_id or not node_id:
            return 0.0
        latest = self._latest(client_id)
        if not latest:
            return 0.0
        node = (latest.get('by_node') or {}).get(str(GroupingKey(node_id)))
        if not node or not node.get('by_scope'):
            return 0.0
        by_scope = node['by_scope']
        return (by_scope.get('Scope 1') or {}).get('CO2e', 0.0) + (by_scope.get('Scope 2') or {}).get('CO2e', 0.0)
