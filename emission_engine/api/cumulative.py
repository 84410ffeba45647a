"""
Cumulative stream tracking.

A stream is every activity record sharing (client, node, scope identifier,
input type). Each record carries per-field running totals, high/low marks,
its own last-entered values and a stream-level running total. All of these
are derived from the records in timestamp order, so a stream can always be
rebuilt from scratch after an edit or a delete.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from emission_engine.api.calculations.config_lookup import coerce_number
from emission_engine.api.errors import InvalidInput
from emission_engine.api.normalizer import to_numeric_map
from emission_engine.api.store import DocumentStore, record_sort_key
from emission_engine.models.emission_data import ActivityRecord, DataEntryCumulative, ScopeType

logger = logging.getLogger(__name__)

VALID = 'valid'
WARNING = 'warning'
INVALID = 'invalid'


def validate_cumulative_values(values: Mapping[str, Any]) -> Dict[str, float]:
    """
    Check every value can take part in cumulative tracking

    Raises:
        InvalidInput: on the first non-numeric value
    """
    checked = {}
    for key, value in (values or {}).items():
        number = coerce_number(value)
        if number is None:
            raise InvalidInput(f'Invalid format: Value for key "{key}" must be numeric for cumulative tracking.')
        checked[key] = number
    return checked


def stream_key(record: ActivityRecord) -> Tuple[str, str, str, str]:
    return (record.client_id, record.node_id, record.scope_identifier, record.input_type)


def apply_incremental(record: ActivityRecord, previous: Optional[ActivityRecord]) -> ActivityRecord:
    """
    Fill a record's tracking maps from the record before it in its stream

    Args:
        record: Record whose ``data_values`` are set
        previous: Immediately preceding record in timestamp order, or None for the first

    Returns:
        The same record, updated in place
    """
    cumulative = dict(previous.cumulative_values) if previous else {}
    high = dict(previous.high_data) if previous else {}
    low = dict(previous.low_data) if previous else {}
    last = {}

    incoming_total = 0.0
    for key, value in to_numeric_map(record.data_values).items():
        cumulative[key] = cumulative.get(key, 0.0) + value
        high[key] = max(high[key], value) if key in high else value
        low[key] = min(low[key], value) if key in low else value
        last[key] = value
        incoming_total += value

    prev_stream = previous.data_entry_cumulative if previous else DataEntryCumulative()
    record.cumulative_values = cumulative
    record.high_data = high
    record.low_data = low
    record.last_entered_data = last
    record.data_entry_cumulative = DataEntryCumulative(
        incoming_total_value=incoming_total,
        cumulative_total_value=prev_stream.cumulative_total_value + incoming_total,
        entry_count=prev_stream.entry_count + 1,
        last_updated_at=record.timestamp,
    )
    return record


def compute_stream(records: List[ActivityRecord]) -> List[ActivityRecord]:
    """Recompute tracking for one stream's records; returns them oldest first"""
    ordered = sorted(records, key=record_sort_key)
    previous = None
    for record in ordered:
        apply_incremental(record, previous)
        previous = record
    return ordered


def validate_data_quality(
    record: ActivityRecord,
    now: Optional[datetime] = None,
) -> Tuple[str, List[Dict[str, str]]]:
    """
    Basic quality checks on an activity record

    Returns:
        (status, errors) with status 'invalid' when any error was found,
        'warning' when only warnings were, otherwise 'valid'
    """
    now = now or datetime.now(timezone.utc)
    errors = []

    if not record.data_values:
        errors.append({'type': 'error', 'message': 'No data values provided'})
    if record.timestamp is None:
        errors.append({'type': 'error', 'message': 'Missing timestamp'})
    elif record.timestamp > now:
        errors.append({'type': 'warning', 'message': 'Timestamp is in the future'})
    if record.scope_type == ScopeType.SCOPE_1.value and not record.emission_factor:
        errors.append({'type': 'warning', 'message': 'No emission factor specified for Scope 1 data'})

    if any(e['type'] == 'error' for e in errors):
        return INVALID, errors
    if errors:
        return WARNING, errors
    return VALID, errors


class CumulativeStreamTracker:
    """Maintains cumulative values of activity record streams in a document store"""

    def __init__(self, store: DocumentStore):
        self.store = store

    def stream_records(self, client_id: str, node_id: str, scope_identifier: str, input_type: str) -> List[ActivityRecord]:
        return self.store.find_records(
            client_id,
            node_id=node_id,
            scope_identifier=scope_identifier,
            input_type=input_type,
        )

    def rebuild_stream_cumulatives(
        self,
        client_id: str,
        node_id: str,
        scope_identifier: str,
        input_type: str,
    ) -> List[ActivityRecord]:
        """
        Recompute and persist tracking for every record of a stream

        Returns:
            The rebuilt records, oldest first
        """
        records = compute_stream(self.stream_records(client_id, node_id, scope_identifier, input_type))
        self.store.update_records(records)
        logger.info(
            f"Rebuilt {len(records)} cumulative entries for {client_id}/{node_id}/{scope_identifier}/{input_type}"
        )
        return records

    def track_new_record(self, record: ActivityRecord) -> List[ActivityRecord]:
        """
        Apply tracking to a freshly inserted record

        The newest record of a stream is advanced from its predecessor; a
        back-dated one forces a full rebuild.

        Returns:
            The records whose tracking changed, oldest first: the new record
            followed by any later records of the stream
        """
        stream = self.stream_records(*stream_key(record))
        others = [r for r in stream if r.id != record.id]
        later = [r for r in others if record_sort_key(r) > record_sort_key(record)]

        if later:
            rebuilt = self.rebuild_stream_cumulatives(*stream_key(record))
            return [r for r in rebuilt if record_sort_key(r) >= record_sort_key(record)]

        previous = others[-1] if others else None
        apply_incremental(record, previous)
        self.store.update_record(record)
        return [record]

    def get_latest_cumulative(
        self,
        client_id: str,
        node_id: str,
        scope_identifier: str,
        input_type: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Tracking maps of the newest record of a stream (empty when there is none)"""
        records = self.store.find_records(
            client_id,
            node_id=node_id,
            scope_identifier=scope_identifier,
            input_type=input_type,
        )
        if not records:
            return {
                'cumulative_values': {},
                'high_data': {},
                'low_data': {},
                'last_entered_data': {},
                'data_entry_cumulative': DataEntryCumulative().model_dump(),
            }
        latest = records[-1]
        return {
            'record_id': latest.id,
            'timestamp': latest.timestamp,
            'cumulative_values': latest.cumulative_values,
            'high_data': latest.high_data,
            'low_data': latest.low_data,
            'last_entered_data': latest.last_entered_data,
            'data_entry_cumulative': latest.data_entry_cumulative.model_dump(),
        }
