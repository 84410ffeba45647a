"""
Activity data ingestion: manual, API, IoT and CSV saves plus edits and deletes.

Every write keeps the stream's cumulative tracking consistent, triggers the
emission calculation for the records it affected and publishes a change event.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional

from emission_engine.api.cumulative import (
    CumulativeStreamTracker,
    stream_key,
    validate_cumulative_values,
    validate_data_quality,
)
from emission_engine.api.emission_service import EmissionCalculationService
from emission_engine.api.errors import ConfigurationMissing, InvalidInput, RecordNotFound
from emission_engine.api.file_processor import parse_csv_bytes
from emission_engine.api.flowchart import resolve_scope_configuration
from emission_engine.api.normalizer import (
    CSV_INPUT,
    META_KEYS,
    TEXT_KEYS,
    normalize_data_payload,
    parse_entry_timestamp,
)
from emission_engine.api.notifications import (
    DATA_ENTRY_DELETED,
    DATA_ENTRY_EDITED,
    DATA_ENTRY_SAVED,
    NotificationSink,
)
from emission_engine.api.settings import DEFAULT_SETTINGS
from emission_engine.api.store import DocumentStore
from emission_engine.models.emission_data import ActivityRecord, InputType, ProcessingStatus, ScopeConfiguration

logger = logging.getLogger(__name__)


def _event_data(record: ActivityRecord) -> Dict[str, Any]:
    return {
        'record_id': record.id,
        'node_id': record.node_id,
        'scope_identifier': record.scope_identifier,
        'scope_type': record.scope_type,
        'input_type': record.input_type,
        'timestamp': record.timestamp,
        'data_values': record.data_values,
    }


class IngestionService:
    """Saves, edits and deletes activity records"""

    def __init__(
        self,
        store: DocumentStore,
        tracker: CumulativeStreamTracker,
        calculations: EmissionCalculationService,
        sink: Optional[NotificationSink] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.tracker = tracker
        self.calculations = calculations
        self.sink = sink
        settings = settings or DEFAULT_SETTINGS
        self.offset_minutes = settings['timestamps']['utc_offset_minutes']

    def _scope_config(self, client_id: str, node_id: str, scope_identifier: str) -> ScopeConfiguration:
        config = resolve_scope_configuration(self.store, client_id, node_id, scope_identifier)
        if config is None:
            raise ConfigurationMissing(f"Scope configuration {scope_identifier} not found for node {node_id}")
        return config

    def _numeric_values(self, row: Mapping[str, Any], config: ScopeConfiguration, input_type: str) -> Dict[str, float]:
        normalized = normalize_data_payload(row, config, input_type)
        values = {k: v for k, v in normalized.items() if k not in META_KEYS and k not in TEXT_KEYS}
        return validate_cumulative_values(values)

    def _publish(self, event_type: str, record: ActivityRecord) -> None:
        if self.sink:
            self.sink.publish(event_type, record.client_id, _event_data(record))

    def _calculate_affected(self, affected: List[ActivityRecord], extra_timestamps: Optional[List[datetime]] = None) -> None:
        """Calculate the affected records (never empty), then refresh their summary periods"""
        if len(affected) == 1 and not extra_timestamps:
            record = affected[0]
            try:
                self.calculations.calculate_emissions(record.client_id, record.node_id, record.scope_identifier, record.id)
            except Exception:
                logger.exception(f"Emission calculation failed for entry {record.id}")
            return

        for record in affected:
            try:
                self.calculations.calculate_emissions(
                    record.client_id, record.node_id, record.scope_identifier, record.id, refresh_summaries=False
                )
            except Exception:
                logger.exception(f"Emission calculation failed for entry {record.id}")

        timestamps = [r.timestamp for r in affected] + list(extra_timestamps or [])
        self.calculations.refresh_periods(affected[0].client_id, timestamps)

    def _save_row(
        self,
        client_id: str,
        node_id: str,
        scope_identifier: str,
        config: ScopeConfiguration,
        row: Mapping[str, Any],
        input_type: str,
        source_details: Optional[Dict[str, Any]] = None,
        normalize_as: Optional[str] = None,
    ) -> ActivityRecord:
        values = self._numeric_values(row, config, normalize_as or input_type)
        date_str, time_str, timestamp = parse_entry_timestamp(row, self.offset_minutes)

        record = ActivityRecord(
            client_id=client_id,
            node_id=node_id,
            scope_identifier=scope_identifier,
            scope_type=config.scope_type,
            input_type=input_type,
            date=date_str,
            time=time_str,
            timestamp=timestamp,
            data_values=values,
            emission_factor=config.emission_factor or None,
            category_name=config.category_name or None,
            activity=config.activity or None,
            source_details=source_details or {},
            processing_status=ProcessingStatus.PENDING.value,
        )
        record.validation_status, record.validation_errors = validate_data_quality(record)

        inserted = self.store.insert_record(record)
        affected = self.tracker.track_new_record(inserted)
        self._calculate_affected(affected)

        saved = self.store.get_record(inserted.id) or inserted
        self._publish(DATA_ENTRY_SAVED, saved)
        return saved

    def _save_rows(
        self,
        client_id: str,
        node_id: str,
        scope_identifier: str,
        rows: List[Mapping[str, Any]],
        input_type: str,
        source: str,
        normalize_as: Optional[str] = None,
    ) -> Dict[str, Any]:
        config = self._scope_config(client_id, node_id, scope_identifier)
        outcome = {'saved_count': 0, 'failed_count': 0, 'errors': [], 'entries': []}

        for index, row in enumerate(rows):
            try:
                record = self._save_row(
                    client_id, node_id, scope_identifier, config, row, input_type,
                    source_details={'source': source, 'row': index + 1},
                    normalize_as=normalize_as,
                )
                outcome['saved_count'] += 1
                outcome['entries'].append(record)
            except (InvalidInput, ValueError) as e:
                outcome['failed_count'] += 1
                outcome['errors'].append({'row': index + 1, 'error': str(e)})
                logger.warning(f"Skipping {source} row {index + 1} for scope {scope_identifier}: {e}")

        logger.info(
            f"Saved {outcome['saved_count']}/{len(rows)} {source} entries for {client_id}/{node_id}/{scope_identifier}"
        )
        return outcome

    def save_manual_entries(self, client_id: str, node_id: str, scope_identifier: str, entries: List[Mapping[str, Any]]) -> Dict[str, Any]:
        """
        Save manually entered rows

        Returns:
            ``{saved_count, failed_count, errors, entries}``; one bad row does not stop the rest
        """
        if not entries:
            raise InvalidInput('No entries provided')
        return self._save_rows(client_id, node_id, scope_identifier, entries, InputType.MANUAL.value, 'manual')

    def save_api_entry(self, client_id: str, node_id: str, scope_identifier: str, payload: Mapping[str, Any]) -> ActivityRecord:
        config = self._scope_config(client_id, node_id, scope_identifier)
        return self._save_row(
            client_id, node_id, scope_identifier, config, payload, InputType.API.value, source_details={'source': 'api'}
        )

    def save_iot_entry(self, client_id: str, node_id: str, scope_identifier: str, payload: Mapping[str, Any]) -> ActivityRecord:
        config = self._scope_config(client_id, node_id, scope_identifier)
        return self._save_row(
            client_id, node_id, scope_identifier, config, payload, InputType.IOT.value, source_details={'source': 'iot'}
        )

    def save_csv_entries(
        self,
        client_id: str,
        node_id: str,
        scope_identifier: str,
        content: bytes,
        filename: str = 'upload.csv',
    ) -> Dict[str, Any]:
        """
        Save every row of an uploaded CSV file as a manual entry

        Raises:
            InvalidInput: unreadable file or no data rows
        """
        parsed = parse_csv_bytes(content, filename)
        if parsed.get('error'):
            raise InvalidInput(parsed['error'])
        if not parsed['data']:
            raise InvalidInput('CSV file contains no data rows')
        outcome = self._save_rows(
            client_id, node_id, scope_identifier, parsed['data'], InputType.MANUAL.value, 'csv', normalize_as=CSV_INPUT
        )
        outcome['filename'] = filename
        return outcome

    # edits

    def _recalculate_stream_from(self, record: ActivityRecord, since: datetime, extra_timestamps: List[datetime]) -> List[ActivityRecord]:
        rebuilt = self.tracker.rebuild_stream_cumulatives(*stream_key(record))
        affected = [r for r in rebuilt if r.timestamp >= since]
        if affected:
            self._calculate_affected(affected, extra_timestamps)
        else:
            self.calculations.refresh_periods(record.client_id, extra_timestamps)
        return rebuilt

    def edit_entry(
        self,
        record_id: str,
        values: Optional[Mapping[str, Any]] = None,
        date: Optional[str] = None,
        time: Optional[str] = None,
    ) -> ActivityRecord:
        """
        Change an entry's values and/or wall-clock date and time

        The stream is rebuilt and every record from the earlier of the old and
        new timestamps onwards is recalculated.

        Raises:
            RecordNotFound: unknown record id
            InvalidInput: non-numeric values
        """
        record = self.store.get_record(record_id)
        if record is None:
            raise RecordNotFound(f"Data entry {record_id} not found")

        previous_ts = record.timestamp
        if values is not None:
            config = self._scope_config(record.client_id, record.node_id, record.scope_identifier)
            record.data_values = self._numeric_values(values, config, record.input_type)

        if date or time:
            record.date, record.time, record.timestamp = parse_entry_timestamp(
                {'date': date or record.date, 'time': time or record.time},
                self.offset_minutes,
                now=record.timestamp,
            )

        record.validation_status, record.validation_errors = validate_data_quality(record)
        self.store.update_record(record)

        self._recalculate_stream_from(record, min(previous_ts, record.timestamp), [previous_ts])

        updated = self.store.get_record(record_id) or record
        logger.info(f"Edited entry {record_id}")
        self._publish(DATA_ENTRY_EDITED, updated)
        return updated

    def delete_entry(self, record_id: str) -> Dict[str, Any]:
        """
        Delete an entry and rebuild the rest of its stream

        Raises:
            RecordNotFound: unknown record id
        """
        record = self.store.get_record(record_id)
        if record is None or not self.store.delete_record(record_id):
            raise RecordNotFound(f"Data entry {record_id} not found")

        rebuilt = self._recalculate_stream_from(record, record.timestamp, [record.timestamp])

        logger.info(f"Deleted entry {record_id}, rebuilt {len(rebuilt)} remaining entries")
        self._publish(DATA_ENTRY_DELETED, record)
        return {'record_id': record_id, 'deleted': True, 'rebuilt_count': len(rebuilt)}

    def get_latest_cumulative(self, client_id: str, node_id: str, scope_identifier: str, input_type: Optional[str] = None) -> Dict[str, Any]:
        return self.tracker.get_latest_cumulative(client_id, node_id, scope_identifier, input_type)
