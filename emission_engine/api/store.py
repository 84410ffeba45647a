"""
Document store interface for activity records, flowcharts, summaries and targets
"""

import copy
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from emission_engine.models.emission_data import ActivityRecord

DATA_ENTRIES = 'data_entries'
FLOWCHARTS = 'flowcharts'
PROCESS_FLOWCHARTS = 'process_flowcharts'
EMISSION_SUMMARIES = 'emission_summaries'
SBTI_TARGETS = 'sbti_targets'

PERIOD_PARTS = ('type', 'year', 'month', 'week', 'day')


def period_key(period: Dict[str, Any]) -> Dict[str, Any]:
    """Identity of a summary period: type plus whichever date parts apply"""
    return {part: period.get(part) for part in PERIOD_PARTS}


def record_sort_key(record: ActivityRecord):
    """Stream order: timestamp, then insertion time, then id"""
    return (record.timestamp, record.created_at, record.id or '')


def to_jsonable(value: Any) -> Any:
    """Datetimes to ISO strings, recursively"""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(v) for v in value]
    return value


class DocumentStore(ABC):
    """Persistence used by the engine services"""

    # activity records

    @abstractmethod
    def insert_record(self, record: ActivityRecord) -> ActivityRecord:
        ...

    @abstractmethod
    def get_record(self, record_id: str) -> Optional[ActivityRecord]:
        ...

    @abstractmethod
    def update_record(self, record: ActivityRecord) -> ActivityRecord:
        ...

    def update_records(self, records: List[ActivityRecord]) -> None:
        for record in records:
            self.update_record(record)

    @abstractmethod
    def delete_record(self, record_id: str) -> bool:
        ...

    @abstractmethod
    def find_records(
        self,
        client_id: str,
        node_id: Optional[str] = None,
        scope_identifier: Optional[str] = None,
        input_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        processing_status: Optional[str] = None,
        include_summary: bool = False,
    ) -> List[ActivityRecord]:
        """Records matching the filters in ``record_sort_key`` order; ``end`` is exclusive"""

    # flowcharts

    @abstractmethod
    def get_active_flowchart(self, client_id: str, process: bool = False) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_client_ids(self) -> List[str]:
        ...

    # summaries

    @abstractmethod
    def find_summary(self, client_id: str, period: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def list_summaries(self, client_id: str, period_type: Optional[str] = None) -> List[Dict[str, Any]]:
        """Summaries of a client, newest period first"""

    @abstractmethod
    def upsert_summary(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        ...

    # SBTi targets

    @abstractmethod
    def get_target(self, client_id: str, target_type: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def upsert_target(self, target: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def health(self) -> Dict[str, Any]:
        return {'store': type(self).__name__, 'ok': True}


def _period_end(summary: Dict[str, Any]) -> datetime:
    end = (summary.get('period') or {}).get('to')
    return end if isinstance(end, datetime) else datetime.min.replace(tzinfo=timezone.utc)


class InMemoryDocumentStore(DocumentStore):
    """Process-local store for tests and local runs"""

    def __init__(self):
        self._lock = threading.RLock()
        self._records: Dict[str, ActivityRecord] = {}
        self._flowcharts: Dict[str, Dict[str, Any]] = {}
        self._process_flowcharts: Dict[str, Dict[str, Any]] = {}
        self._summaries: List[Dict[str, Any]] = []
        self._targets: Dict[tuple, Dict[str, Any]] = {}

    def insert_record(self, record: ActivityRecord) -> ActivityRecord:
        with self._lock:
            stored = record.model_copy(deep=True)
            if not stored.id:
                stored.id = uuid.uuid4().hex
            self._records[stored.id] = stored
            return stored.model_copy(deep=True)

    def get_record(self, record_id: str) -> Optional[ActivityRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    def update_record(self, record: ActivityRecord) -> ActivityRecord:
        with self._lock:
            if record.id not in self._records:
                raise KeyError(record.id)
            self._records[record.id] = record.model_copy(deep=True)
            return record

    def delete_record(self, record_id: str) -> bool:
        with self._lock:
            return self._records.pop(record_id, None) is not None

    def find_records(
        self,
        client_id: str,
        node_id: Optional[str] = None,
        scope_identifier: Optional[str] = None,
        input_type: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        processing_status: Optional[str] = None,
        include_summary: bool = False,
    ) -> List[ActivityRecord]:
        with self._lock:
            matches = []
            for record in self._records.values():
                if record.client_id != client_id:
                    continue
                if node_id is not None and record.node_id != node_id:
                    continue
                if scope_identifier is not None and record.scope_identifier != scope_identifier:
                    continue
                if input_type is not None and record.input_type != input_type:
                    continue
                if start is not None and record.timestamp < start:
                    continue
                if end is not None and record.timestamp >= end:
                    continue
                if processing_status is not None and record.processing_status != processing_status:
                    continue
                if record.is_summary and not include_summary:
                    continue
                matches.append(record.model_copy(deep=True))
        matches.sort(key=record_sort_key)
        return matches

    def save_flowchart(self, flowchart: Dict[str, Any], process: bool = False) -> None:
        with self._lock:
            target = self._process_flowcharts if process else self._flowcharts
            target[flowchart['client_id']] = copy.deepcopy(flowchart)

    def get_active_flowchart(self, client_id: str, process: bool = False) -> Optional[Dict[str, Any]]:
        with self._lock:
            source = self._process_flowcharts if process else self._flowcharts
            chart = source.get(client_id)
            if not chart or not chart.get('is_active', True):
                return None
            return copy.deepcopy(chart)

    def list_client_ids(self) -> List[str]:
        with self._lock:
            return sorted(cid for cid, chart in self._flowcharts.items() if chart.get('is_active', True))

    def find_summary(self, client_id: str, period: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        key = period_key(period)
        with self._lock:
            for summary in self._summaries:
                if summary['client_id'] == client_id and period_key(summary['period']) == key:
                    return copy.deepcopy(summary)
        return None

    def list_summaries(self, client_id: str, period_type: Optional[str] = None) -> List[Dict[str, Any]]:
        with self._lock:
            found = [
                copy.deepcopy(s) for s in self._summaries
                if s['client_id'] == client_id and (period_type is None or s['period'].get('type') == period_type)
            ]
        found.sort(key=_period_end, reverse=True)
        return found

    def upsert_summary(self, summary: Dict[str, Any]) -> Dict[str, Any]:
        key = period_key(summary['period'])
        with self._lock:
            for index, existing in enumerate(self._summaries):
                if existing['client_id'] == summary['client_id'] and period_key(existing['period']) == key:
                    self._summaries[index] = copy.deepcopy(summary)
                    break
            else:
                self._summaries.append(copy.deepcopy(summary))
        return summary

    def get_target(self, client_id: str, target_type: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            target = self._targets.get((client_id, target_type))
            return copy.deepcopy(target) if target else None

    def upsert_target(self, target: Dict[str, Any]) -> Dict[str, Any]:
        with self._lock:
            self._targets[(target['client_id'], target['target_type'])] = copy.deepcopy(target)
        return target
