import logging
import os
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from dateutil import parser as date_parser
from dotenv import load_dotenv
from supabase import Client, create_client

from emission_engine.api.store import (
	DATA_ENTRIES,
	EMISSION_SUMMARIES,
	FLOWCHARTS,
	PROCESS_FLOWCHARTS,
	SBTI_TARGETS,
	DocumentStore,
	period_key,
	to_jsonable,
)
from emission_engine.models.emission_data import ActivityRecord

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None

# summary fields stored as ISO strings and parsed back into datetimes
SUMMARY_DATETIME_PATHS = (
	('period', 'from'),
	('period', 'to'),
	('period', 'date'),
	('metadata', 'last_calculated'),
)


def initialize_supabase_from_env() -> Client:
	"""Initialize and cache a Supabase client using environment variables.

	Expected environment variables:
	- SUPABASE_URL
	- SUPABASE_SERVICE_ROLE_KEY (preferred) or SUPABASE_ANON_KEY
	"""
	global _supabase_client
	if _supabase_client is not None:
		return _supabase_client

	load_dotenv()

	supabase_url = os.getenv("SUPABASE_URL")
	api_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY") or os.getenv("SUPABASE_ANON_KEY")

	if not supabase_url:
		raise RuntimeError("SUPABASE_URL is not set")
	if not api_key:
		raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY or SUPABASE_ANON_KEY must be set")

	_supabase_client = create_client(supabase_url, api_key)
	return _supabase_client


def get_supabase_client() -> Client:
	"""Accessor for the cached Supabase client."""
	if _supabase_client is None:
		return initialize_supabase_from_env()
	return _supabase_client


def _parse_datetime(value: Any) -> Any:
	if isinstance(value, str) and value:
		try:
			return date_parser.isoparse(value)
		except ValueError:
			logger.warning(f"Unparseable datetime in stored summary: {value}")
	return value


def _summary_from_row(row: Dict[str, Any]) -> Dict[str, Any]:
	summary = dict(row.get("document") or {})
	summary["id"] = row.get("id")
	for section, key in SUMMARY_DATETIME_PATHS:
		block = summary.get(section)
		if isinstance(block, dict) and key in block:
			block[key] = _parse_datetime(block[key])
	return summary


class SupabaseDocumentStore(DocumentStore):
	"""DocumentStore backed by Supabase (PostgREST) tables"""

	def __init__(self, client: Optional[Client] = None):
		self.client = client or get_supabase_client()

	# activity records

	def insert_record(self, record: ActivityRecord) -> ActivityRecord:
		row = record.model_dump(mode="json")
		row["id"] = row.get("id") or uuid.uuid4().hex
		res = self.client.table(DATA_ENTRIES).insert(row).execute()
		if not res.data:
			raise RuntimeError(f"Failed to insert data entry for scope {record.scope_identifier}")
		return ActivityRecord.model_validate(res.data[0])

	def get_record(self, record_id: str) -> Optional[ActivityRecord]:
		res = self.client.table(DATA_ENTRIES).select("*").eq("id", record_id).limit(1).execute()
		if not res.data:
			return None
		return ActivityRecord.model_validate(res.data[0])

	def update_record(self, record: ActivityRecord) -> ActivityRecord:
		row = record.model_dump(mode="json")
		self.client.table(DATA_ENTRIES).update(row).eq("id", record.id).execute()
		return record

	def update_records(self, records: List[ActivityRecord]) -> None:
		if not records:
			return
		rows = [r.model_dump(mode="json") for r in records]
		self.client.table(DATA_ENTRIES).upsert(rows, on_conflict="id").execute()

	def delete_record(self, record_id: str) -> bool:
		res = self.client.table(DATA_ENTRIES).delete().eq("id", record_id).execute()
		return bool(res.data)

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
		q = self.client.table(DATA_ENTRIES).select("*").eq("client_id", client_id)
		if node_id is not None:
			q = q.eq("node_id", node_id)
		if scope_identifier is not None:
			q = q.eq("scope_identifier", scope_identifier)
		if input_type is not None:
			q = q.eq("input_type", input_type)
		if start is not None:
			q = q.gte("timestamp", start.isoformat())
		if end is not None:
			q = q.lt("timestamp", end.isoformat())
		if processing_status is not None:
			q = q.eq("processing_status", processing_status)
		if not include_summary:
			q = q.eq("is_summary", False)
		res = q.order("timestamp").order("created_at").order("id").execute()
		return [ActivityRecord.model_validate(row) for row in res.data or []]

	# flowcharts

	def get_active_flowchart(self, client_id: str, process: bool = False) -> Optional[Dict[str, Any]]:
		table = PROCESS_FLOWCHARTS if process else FLOWCHARTS
		res = self.client.table(table).select("*").eq("client_id", client_id).eq("is_active", True).limit(1).execute()
		return res.data[0] if res.data else None

	def list_client_ids(self) -> List[str]:
		res = self.client.table(FLOWCHARTS).select("client_id").eq("is_active", True).execute()
		return sorted({row["client_id"] for row in res.data or []})

	# summaries

	def _summary_query(self, client_id: str, period: Dict[str, Any]):
		q = self.client.table(EMISSION_SUMMARIES).select("*").eq("client_id", client_id)
		for part, value in period_key(period).items():
			column = f"period_{part}"
			q = q.is_(column, "null") if value is None else q.eq(column, value)
		return q

	def find_summary(self, client_id: str, period: Dict[str, Any]) -> Optional[Dict[str, Any]]:
		res = self._summary_query(client_id, period).limit(1).execute()
		return _summary_from_row(res.data[0]) if res.data else None

	def list_summaries(self, client_id: str, period_type: Optional[str] = None) -> List[Dict[str, Any]]:
		q = self.client.table(EMISSION_SUMMARIES).select("*").eq("client_id", client_id)
		if period_type is not None:
			q = q.eq("period_type", period_type)
		res = q.order("period_to", desc=True).execute()
		return [_summary_from_row(row) for row in res.data or []]

	def upsert_summary(self, summary: Dict[str, Any]) -> Dict[str, Any]:
		document = to_jsonable({k: v for k, v in summary.items() if k != "id"})
		row = {
			"client_id": summary["client_id"],
			"period_to": document["period"].get("to"),
			"version": summary.get("metadata", {}).get("version"),
			"document": document,
		}
		for part, value in period_key(summary["period"]).items():
			row[f"period_{part}"] = value

		existing = self._summary_query(summary["client_id"], summary["period"]).limit(1).execute()
		if existing.data:
			summary_id = existing.data[0]["id"]
			self.client.table(EMISSION_SUMMARIES).update(row).eq("id", summary_id).execute()
		else:
			res = self.client.table(EMISSION_SUMMARIES).insert(row).execute()
			summary_id = res.data[0]["id"] if res.data else None
		return {**summary, "id": summary_id}

	# SBTi targets

	def get_target(self, client_id: str, target_type: str) -> Optional[Dict[str, Any]]:
		res = (
			self.client.table(SBTI_TARGETS)
			.select("*")
			.eq("client_id", client_id)
			.eq("target_type", target_type)
			.limit(1)
			.execute()
		)
		return res.data[0]["document"] if res.data else None

	def upsert_target(self, target: Dict[str, Any]) -> Dict[str, Any]:
		row = {
			"client_id": target["client_id"],
			"target_type": target["target_type"],
			"document": to_jsonable(target),
		}
		self.client.table(SBTI_TARGETS).upsert(row, on_conflict="client_id,target_type").execute()
		return target

	def health(self) -> Dict[str, Any]:
		url = self.client.rest_url if hasattr(self.client, "rest_url") else None
		return {"store": type(self).__name__, "ok": True, "rest_url": url}
