import csv
import io
from typing import Dict, List, Union


def is_csv_file(filename: str) -> bool:
	"""Check if file is CSV based on extension."""
	return (filename or '').lower().endswith(('.csv',))


def _clean_row(row: Dict) -> Dict[str, str]:
	# DictReader puts surplus cells under the None key
	return {str(k).strip(): (v.strip() if isinstance(v, str) else v) for k, v in row.items() if k is not None}


def parse_csv_bytes(content: bytes, filename: str) -> Dict[str, Union[List[Dict], str, int]]:
	"""Parse CSV bytes into activity rows with trimmed column names."""
	try:
		# Try to decode as UTF-8, fallback to latin-1 if needed
		try:
			text = content.decode('utf-8-sig')
		except UnicodeDecodeError:
			text = content.decode('latin-1')

		csv_reader = csv.DictReader(io.StringIO(text))
		rows = [_clean_row(row) for row in csv_reader]
		rows = [row for row in rows if any(v not in (None, '') for v in row.values())]

		return {
			"type": "csv",
			"data": rows,
			"row_count": len(rows),
			"columns": list(rows[0].keys()) if rows else [],
			"filename": filename,
		}
	except csv.Error as e:
		return {
			"type": "csv",
			"error": f"Failed to parse CSV: {str(e)}",
			"data": [],
			"filename": filename,
		}
