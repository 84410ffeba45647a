from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, File, HTTPException, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from emission_engine.api.dependencies import ingestion_dep, to_http_error
from emission_engine.api.errors import EmissionEngineError
from emission_engine.api.file_processor import is_csv_file
from emission_engine.api.ingestion import IngestionService
from emission_engine.models.emission_data import EditEntryRequest, ManualEntriesRequest

router = APIRouter()


def _multi_row_response(outcome: Dict[str, Any]) -> JSONResponse:
    if outcome['failed_count'] and not outcome['saved_count']:
        status_code = 400
    elif outcome['failed_count']:
        status_code = 207
    else:
        status_code = 200
    body = {'success': outcome['saved_count'] > 0, **outcome}
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@router.post("/api/data/{client_id}/{node_id}/{scope_identifier}/manual")
def save_manual_entries(
    client_id: str,
    node_id: str,
    scope_identifier: str,
    payload: ManualEntriesRequest,
    service: IngestionService = Depends(ingestion_dep),
):
    try:
        outcome = service.save_manual_entries(client_id, node_id, scope_identifier, payload.entries)
    except EmissionEngineError as e:
        raise to_http_error(e)
    return _multi_row_response(outcome)


@router.post("/api/data/{client_id}/{node_id}/{scope_identifier}/api")
def save_api_entry(
    client_id: str,
    node_id: str,
    scope_identifier: str,
    payload: Dict[str, Any] = Body(...),
    service: IngestionService = Depends(ingestion_dep),
):
    try:
        record = service.save_api_entry(client_id, node_id, scope_identifier, payload)
    except EmissionEngineError as e:
        raise to_http_error(e)
    return {'success': True, 'entry': record}


@router.post("/api/data/{client_id}/{node_id}/{scope_identifier}/iot")
def save_iot_entry(
    client_id: str,
    node_id: str,
    scope_identifier: str,
    payload: Dict[str, Any] = Body(...),
    service: IngestionService = Depends(ingestion_dep),
):
    try:
        record = service.save_iot_entry(client_id, node_id, scope_identifier, payload)
    except EmissionEngineError as e:
        raise to_http_error(e)
    return {'success': True, 'entry': record}


@router.post("/api/data/{client_id}/{node_id}/{scope_identifier}/csv")
async def save_csv_entries(
    client_id: str,
    node_id: str,
    scope_identifier: str,
    file: UploadFile = File(...),
    service: IngestionService = Depends(ingestion_dep),
):
    """
    Upload a CSV of activity rows.
    Columns are matched to the scope's data fields; ``date`` and ``time`` columns set the entry time.
    """
    if not is_csv_file(file.filename):
        raise HTTPException(status_code=400, detail="Only .csv files are accepted")
    content = await file.read()
    try:
        outcome = service.save_csv_entries(client_id, node_id, scope_identifier, content, file.filename)
    except EmissionEngineError as e:
        raise to_http_error(e)
    return _multi_row_response(outcome)


@router.patch("/api/data/entries/{record_id}")
def edit_entry(
    record_id: str,
    payload: EditEntryRequest,
    service: IngestionService = Depends(ingestion_dep),
):
    try:
        record = service.edit_entry(record_id, payload.data_values, payload.date, payload.time)
    except EmissionEngineError as e:
        raise to_http_error(e)
    return {'success': True, 'entry': record}


@router.delete("/api/data/entries/{record_id}")
def delete_entry(record_id: str, service: IngestionService = Depends(ingestion_dep)):
    try:
        return {'success': True, **service.delete_entry(record_id)}
    except EmissionEngineError as e:
        raise to_http_error(e)


@router.get("/api/data/{client_id}/{node_id}/{scope_identifier}/cumulative")
def get_latest_cumulative(
    client_id: str,
    node_id: str,
    scope_identifier: str,
    input_type: Optional[str] = None,
    service: IngestionService = Depends(ingestion_dep),
):
    return service.get_latest_cumulative(client_id, node_id, scope_identifier, input_type)
