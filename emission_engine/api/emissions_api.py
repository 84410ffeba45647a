from fastapi import APIRouter, Depends, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from emission_engine.api.dependencies import calculations_dep, to_http_error
from emission_engine.api.emission_service import EmissionCalculationService
from emission_engine.api.errors import EmissionEngineError
from emission_engine.models.emission_data import BatchRecalculationRequest, CalculateEmissionsRequest

router = APIRouter()


@router.post("/api/emissions/calculate")
def calculate_emissions(
    payload: CalculateEmissionsRequest,
    service: EmissionCalculationService = Depends(calculations_dep),
):
    """
    Calculate and store the emissions of one activity record.
    A calculation that reports failure (e.g. an unsupported Scope 2 category) answers 400.
    """
    try:
        result = service.calculate_emissions(
            payload.client_id, payload.node_id, payload.scope_identifier, payload.record_id
        )
    except EmissionEngineError as e:
        raise to_http_error(e)
    if not result.get('success'):
        raise HTTPException(status_code=400, detail=result.get('message') or 'Emission calculation failed')
    return result


@router.post("/api/emissions/{client_id}/recalculate")
def recalculate_emissions(
    client_id: str,
    payload: BatchRecalculationRequest,
    service: EmissionCalculationService = Depends(calculations_dep),
):
    """Recalculate a client's records in batches; partial failures answer 207."""
    try:
        outcome = service.recalculate_emissions_batch(
            client_id,
            node_id=payload.node_id,
            scope_identifier=payload.scope_identifier,
            start=payload.start,
            end=payload.end,
            batch_size=payload.batch_size,
            recalculate_summaries=payload.recalculate_summaries,
        )
    except EmissionEngineError as e:
        raise to_http_error(e)

    status_code = 207 if outcome['failed'] else 200
    return JSONResponse(status_code=status_code, content=jsonable_encoder({'success': True, **outcome}))


@router.get("/api/emissions/{client_id}/{node_id}/{scope_identifier}/prerequisites")
def emission_prerequisites(
    client_id: str,
    node_id: str,
    scope_identifier: str,
    service: EmissionCalculationService = Depends(calculations_dep),
):
    check = service.validate_emission_prerequisites(client_id, node_id, scope_identifier)
    return {
        'is_valid': check['is_valid'],
        'message': check['message'],
        'scope_config': check['scope_config'].model_dump() if check['scope_config'] else None,
    }
