from fastapi import APIRouter, Depends

from emission_engine.api.dependencies import sbti_dep, to_http_error
from emission_engine.api.errors import EmissionEngineError
from emission_engine.api.sbti import SbtiService, build_trajectory
from emission_engine.models.emission_data import SbtiTargetRequest, TargetType, TrajectoryPreviewRequest

router = APIRouter()


@router.post("/api/sbti/trajectory/preview")
def preview_trajectory(payload: TrajectoryPreviewRequest):
    """Compute a trajectory without storing anything."""
    try:
        return {'success': True, 'data': build_trajectory(payload)}
    except EmissionEngineError as e:
        raise to_http_error(e)


@router.post("/api/sbti/{client_id}/targets")
def upsert_target(client_id: str, payload: SbtiTargetRequest, service: SbtiService = Depends(sbti_dep)):
    try:
        return {'success': True, 'data': service.upsert_target(client_id, payload)}
    except EmissionEngineError as e:
        raise to_http_error(e)


@router.get("/api/sbti/{client_id}/trajectory")
def get_trajectory(client_id: str, target_type: TargetType, service: SbtiService = Depends(sbti_dep)):
    try:
        return {'success': True, 'data': service.get_trajectory(client_id, target_type.value)}
    except EmissionEngineError as e:
        raise to_http_error(e)
