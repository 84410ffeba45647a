from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from emission_engine.api.dependencies import aggregator_dep, to_http_error
from emission_engine.api.errors import EmissionEngineError
from emission_engine.api.summary import SummaryAggregator

router = APIRouter()


@router.get("/api/summaries/{client_id}")
def get_emission_summary(
    client_id: str,
    period_type: str = 'monthly',
    year: Optional[int] = None,
    month: Optional[int] = None,
    week: Optional[int] = None,
    day: Optional[int] = None,
    recalculate: bool = False,
    prefer_latest: bool = True,
    aggregator: SummaryAggregator = Depends(aggregator_dep),
):
    """
    Fetch a period summary.
    Without year/month/week/day the latest stored summary of the period type is returned.
    """
    try:
        summary = aggregator.get_emission_summary(
            client_id, period_type, year, month, week, day,
            recalculate=recalculate, prefer_latest=prefer_latest,
        )
    except EmissionEngineError as e:
        raise to_http_error(e)
    return {'success': True, 'data': summary}


@router.get("/api/summaries/{client_id}/multiple")
def get_multiple_summaries(
    client_id: str,
    period_type: str = 'monthly',
    start_year: Optional[int] = None,
    start_month: Optional[int] = None,
    end_year: Optional[int] = None,
    end_month: Optional[int] = None,
    limit: int = 12,
    aggregator: SummaryAggregator = Depends(aggregator_dep),
):
    try:
        summaries = aggregator.get_multiple_summaries(
            client_id, period_type, start_year, start_month, end_year, end_month, limit
        )
    except EmissionEngineError as e:
        raise to_http_error(e)
    return {'success': True, 'data': summaries, 'count': len(summaries)}


@router.get("/api/summaries/{client_id}/filtered")
def get_filtered_summary(
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
    aggregator: SummaryAggregator = Depends(aggregator_dep),
):
    try:
        result = aggregator.get_filtered_summary(
            client_id, period_type, year, month, week, day,
            scope=scope, category=category, node_id=node_id,
            department=department, activity=activity, location=location,
        )
    except EmissionEngineError as e:
        raise to_http_error(e)
    return {'success': True, **result}


@router.get("/api/summaries/{client_id}/scope12-total")
def get_latest_scope12_total(client_id: str, aggregator: SummaryAggregator = Depends(aggregator_dep)):
    try:
        return {'success': True, 'data': aggregator.get_latest_scope12_total(client_id)}
    except EmissionEngineError as e:
        raise to_http_error(e)


@router.post("/api/summaries/{client_id}/recalculate")
def recalculate_summary(
    client_id: str,
    period_type: str = 'monthly',
    year: Optional[int] = None,
    month: Optional[int] = None,
    week: Optional[int] = None,
    day: Optional[int] = None,
    aggregator: SummaryAggregator = Depends(aggregator_dep),
):
    try:
        summary = aggregator.recalculate_and_save_summary(client_id, period_type, year, month, week, day)
    except EmissionEngineError as e:
        raise to_http_error(e)
    if summary is None:
        raise HTTPException(status_code=404, detail="No processed data or active flowchart for the requested period")
    return {'success': True, 'data': summary}
