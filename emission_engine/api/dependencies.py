"""
FastAPI dependencies resolving the services wired onto ``app.state`` at startup
"""

from fastapi import HTTPException, Request

from emission_engine.api.emission_service import EmissionCalculationService
from emission_engine.api.errors import ConfigurationMissing, EmissionEngineError, InvalidInput, RecordNotFound
from emission_engine.api.ingestion import IngestionService
from emission_engine.api.sbti import SbtiService
from emission_engine.api.store import DocumentStore
from emission_engine.api.summary import SummaryAggregator


def store_dep(request: Request) -> DocumentStore:
    return request.app.state.store


def aggregator_dep(request: Request) -> SummaryAggregator:
    return request.app.state.aggregator


def calculations_dep(request: Request) -> EmissionCalculationService:
    return request.app.state.calculations


def ingestion_dep(request: Request) -> IngestionService:
    return request.app.state.ingestion


def sbti_dep(request: Request) -> SbtiService:
    return request.app.state.sbti


def to_http_error(e: EmissionEngineError) -> HTTPException:
    if isinstance(e, (RecordNotFound, ConfigurationMissing)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, InvalidInput):
        return HTTPException(status_code=400, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))
