import logging
import os
from typing import Any, Dict, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI

from emission_engine.api.cumulative import CumulativeStreamTracker
from emission_engine.api.data_api import router as data_router
from emission_engine.api.dependencies import store_dep
from emission_engine.api.emission_service import EmissionCalculationService
from emission_engine.api.emissions_api import router as emissions_router
from emission_engine.api.ingestion import IngestionService
from emission_engine.api.jobs import SummaryJobQueue
from emission_engine.api.notifications import NotificationSink, create_sink
from emission_engine.api.sbti import SbtiService
from emission_engine.api.sbti_api import router as sbti_router
from emission_engine.api.settings import load_settings
from emission_engine.api.store import DocumentStore, InMemoryDocumentStore
from emission_engine.api.summary import SummaryAggregator
from emission_engine.api.summary_api import router as summary_router
from emission_engine.api.supabase_store import SupabaseDocumentStore

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI()
app.include_router(emissions_router)
app.include_router(data_router)
app.include_router(summary_router)
app.include_router(sbti_router)

scheduler = BackgroundScheduler()
logger = logging.getLogger(__name__)


def create_store(settings: Dict[str, Any]) -> DocumentStore:
    backend = settings['store']['backend']
    if backend == 'memory':
        return InMemoryDocumentStore()
    if backend != 'supabase':
        raise RuntimeError(f"Unknown store backend: {backend}")
    return SupabaseDocumentStore()


def build_services(
    settings: Dict[str, Any],
    store: DocumentStore,
    sink: Optional[NotificationSink] = None,
    job_scheduler: Optional[BackgroundScheduler] = None,
) -> Dict[str, Any]:
    """
    Wire the engine services around a store

    A job queue for the second summary refresh phase is only created when a
    scheduler is passed.
    """
    aggregator = SummaryAggregator(store, sink, settings)
    job_queue = SummaryJobQueue(aggregator, job_scheduler, settings) if job_scheduler is not None else None
    calculations = EmissionCalculationService(store, aggregator, job_queue, settings=settings)
    tracker = CumulativeStreamTracker(store)
    return {
        'settings': settings,
        'store': store,
        'sink': sink,
        'aggregator': aggregator,
        'job_queue': job_queue,
        'calculations': calculations,
        'tracker': tracker,
        'ingestion': IngestionService(store, tracker, calculations, sink, settings),
        'sbti': SbtiService(store, sink),
    }


@app.get("/")
async def root():
    return {"message": "Emission calculation and aggregation engine"}


@app.on_event("startup")
async def startup_event() -> None:
    settings = load_settings()
    store = create_store(settings)
    enabled = settings['scheduler']['enabled']
    services = build_services(settings, store, create_sink(settings), scheduler if enabled else None)
    for name, service in services.items():
        setattr(app.state, name, service)
    logger.info(f"Emission engine started with {type(store).__name__}")


@app.on_event("startup")
def start_scheduler():
    job_queue = app.state.job_queue
    if job_queue is None:
        logger.info("Scheduler disabled")
        return
    job_queue.schedule_nightly()
    job_queue.start()


@app.on_event("shutdown")
def stop_scheduler():
    if getattr(app.state, 'job_queue', None) is not None:
        app.state.job_queue.shutdown()


@app.get("/health/store")
async def store_health(store: DocumentStore = Depends(store_dep)):
    return store.health()
