"""
Background summary refresh jobs on an APScheduler BackgroundScheduler
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Iterable, Optional

from apscheduler.schedulers.background import BackgroundScheduler

from emission_engine.api.periods import make_period
from emission_engine.api.store import period_key
from emission_engine.api.summary import SummaryAggregator
from emission_engine.models.emission_data import PeriodType

logger = logging.getLogger(__name__)

NIGHTLY_JOB_ID = 'nightly-summary-recalculation'
NIGHTLY_PERIODS = (PeriodType.MONTHLY.value, PeriodType.YEARLY.value, PeriodType.ALL_TIME.value)


def job_id(client_id: str, period: Dict[str, Any]) -> str:
    """Stable id of a period refresh; re-enqueueing the same period replaces the pending job"""
    parts = [str(v) for v in period_key(period).values() if v is not None]
    return 'summary:' + client_id + ':' + ':'.join(parts)


class SummaryJobQueue:
    """
    Queue of idempotent "recompute this period" jobs

    Used for the second phase of a summary refresh: the job runs shortly
    after the triggering write and simply overwrites the period summary.
    """

    def __init__(
        self,
        aggregator: SummaryAggregator,
        scheduler: Optional[BackgroundScheduler] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.aggregator = aggregator
        self.scheduler = scheduler or BackgroundScheduler()
        settings = settings or {}
        self.delay_seconds = (settings.get('summary') or {}).get('phase2_delay_seconds', 2)
        self.nightly = (settings.get('scheduler') or {}).get('nightly_recalculation') or {'hour': 1, 'minute': 30}

    def run_refresh(self, client_id: str, period: Dict[str, Any]) -> None:
        try:
            self.aggregator.recalculate_period(client_id, period)
        except Exception:
            logger.exception(f"Summary refresh failed for client {client_id}, period {period_key(period)}")

    def enqueue(self, client_id: str, periods: Iterable[Dict[str, Any]]) -> None:
        run_at = datetime.now(timezone.utc) + timedelta(seconds=self.delay_seconds)
        for period in periods:
            self.scheduler.add_job(
                self.run_refresh,
                'date',
                run_date=run_at,
                args=[client_id, period],
                id=job_id(client_id, period),
                replace_existing=True,
                misfire_grace_time=None,
            )
            logger.debug(f"Queued summary refresh {job_id(client_id, period)}")

    def recalculate_all_clients(self) -> None:
        """Refresh monthly, yearly and all-time summaries of every active client"""
        now = datetime.now(timezone.utc)
        client_ids = self.aggregator.store.list_client_ids()
        for client_id in client_ids:
            for period_type in NIGHTLY_PERIODS:
                period = make_period(period_type, year=now.year, month=now.month)
                self.run_refresh(client_id, period)
        logger.info(f"Nightly summary recalculation finished for {len(client_ids)} clients")

    def schedule_nightly(self) -> None:
        self.scheduler.add_job(
            self.recalculate_all_clients,
            'cron',
            hour=self.nightly.get('hour', 1),
            minute=self.nightly.get('minute', 30),
            id=NIGHTLY_JOB_ID,
            replace_existing=True,
        )

    def start(self) -> None:
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info("Summary job scheduler started")

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
