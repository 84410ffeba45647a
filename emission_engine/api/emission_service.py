"""
Emission calculation service: runs the calculators against stored activity
records and keeps period summaries in step with the results.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from emission_engine.api.calculations.carbon_calculator import CarbonCalculator
from emission_engine.api.calculations.categories import resolve_category_kind
from emission_engine.api.calculations.emission_factors import has_emission_factor
from emission_engine.api.errors import ConfigurationMissing, InvalidInput, RecordNotFound
from emission_engine.api.flowchart import resolve_scope_configuration
from emission_engine.api.jobs import SummaryJobQueue
from emission_engine.api.periods import make_period, period_for_timestamp
from emission_engine.api.settings import DEFAULT_SETTINGS
from emission_engine.api.store import DocumentStore, period_key
from emission_engine.api.summary import SummaryAggregator
from emission_engine.models.emission_data import (
    ActivityRecord,
    CalculationStatus,
    CalculationTier,
    CategoryKind,
    PeriodType,
    ProcessingStatus,
)

logger = logging.getLogger(__name__)

LEASED_ASSET_KINDS = (CategoryKind.UPSTREAM_LEASED_ASSETS, CategoryKind.DOWNSTREAM_LEASED_ASSETS)
BATCH_SUMMARY_PERIODS = (PeriodType.MONTHLY.value, PeriodType.YEARLY.value)


class EmissionCalculationService:
    """Calculates and stores emissions for activity records"""

    def __init__(
        self,
        store: DocumentStore,
        aggregator: SummaryAggregator,
        job_queue: Optional[SummaryJobQueue] = None,
        calculator: Optional[CarbonCalculator] = None,
        settings: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.aggregator = aggregator
        self.job_queue = job_queue
        self.calculator = calculator or CarbonCalculator()
        self.settings = settings or DEFAULT_SETTINGS

    def _calculation_values(self, record: ActivityRecord, config) -> Dict[str, float]:
        """Record values plus the node's latest S1+S2 total for leased assets that did not send one"""
        values = dict(record.data_values)
        kind = resolve_category_kind(config, record.scope_type)
        if (
            kind in LEASED_ASSET_KINDS
            and config.calculation_model == CalculationTier.TIER_2.value
            and values.get('building_total_s1_s2') is None
        ):
            values['building_total_s1_s2'] = self.aggregator.get_node_s1_s2_from_latest_summary(
                record.client_id, record.node_id
            )
        return values

    def calculate_emissions(
        self,
        client_id: str,
        node_id: str,
        scope_identifier: str,
        record_id: str,
        refresh_summaries: bool = True,
    ) -> Dict[str, Any]:
        """
        Calculate and store emissions for one activity record

        Re-running overwrites the stored result.

        Raises:
            RecordNotFound: no record with ``record_id``
            ConfigurationMissing: the scope is not configured on the node
            InvalidInput: the record's scope type is not Scope 1, 2 or 3
        """
        record = self.store.get_record(record_id)
        if record is None:
            raise RecordNotFound(f"Data entry {record_id} not found")

        config = resolve_scope_configuration(self.store, client_id, node_id, scope_identifier)
        if config is None:
            raise ConfigurationMissing(f"Scope configuration {scope_identifier} not found for node {node_id}")

        scope_type = record.scope_type or config.scope_type
        if not self.calculator.is_supported_scope(scope_type):
            raise InvalidInput(f"Invalid scope type: {scope_type}")
        record.scope_type = scope_type

        result = self.calculator.calculate(
            config,
            self._calculation_values(record, config),
            record.cumulative_values,
            scope_type=scope_type,
        )

        if result.get('success'):
            record.calculated_emissions = result.get('emissions') or {'incoming': {}, 'cumulative': {}}
            record.processing_status = ProcessingStatus.PROCESSED.value
            record.emission_calculation_status = CalculationStatus.COMPLETED.value
            record.emission_calculated_at = datetime.now(timezone.utc)
            record.emission_calculation_error = None
            self.store.update_record(record)
            if refresh_summaries:
                self.refresh_summaries(record)
        else:
            record.emission_calculation_status = CalculationStatus.FAILED.value
            record.emission_calculation_error = result.get('message')
            self.store.update_record(record)
            logger.warning(f"Emission calculation failed for entry {record_id}: {result.get('message')}")

        return result

    # summaries

    def refresh_summaries(self, record: ActivityRecord) -> None:
        """
        Two-phase summary refresh for a changed record

        Phase 1 recomputes the affected periods now; phase 2 queues the same
        periods again so writes that land after phase 1 are picked up.
        """
        try:
            self.aggregator.update_summaries_on_data_change(record)
            record.summary_update_status = 'completed'
        except Exception as e:
            logger.exception(f"Summary update failed for entry {record.id}")
            record.summary_update_status = 'failed'
            record.emission_calculation_error = record.emission_calculation_error or f"Summary update failed: {e}"

        try:
            self.store.update_record(record)
        except KeyError:
            # deleted while we were refreshing
            logger.debug(f"Entry {record.id} no longer exists, summary status not stored")

        if self.job_queue:
            self.job_queue.enqueue(record.client_id, self.aggregator.refresh_periods_for(record.timestamp))

    def refresh_periods(self, client_id: str, timestamps: Iterable[datetime]) -> List[Dict[str, Any]]:
        """Recompute every refresh period touched by ``timestamps`` once"""
        periods = {}
        for ts in timestamps:
            for period in self.aggregator.refresh_periods_for(ts):
                periods[tuple(period_key(period).values())] = period

        refreshed = []
        for period in periods.values():
            try:
                self.aggregator.recalculate_period(client_id, period)
                refreshed.append(period)
            except Exception:
                logger.exception(f"Summary refresh failed for client {client_id}, period {period}")

        if self.job_queue:
            self.job_queue.enqueue(client_id, periods.values())
        return refreshed

    # batches

    def _calculate_item(self, record: ActivityRecord) -> Dict[str, Any]:
        try:
            result = self.calculate_emissions(
                record.client_id,
                record.node_id,
                record.scope_identifier,
                record.id,
                refresh_summaries=False,
            )
            if result.get('success'):
                return {'record_id': record.id, 'success': True}
            return {'record_id': record.id, 'success': False, 'error': result.get('message')}
        except Exception as e:
            return {'record_id': record.id, 'success': False, 'error': str(e)}

    def recalculate_emissions_batch(
        self,
        client_id: str,
        node_id: Optional[str] = None,
        scope_identifier: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        batch_size: Optional[int] = None,
        recalculate_summaries: bool = True,
    ) -> Dict[str, Any]:
        """
        Recalculate emissions for many records

        Records are processed in fixed-size batches; every record of a batch
        runs in parallel and the next batch starts once the whole batch is done.

        Returns:
            ``{total, success, failed, errors}``
        """
        batch_size = batch_size or self.settings['batch']['size']
        records = self.store.find_records(client_id, node_id=node_id, scope_identifier=scope_identifier, start=start, end=end)
        outcome = {'total': len(records), 'success': 0, 'failed': 0, 'errors': []}

        for offset in range(0, len(records), batch_size):
            batch = records[offset:offset + batch_size]
            with ThreadPoolExecutor(max_workers=len(batch)) as pool:
                results = list(pool.map(self._calculate_item, batch))
            for item in results:
                if item['success']:
                    outcome['success'] += 1
                else:
                    outcome['failed'] += 1
                    outcome['errors'].append({'record_id': item['record_id'], 'error': item['error']})
            logger.info(
                f"Batch {offset // batch_size + 1} for client {client_id}: "
                f"{sum(1 for r in results if r['success'])}/{len(batch)} succeeded"
            )

        if recalculate_summaries and records:
            self._recalculate_batch_summaries(client_id, records)

        logger.info(f"Batch recalculation for client {client_id} finished: {outcome['success']}/{outcome['total']} succeeded")
        return outcome

    def _recalculate_batch_summaries(self, client_id: str, records: List[ActivityRecord]) -> None:
        periods = {}
        for record in records:
            for period_type in BATCH_SUMMARY_PERIODS:
                period = period_for_timestamp(period_type, record.timestamp)
                periods[tuple(period_key(period).values())] = period
        periods[('all-time',)] = make_period(PeriodType.ALL_TIME.value)

        for period in periods.values():
            try:
                self.aggregator.recalculate_period(client_id, period)
            except Exception:
                logger.exception(f"Summary recalculation failed for client {client_id}, period {period}")

    # checks

    def validate_emission_prerequisites(self, client_id: str, node_id: str, scope_identifier: str) -> Dict[str, Any]:
        """Whether a scope is ready for calculation: flowchart, scope and emission factor present"""
        if not (self.store.get_active_flowchart(client_id) or self.store.get_active_flowchart(client_id, process=True)):
            return {'is_valid': False, 'message': 'No active flowchart found for client', 'scope_config': None}

        config = resolve_scope_configuration(self.store, client_id, node_id, scope_identifier)
        if config is None:
            return {'is_valid': False, 'message': 'Scope configuration not found', 'scope_config': None}

        if not config.emission_factor or not has_emission_factor(config):
            return {'is_valid': False, 'message': 'Emission factor not configured', 'scope_config': config}

        return {'is_valid': True, 'message': 'All prerequisites met', 'scope_config': config}
