"""
Carbon footprint calculation engine
Dispatches activity entries to the GHG Protocol Scope 1/2/3 calculators
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from emission_engine.api.calculations.context import CalculationContext
from emission_engine.api.calculations.emission_factors import resolve_emission_factors
from emission_engine.api.calculations.scope1 import calculate_scope1_emissions
from emission_engine.api.calculations.scope2 import calculate_scope2_emissions
from emission_engine.api.calculations.scope3 import calculate_scope3_emissions
from emission_engine.models.emission_data import ActivityRecord, ScopeConfiguration, ScopeType

logger = logging.getLogger(__name__)

SCOPE_CALCULATORS = {
    ScopeType.SCOPE_1.value: calculate_scope1_emissions,
    ScopeType.SCOPE_2.value: calculate_scope2_emissions,
    ScopeType.SCOPE_3.value: calculate_scope3_emissions,
}


class CarbonCalculator:
    """
    Main carbon footprint calculator
    Implements GHG Protocol calculation methodology
    """

    def is_supported_scope(self, scope_type: Optional[str]) -> bool:
        return scope_type in SCOPE_CALCULATORS

    def calculate(
        self,
        scope_config: ScopeConfiguration,
        data_values: Mapping[str, Any],
        cumulative_values: Optional[Mapping[str, Any]] = None,
        scope_type: Optional[str] = None,
    ) -> Dict:
        """
        Calculate emissions for one activity entry

        Args:
            scope_config: Scope configuration with emission factor values
            data_values: Canonical incoming values of the entry
            cumulative_values: Running stream totals up to and including the entry
            scope_type: Scope of the entry; defaults to the configuration's scope

        Returns:
            {success, scope_type, category, tier, emissions} or {success: False, message}
        """
        scope_type = scope_type or scope_config.scope_type
        calculator = SCOPE_CALCULATORS.get(scope_type)
        if calculator is None:
            return {'success': False, 'message': f"Invalid scope type: {scope_type}"}

        try:
            ef, gwp = resolve_emission_factors(scope_config)
            ctx = CalculationContext(
                config=scope_config,
                data_values=data_values or {},
                cumulative_values=cumulative_values or {},
                ef=ef,
                gwp=gwp,
            )
            result = calculator(ctx)
        except Exception as e:
            logger.error(f"Emission calculation failed for scope {scope_config.scope_identifier}: {e}")
            return {'success': False, 'message': f"Error calculating emissions: {e}"}

        logger.debug(
            f"Calculated {scope_type} / {scope_config.category_name} "
            f"({scope_config.calculation_model}) for scope {scope_config.scope_identifier}"
        )
        return result

    def calculate_for_record(self, record: ActivityRecord, scope_config: ScopeConfiguration) -> Dict:
        """Calculate emissions for a stored activity record"""
        return self.calculate(
            scope_config,
            record.data_values,
            record.cumulative_values,
            scope_type=record.scope_type or scope_config.scope_type,
        )

    def calculate_bulk(
        self,
        items: List[Tuple[ActivityRecord, ScopeConfiguration]],
    ) -> List[Dict]:
        """
        Calculate emissions for multiple records

        Args:
            items: (record, scope configuration) pairs

        Returns:
            One result per pair, in order
        """
        results = [self.calculate_for_record(record, config) for record, config in items]
        logger.info(f"Calculated emissions for {len(results)} activity records")
        return results
