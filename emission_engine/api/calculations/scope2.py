"""
Scope 2 emission calculations (purchased electricity, steam, heating, cooling)
"""

import logging
from typing import Dict, Optional

from emission_engine.api.calculations.categories import SCOPE2_CATEGORIES, SCOPE2_FIELDS, lookup_category
from emission_engine.api.calculations.config_lookup import coerce_number
from emission_engine.api.calculations.context import CalculationContext
from emission_engine.api.calculations.uncertainty import empty_emissions
from emission_engine.models.emission_data import ScopeType

logger = logging.getLogger(__name__)


def _pick_field(ctx: CalculationContext, preferred: str) -> Optional[str]:
    if preferred in ctx.data_values:
        return preferred
    for key, value in ctx.data_values.items():
        if coerce_number(value) is not None:
            return key
    return None


def calculate_scope2_emissions(ctx: CalculationContext) -> Dict:
    """
    Calculate Scope 2 emissions for one activity entry

    CO2e is quantity times the single CO2 factor of the scope. Sources that
    only publish a blended CO2e factor (EmissionFactorHub) use that instead.
    """
    config = ctx.config
    kind = lookup_category(SCOPE2_CATEGORIES, config.category_name)
    if kind is None:
        return {'success': False, 'message': f"Unsupported Scope 2 category: {config.category_name}"}

    emissions = empty_emissions()
    field = _pick_field(ctx, SCOPE2_FIELDS[kind])
    if field is None:
        logger.warning(f"No numeric field on Scope 2 entry for scope {config.scope_identifier}")
    else:
        factor = ctx.ef.get('CO2') or ctx.ef.get('CO2e') or 0.0
        incoming = ctx.value(field) * factor
        cumulative = ctx.cumulative(field) * factor
        emissions['incoming'][field] = ctx.record(incoming, co2=incoming)
        emissions['cumulative'][field] = ctx.record(cumulative, co2=cumulative)

    return {
        'success': True,
        'scope_type': ScopeType.SCOPE_2.value,
        'category': config.category_name,
        'tier': ctx.tier,
        'emissions': emissions,
    }
