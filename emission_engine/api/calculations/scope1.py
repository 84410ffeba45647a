"""
Scope 1 emission calculations (combustion, fugitive, process)
"""

import logging
from typing import Any, Callable, Dict, Optional

from emission_engine.api.calculations.categories import resolve_scope1_kind
from emission_engine.api.calculations.config_lookup import coerce_number
from emission_engine.api.calculations.context import CalculationContext
from emission_engine.api.calculations.uncertainty import empty_emissions
from emission_engine.models.emission_data import CalculationTier, CategoryKind, ScopeType

logger = logging.getLogger(__name__)

TIER3_MESSAGE = 'Calculation for Tier 3 is under development.'


def _first_number(*values: Any) -> Optional[float]:
    for value in values:
        number = coerce_number(value)
        if number is not None:
            return number
    return None


def _combustion(ctx: CalculationContext, emissions: Dict) -> None:
    ef, gwp = ctx.ef, ctx.gwp
    for key in ctx.data_values:
        for bucket, quantity in (('incoming', ctx.value(key)), ('cumulative', ctx.cumulative(key))):
            co2 = quantity * ef.get('CO2', 0.0)
            ch4 = quantity * ef.get('CH4', 0.0)
            n2o = quantity * ef.get('N2O', 0.0)
            co2e = co2 + ch4 * gwp.get('CH4', 0.0) + n2o * gwp.get('N2O', 0.0)
            emissions[bucket][key] = ctx.record(co2e, co2=co2, ch4=ch4, n2o=n2o)


def _refrigeration(ctx: CalculationContext, emissions: Dict) -> None:
    c = ctx.custom
    units = ctx.value('number_of_units')
    leak = _first_number(c.get('leakage_rate'), ctx.data_values.get('leakage_rate')) or 0.0
    gwp_ref = _first_number(c.get('gwp_refrigerant')) or 0.0

    if ctx.tier == CalculationTier.TIER_1.value and units > 0 and leak > 0 and gwp_ref > 0:
        incoming = units * leak * gwp_ref
        cumulative = ctx.cumulative('number_of_units') * leak * gwp_ref
    else:
        # stock-change method
        gwp_fugitive = _first_number(c.get('gwp_fugitive_emission'), gwp_ref) or 0.0
        keys = ('installed_capacity', 'end_year_capacity', 'purchases', 'disposals')
        inst, end, purch, disp = (ctx.value(k) for k in keys)
        c_inst, c_end, c_purch, c_disp = (ctx.cumulative(k) for k in keys)
        incoming = (inst - end + purch - disp) * gwp_fugitive
        cumulative = (c_inst - c_end + c_purch - c_disp) * gwp_fugitive

    emissions['incoming']['fugitive'] = ctx.record(incoming, emission=incoming)
    emissions['cumulative']['fugitive'] = ctx.record(cumulative, emission=cumulative)


def _sf6(ctx: CalculationContext, emissions: Dict) -> None:
    c = ctx.custom
    gwp_sf6 = _first_number(c.get('gwp_sf6')) or 0.0

    if ctx.tier == CalculationTier.TIER_1.value:
        leak = _first_number(ctx.data_values.get('default_leakage_rate'), c.get('default_leakage_rate')) or 0.0
        cum_leak = _first_number(ctx.cumulative_values.get('default_leakage_rate'), leak)
        incoming = ctx.value('nameplate_capacity') * leak
        cumulative = ctx.cumulative('nameplate_capacity') * cum_leak
    elif ctx.tier == CalculationTier.TIER_2.value:
        keys = ('decrease_inventory', 'acquisitions', 'disbursements', 'net_capacity_increase')
        dec, acq, disb, net = (ctx.value(k) for k in keys)
        c_dec, c_acq, c_disb, c_net = (ctx.cumulative(k) for k in keys)
        incoming = dec + acq - disb - net
        cumulative = c_dec + c_acq - c_disb - c_net
    else:
        return

    emissions['incoming']['SF6'] = ctx.record(incoming * gwp_sf6, emission=incoming)
    emissions['cumulative']['SF6'] = ctx.record(cumulative * gwp_sf6, emission=cumulative)


def _ch4_leaks(ctx: CalculationContext, emissions: Dict) -> None:
    c = ctx.custom
    if ctx.tier == CalculationTier.TIER_1.value:
        key = 'activity_data'
        factor = _first_number(c.get('ef_fugitive_ch4_leak')) or 0.0
        gwp = _first_number(c.get('gwp_ch4_leak')) or 0.0
    else:
        key = 'number_of_components'
        factor = _first_number(c.get('ef_fugitive_ch4_component')) or 0.0
        gwp = _first_number(c.get('gwp_ch4_component')) or 0.0

    ch4_in = ctx.value(key) * factor
    ch4_cum = ctx.cumulative(key) * factor
    emissions['incoming']['CH4_leaks'] = ctx.record(ch4_in * gwp, emission=ch4_in)
    emissions['cumulative']['CH4_leaks'] = ctx.record(ch4_cum * gwp, emission=ch4_cum)


def _process(ctx: CalculationContext, emissions: Dict) -> None:
    c = ctx.custom
    production = ctx.value('production_output')
    raw_input = ctx.value('raw_material_input')

    if ctx.tier == CalculationTier.TIER_1.value and production > 0:
        factor = _first_number(c.get('industry_average_emission_factor')) or 0.0
        incoming = production * factor
        cumulative = ctx.cumulative('production_output') * factor
    elif ctx.tier == CalculationTier.TIER_2.value and raw_input > 0:
        stoich = _first_number(c.get('stoichiometric_factor')) or 0.0
        conversion = _first_number(c.get('conversion_efficiency')) or 0.0
        incoming = raw_input * stoich * conversion
        cumulative = ctx.cumulative('raw_material_input') * stoich * conversion
    else:
        return

    emissions['incoming']['process'] = ctx.record(incoming)
    emissions['cumulative']['process'] = ctx.record(cumulative)


SCOPE1_HANDLERS: Dict[CategoryKind, Callable[[CalculationContext, Dict], None]] = {
    CategoryKind.COMBUSTION: _combustion,
    CategoryKind.REFRIGERATION: _refrigeration,
    CategoryKind.SF6: _sf6,
    CategoryKind.CH4_LEAKS: _ch4_leaks,
    CategoryKind.PROCESS: _process,
}


def calculate_scope1_emissions(ctx: CalculationContext) -> Dict:
    """
    Calculate Scope 1 emissions for one activity entry

    Args:
        ctx: Entry values with resolved emission factors and GWPs

    Returns:
        {success, scope_type, category, tier, emissions}; unsupported categories
        succeed with empty buckets
    """
    config = ctx.config
    result = {
        'success': True,
        'scope_type': ScopeType.SCOPE_1.value,
        'category': config.category_name,
        'tier': ctx.tier,
    }

    if ctx.tier == CalculationTier.TIER_3.value:
        result['message'] = TIER3_MESSAGE
        result['emissions'] = empty_emissions()
        return result

    kind = resolve_scope1_kind(config.category_name, config.activity, config.emission_factor)
    emissions = empty_emissions()
    handler = SCOPE1_HANDLERS.get(kind)
    if handler is None:
        logger.debug(f"No Scope 1 branch for category '{config.category_name}' / activity '{config.activity}'")
    else:
        handler(ctx, emissions)

    result['emissions'] = emissions
    return result
