"""
Scope 3 emission calculations for the 15 GHG Protocol value-chain categories.

Every category reads one blended CO2e factor (see ``get_co2e_factor``) and
computes the incoming result from this entry's values and the cumulative
result from the stream's running values. Tier 1 is spend/count based,
tier 2 activity based; some categories branch further on the scope's
normalized ``activity`` label.
"""

import logging
from typing import Callable, Dict, Optional

from emission_engine.api.calculations import config_lookup as lookup
from emission_engine.api.calculations.categories import SCOPE3_CATEGORIES, lookup_category, normalize_activity
from emission_engine.api.calculations.context import CalculationContext
from emission_engine.api.calculations.emission_factors import get_co2e_factor, get_grid_factor, hub_factor_list
from emission_engine.api.calculations.uncertainty import empty_emissions
from emission_engine.models.emission_data import CalculationTier, CategoryKind, ScopeType

logger = logging.getLogger(__name__)

TIER1 = CalculationTier.TIER_1.value
TIER2 = CalculationTier.TIER_2.value
TIER3_MESSAGE = 'Calculation for Tier 3 is under development.'
COMMUTING_TIER2_NOTE = 'Tier 2 calculation in progress'


class Scope3Calculation:
    """Holds the factors for one entry and writes results into the two buckets"""

    def __init__(self, ctx: CalculationContext):
        self.ctx = ctx
        self.ef = get_co2e_factor(ctx.config)
        self.grid_ef = get_grid_factor(ctx.config)
        self.emissions = empty_emissions()

    def emit(self, key: str, incoming: float, cumulative: float) -> None:
        self.emissions['incoming'][key] = self.ctx.record(incoming)
        self.emissions['cumulative'][key] = self.ctx.record(cumulative)

    def scaled(self, key: str, field: str, factor: float) -> None:
        """Emit ``field * factor`` for both buckets"""
        self.emit(key, self.ctx.value(field) * factor, self.ctx.cumulative(field) * factor)

    @property
    def tier(self) -> str:
        return self.ctx.tier

    @property
    def activity(self) -> str:
        return normalize_activity(self.ctx.config.activity)


def _purchased_goods(calc: Scope3Calculation) -> None:
    if calc.tier == TIER1:
        calc.scaled('purchased_goods_services', 'procurement_spend', calc.ef)
    elif calc.tier == TIER2:
        calc.scaled('purchased_goods_services', 'physical_quantity', calc.ef)


def _capital_goods(calc: Scope3Calculation) -> None:
    if calc.tier == TIER1:
        calc.scaled('capital_goods', 'procurement_spend', calc.ef)
    elif calc.tier == TIER2:
        lifetime = lookup.asset_lifetime(calc.ctx.config)
        calc.scaled('capital_goods', 'asset_quantity', calc.ef / lifetime)


def _fuel_and_energy(calc: Scope3Calculation) -> None:
    ctx = calc.ctx
    calc.scaled('upstream_fuel', 'fuel_consumed', calc.ef)
    calc.scaled('well_to_tank', 'fuel_consumption', calc.ef)

    td = lookup.td_loss_factor(ctx.config)
    if td is None:
        td = ctx.value('td_loss_factor')
    calc.scaled('td_losses', 'electricity_consumption', td * calc.grid_ef)


def _transport(key: str, spend_field: str) -> Callable[[Scope3Calculation], None]:
    def handler(calc: Scope3Calculation) -> None:
        ctx = calc.ctx
        if calc.tier == TIER1:
            calc.scaled(key, spend_field, calc.ef)
        elif calc.tier == TIER2:
            allocation = ctx.optional('allocation')
            if allocation is None:
                allocation = ctx.value('mass')
            cum_allocation = lookup.coerce_number(ctx.cumulative_values.get('allocation'))
            if cum_allocation is None:
                cum_allocation = ctx.cumulative('mass')
            calc.emit(
                key,
                allocation * ctx.value('distance') * calc.ef,
                cum_allocation * ctx.cumulative('distance') * calc.ef,
            )
    return handler


def _waste(calc: Scope3Calculation) -> None:
    ctx = calc.ctx
    if calc.tier == TIER1:
        configured = lookup.default_recycling_rate(ctx.config)
        rate = configured if configured != 0 else (lookup.as_fraction(ctx.data_values.get('recycling_rate')) or 0.0)
        calc.scaled('waste_generated_in_operation', 'waste_mass', calc.ef * (1 - rate))
    elif calc.tier == TIER2:
        calc.scaled('waste_generated_in_operation', 'waste_mass', calc.ef)


def _business_travel(calc: Scope3Calculation) -> None:
    ctx = calc.ctx
    activity = calc.activity

    if calc.tier == TIER1:
        if activity != 'hotelbased':
            calc.scaled('business_travel', 'travel_spend', calc.ef)
        if activity != 'travelbased':
            calc.scaled('accommodation', 'hotel_nights', calc.ef)

    elif calc.tier == TIER2:
        if activity == 'hotelbased':
            calc.scaled('accommodation', 'hotel_nights', calc.ef)
            return
        calc.emit(
            'business_travel',
            ctx.value('number_of_passengers') * ctx.value('distance_travelled') * calc.ef,
            ctx.cumulative('number_of_passengers') * ctx.cumulative('distance_travelled') * calc.ef,
        )
        if activity != 'travelbased' and (ctx.value('hotel_nights') > 0 or ctx.cumulative('hotel_nights') > 0):
            calc.scaled('accommodation', 'hotel_nights', calc.ef)


def _employee_commuting(calc: Scope3Calculation) -> None:
    ctx = calc.ctx
    if calc.tier == TIER1:
        fields = ('employee_count', 'average_commute_distance', 'working_days')
        incoming = cumulative = calc.ef
        for field in fields:
            incoming *= ctx.value(field)
            cumulative *= ctx.cumulative(field)
        calc.emit('employee_commuting', incoming, cumulative)
    elif calc.tier == TIER2:
        calc.emit('employee_commuting', 0.0, 0.0)
        for bucket in ('incoming', 'cumulative'):
            calc.emissions[bucket]['employee_commuting']['note'] = COMMUTING_TIER2_NOTE


def _area_ratio(area: float, total: float, occupancy: float) -> float:
    if total > 0 and occupancy > 0:
        return area / (total * occupancy)
    return 0.0


def _leased_assets(key: str) -> Callable[[Scope3Calculation], None]:
    def handler(calc: Scope3Calculation) -> None:
        ctx = calc.ctx
        if calc.tier == TIER1:
            calc.scaled(key, 'leased_area', calc.ef)
            return
        if calc.tier != TIER2:
            return

        activity = calc.activity
        energy = ctx.value('energy_consumption')
        if activity == 'energybased' or (activity != 'areabased' and energy > 0):
            calc.scaled(key, 'energy_consumption', calc.ef)
            return

        occupancy = lookup.occupancy_factor(ctx.data_values, ctx.config)
        building_total = ctx.value('building_total_s1_s2')
        calc.emit(
            key,
            _area_ratio(ctx.value('leased_area'), ctx.value('total_area'), occupancy) * building_total,
            _area_ratio(ctx.cumulative('leased_area'), ctx.cumulative('total_area'), occupancy) * building_total,
        )
    return handler


def _processing_of_sold_products(calc: Scope3Calculation) -> None:
    if calc.tier in (TIER1, TIER2):
        calc.scaled('processing_of_sold_products', 'product_quantity', calc.ef)


def _use_of_sold_products(calc: Scope3Calculation) -> None:
    ctx = calc.ctx
    config = ctx.config

    if calc.tier == TIER1:
        configured = lookup.average_lifetime_energy_consumption(config)
        field = 'average_lifetime_energy_consumption'
        life_in = configured if configured is not None else ctx.value(field)
        life_cum = configured if configured is not None else ctx.cumulative(field)
        calc.emit(
            'use_of_sold_products',
            ctx.value('product_quantity') * life_in * calc.ef,
            ctx.cumulative('product_quantity') * life_cum * calc.ef,
        )

    elif calc.tier == TIER2:
        pattern = lookup.use_pattern(config)
        efficiency = lookup.energy_efficiency(config)

        def _resolve(configured: Optional[float], field: str, cumulative: bool) -> float:
            if configured is not None:
                return configured
            source = ctx.cumulative_values if cumulative else ctx.data_values
            # neutral factor: an unset use pattern or efficiency leaves the product energy unscaled
            return lookup.to_number(source.get(field), 1.0)

        calc.emit(
            'use_of_sold_products',
            ctx.value('product_quantity')
            * _resolve(pattern, 'use_pattern', False)
            * _resolve(efficiency, 'energy_efficiency', False)
            * calc.grid_ef,
            ctx.cumulative('product_quantity')
            * _resolve(pattern, 'use_pattern', True)
            * _resolve(efficiency, 'energy_efficiency', True)
            * calc.grid_ef,
        )


EOL_SPLITS = (
    ('eol_disposal', 'to_disposal', lookup.EOL_DISPOSAL_KEYS),
    ('eol_landfill', 'to_landfill', lookup.EOL_LANDFILL_KEYS),
    ('eol_incineration', 'to_incineration', lookup.EOL_INCINERATION_KEYS),
)


def _end_of_life(calc: Scope3Calculation) -> None:
    if calc.tier != TIER1:
        return
    ctx = calc.ctx
    hub = hub_factor_list(ctx.config)
    mass = ctx.value('mass_eol')
    cum_mass = ctx.cumulative('mass_eol')

    for slot, (key, field, config_keys) in enumerate(EOL_SPLITS):
        factor = calc.ef
        if hub is not None and slot < len(hub) and hub[slot] is not None:
            factor = hub[slot]

        configured = lookup.eol_fraction(ctx.config, config_keys)
        if configured is not None:
            share_in = share_cum = configured
        else:
            share_in = lookup.as_fraction(ctx.data_values.get(field)) or 0.0
            share_cum = lookup.as_fraction(ctx.cumulative_values.get(field)) or 0.0

        calc.emit(key, mass * share_in * factor, cum_mass * share_cum * factor)


def _franchises(calc: Scope3Calculation) -> None:
    ctx = calc.ctx
    if calc.tier == TIER1:
        per_franchise = ctx.value('avg_emission_per_franchise') or calc.ef
        calc.scaled('franchises', 'franchise_count', per_franchise)
        return
    if calc.tier != TIER2:
        return

    def _s1_s2(source: Callable[[str], float]) -> float:
        return source('franchise_total_s1_emission') + source('franchise_total_s2_emission')

    activity = calc.activity
    emission_based = activity == 'emissionbased' or (
        activity != 'energybased'
        and (ctx.value('franchise_total_s1_emission') > 0 or ctx.value('franchise_total_s2_emission') > 0)
    )
    if emission_based:
        calc.emit('franchises', _s1_s2(ctx.value), _s1_s2(ctx.cumulative))
    else:
        calc.scaled('franchises', 'energy_consumption', calc.ef)


def _investments(calc: Scope3Calculation) -> None:
    ctx = calc.ctx
    configured = lookup.equity_share(ctx.config)

    def _share(values) -> float:
        if configured is not None:
            return configured
        payload = lookup.first_present(lookup.payload_candidates(values, lookup.EQUITY_SHARE_KEYS))
        # no equity share anywhere means the whole investee is counted
        return lookup.normalize_fraction(payload) if payload is not None else 1.0

    share_in = _share(ctx.data_values)
    share_cum = _share(ctx.cumulative_values)

    def _investee_s1_s2(source: Callable[[str], float]) -> float:
        return source('investee_scope1_emission') + source('investee_scope2_emission')

    if calc.tier == TIER1:
        calc.emit(
            'investments',
            ctx.value('investee_revenue') * calc.ef * share_in,
            ctx.cumulative('investee_revenue') * calc.ef * share_cum,
        )
        return
    if calc.tier != TIER2:
        return

    activity = calc.activity
    if activity in ('investmentbased', 'emissionbased'):
        calc.emit('investments', _investee_s1_s2(ctx.value) * share_in, _investee_s1_s2(ctx.cumulative) * share_cum)
    elif activity == 'energybased':
        calc.scaled('investments', 'energy_consumption', calc.ef)
    elif ctx.value('investee_scope1_emission') > 0 or ctx.value('investee_scope2_emission') > 0:
        calc.emit('investments', _investee_s1_s2(ctx.value) * share_in, _investee_s1_s2(ctx.cumulative) * share_cum)
    elif ctx.value('energy_consumption') > 0:
        calc.scaled('investments', 'energy_consumption', calc.ef)


SCOPE3_HANDLERS: Dict[CategoryKind, Callable[[Scope3Calculation], None]] = {
    CategoryKind.PURCHASED_GOODS: _purchased_goods,
    CategoryKind.CAPITAL_GOODS: _capital_goods,
    CategoryKind.FUEL_AND_ENERGY: _fuel_and_energy,
    CategoryKind.UPSTREAM_TRANSPORT: _transport('upstream_transport_and_distribution', 'transportation_spend'),
    CategoryKind.DOWNSTREAM_TRANSPORT: _transport('downstream_transport_and_distribution', 'transport_spend'),
    CategoryKind.WASTE: _waste,
    CategoryKind.BUSINESS_TRAVEL: _business_travel,
    CategoryKind.EMPLOYEE_COMMUTING: _employee_commuting,
    CategoryKind.UPSTREAM_LEASED_ASSETS: _leased_assets('upstream_leased_assets'),
    CategoryKind.DOWNSTREAM_LEASED_ASSETS: _leased_assets('downstream_leased_assets'),
    CategoryKind.PROCESSING_OF_SOLD_PRODUCTS: _processing_of_sold_products,
    CategoryKind.USE_OF_SOLD_PRODUCTS: _use_of_sold_products,
    CategoryKind.END_OF_LIFE: _end_of_life,
    CategoryKind.FRANCHISES: _franchises,
    CategoryKind.INVESTMENTS: _investments,
}


def calculate_scope3_emissions(ctx: CalculationContext) -> Dict:
    """
    Calculate Scope 3 emissions for one activity entry

    Args:
        ctx: Entry values and scope configuration

    Returns:
        {success, scope_type, category, tier, emissions}. Unknown categories and
        tier/activity combinations without a formula succeed with empty buckets.
    """
    config = ctx.config
    result = {
        'success': True,
        'scope_type': ScopeType.SCOPE_3.value,
        'category': config.category_name,
        'tier': ctx.tier,
    }

    if ctx.tier == CalculationTier.TIER_3.value:
        result['message'] = TIER3_MESSAGE
        result['emissions'] = empty_emissions()
        return result

    kind = lookup_category(SCOPE3_CATEGORIES, config.category_name)
    handler = SCOPE3_HANDLERS.get(kind) if kind else None
    if handler is None:
        logger.debug(f"No Scope 3 formula for category '{config.category_name}'")
        result['emissions'] = empty_emissions()
        return result

    calc = Scope3Calculation(ctx)
    handler(calc)
    result['emissions'] = calc.emissions
    return result
