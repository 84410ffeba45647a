"""
Emission factor resolution.

Turns the source-specific ``emission_factor_values`` block of a scope
configuration (DEFRA, EPA, IPCC, Country, Custom, EmissionFactorHub) into
canonical factor and GWP sets. Malformed or missing source data resolves
to zeros, never to an exception.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional, Tuple

from emission_engine.api.calculations.config_lookup import coerce_number, to_number
from emission_engine.models.emission_data import EmissionFactorSource, ScopeConfiguration

logger = logging.getLogger(__name__)

GASES = ('CO2', 'CH4', 'N2O')


def normalize_unit(u: Optional[str]) -> str:
    if not u:
        return ''
    return str(u).strip().upper()


def _source_block(config: ScopeConfiguration, key: str) -> Mapping[str, Any]:
    block = (config.emission_factor_values or {}).get(key)
    return block if isinstance(block, Mapping) else {}


def _ghg_units(config: ScopeConfiguration, source: str) -> List[Mapping[str, Any]]:
    block_key = 'defra_data' if source == EmissionFactorSource.DEFRA.value else 'epa_data'
    units = _source_block(config, block_key).get('ghg_units') or []
    return [u for u in units if isinstance(u, Mapping)] if isinstance(units, list) else []


def _last_yearly_value(config: ScopeConfiguration) -> float:
    yearly = _source_block(config, 'country_data').get('yearly_values') or []
    if not isinstance(yearly, list) or not yearly or not isinstance(yearly[-1], Mapping):
        return 0.0
    return to_number(yearly[-1].get('value'))


def _hub_value(config: ScopeConfiguration) -> float:
    hub = (config.emission_factor_values or {}).get('emission_factor_hub_data')
    if isinstance(hub, Mapping):
        return to_number(hub.get('value'))
    if isinstance(hub, list) and hub and isinstance(hub[0], Mapping):
        return to_number(hub[0].get('value'))
    return 0.0


def resolve_emission_factors(config: ScopeConfiguration) -> Tuple[Dict[str, float], Dict[str, float]]:
    """
    Extract canonical emission factors and GWPs for a scope

    Args:
        config: Scope configuration carrying the source tag and its values

    Returns:
        (ef_values {CO2, CH4, N2O, CO2e}, gwp_values {CO2, CH4, N2O, refrigerant})
    """
    ef = {'CO2': 0.0, 'CH4': 0.0, 'N2O': 0.0, 'CO2e': 0.0}
    gwp = {'CO2': 0.0, 'CH4': 0.0, 'N2O': 0.0, 'refrigerant': 0.0}
    source = config.emission_factor

    if source in (EmissionFactorSource.DEFRA.value, EmissionFactorSource.EPA.value):
        for entry in _ghg_units(config, source):
            unit = normalize_unit(entry.get('unit'))
            for gas in GASES:
                if unit.endswith(gas):
                    ef[gas] = to_number(entry.get('ghg_conversion_factor'))
                    gwp_value = coerce_number(entry.get('gwp_value'))
                    if gwp_value is not None:
                        gwp[gas] = gwp_value

    elif source == EmissionFactorSource.IPCC.value:
        ef['CO2'] = to_number(_source_block(config, 'ipcc_data').get('value'))

    elif source == EmissionFactorSource.COUNTRY.value:
        ef['CO2'] = _last_yearly_value(config)

    elif source == EmissionFactorSource.CUSTOM.value:
        custom = _source_block(config, 'custom_emission_factor')
        for gas in GASES:
            ef[gas] = to_number(custom.get(gas))
            override = coerce_number(custom.get(f'{gas}_gwp'))
            if override is not None:
                gwp[gas] = override
        refrigerant = coerce_number(custom.get('gwp_refrigerant'))
        if refrigerant is not None:
            gwp['refrigerant'] = refrigerant

    elif source == EmissionFactorSource.EMISSION_FACTOR_HUB.value:
        ef['CO2e'] = _hub_value(config)

    else:
        logger.warning(f"Unknown emission factor source '{source}' on scope {config.scope_identifier}")

    return ef, gwp


def get_co2e_factor(config: ScopeConfiguration, source: Optional[str] = None) -> float:
    """
    Single blended CO2e factor used by Scope 3 categories

    Args:
        config: Scope configuration
        source: Source tag to read; defaults to the scope's own source

    Returns:
        Factor in CO2e per activity unit (0 when the source has no usable value)
    """
    source = source or config.emission_factor

    if source == EmissionFactorSource.CUSTOM.value:
        return to_number(_source_block(config, 'custom_emission_factor').get('CO2e'))
    if source == EmissionFactorSource.EMISSION_FACTOR_HUB.value:
        return _hub_value(config)
    if source == EmissionFactorSource.COUNTRY.value:
        return _last_yearly_value(config)
    if source in (EmissionFactorSource.DEFRA.value, EmissionFactorSource.EPA.value):
        units = _ghg_units(config, source)
        if not units:
            return 0.0
        chosen = next((u for u in units if 'CO2E' in normalize_unit(u.get('unit'))), units[0])
        return to_number(chosen.get('ghg_conversion_factor'))
    if source == EmissionFactorSource.IPCC.value:
        return to_number(_source_block(config, 'ipcc_data').get('value'))
    return 0.0


def get_grid_factor(config: ScopeConfiguration) -> float:
    """Grid electricity factor; always taken from the Country values"""
    return get_co2e_factor(config, EmissionFactorSource.COUNTRY.value)


def hub_factor_list(config: ScopeConfiguration) -> Optional[List[float]]:
    """Per-slot hub factors when the hub block is a list, else None"""
    hub = (config.emission_factor_values or {}).get('emission_factor_hub_data')
    if not isinstance(hub, list):
        return None
    return [coerce_number(h.get('value')) if isinstance(h, Mapping) else None for h in hub]


def has_emission_factor(config: ScopeConfiguration) -> bool:
    """Whether the scope carries any usable factor for its source"""
    ef, _ = resolve_emission_factors(config)
    return any(v for v in ef.values()) or get_co2e_factor(config) != 0 or bool(
        _source_block(config, 'custom_emission_factor')
    )
