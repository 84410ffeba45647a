"""
Combined uncertainty and gas value records
"""

import math
from typing import Dict, Optional


def calculate_uncertainty(base_value: float, uad: float, uef: float) -> float:
    """
    Root-sum-square uncertainty of an emission value

    Args:
        base_value: Emission value the uncertainty applies to
        uad: Uncertainty of activity data in percent
        uef: Uncertainty of emission factor in percent

    Returns:
        Absolute uncertainty in the unit of base_value
    """
    return base_value * math.sqrt((uad or 0) ** 2 + (uef or 0) ** 2) / 100


def gas_record(
    co2e: float,
    uad: float,
    uef: float,
    co2: float = 0.0,
    ch4: float = 0.0,
    n2o: float = 0.0,
    emission: Optional[float] = None,
) -> Dict[str, float]:
    """Build a {CO2, CH4, N2O, CO2e, uncertainty} record for one result key"""
    uncertainty = calculate_uncertainty(co2e, uad, uef)
    record = {
        'CO2': co2,
        'CH4': ch4,
        'N2O': n2o,
        'CO2e': co2e,
        'combined_uncertainty': uncertainty,
        'CO2e_with_uncertainty': co2e + uncertainty,
    }
    if emission is not None:
        record['emission'] = emission
    return record


def empty_emissions() -> Dict[str, Dict]:
    return {'incoming': {}, 'cumulative': {}}
