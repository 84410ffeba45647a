"""
Tolerant lookups for optional numeric parameters.

Scope configurations and payloads spell the same parameter many ways
(``assetLifetime``, ``asset_lifetime``, ``assetLife`` ...) and mix percent
and fraction conventions. Everything here resolves a value from an ordered
list of ``(mapping, key)`` candidates and never raises on bad data.
"""

import math
from typing import Any, Callable, Iterable, List, Mapping, Optional, Tuple

from emission_engine.models.emission_data import ScopeConfiguration

Candidate = Tuple[Optional[Mapping[str, Any]], str]


def coerce_number(value: Any) -> Optional[float]:
    """Return ``value`` as a finite float, or None when it is not numeric"""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            number = float(text)
        except ValueError:
            return None
        return number if math.isfinite(number) else None
    return None


def to_number(value: Any, default: float = 0.0) -> float:
    number = coerce_number(value)
    return default if number is None else number


def normalize_fraction(value: float) -> float:
    """Percent (>1) becomes a fraction; result clamped to [0, 1]"""
    if value > 1:
        value = value / 100
    return min(1.0, max(0.0, value))


def as_fraction(value: Any) -> Optional[float]:
    number = coerce_number(value)
    if number is None:
        return None
    return normalize_fraction(number)


def first_present(
    candidates: Iterable[Candidate],
    accept: Optional[Callable[[float], bool]] = None,
    transform: Optional[Callable[[float], float]] = None,
) -> Optional[float]:
    """
    Resolve the first usable numeric value from ordered candidates

    Args:
        candidates: (mapping, key) pairs, checked in order; None mappings are skipped
        accept: optional predicate a numeric value must satisfy to be used
        transform: optional normalization applied to the accepted value

    Returns:
        The resolved number or None when no candidate qualifies
    """
    for mapping, key in candidates:
        if not mapping:
            continue
        number = coerce_number(mapping.get(key))
        if number is None:
            continue
        if accept is not None and not accept(number):
            continue
        return transform(number) if transform else number
    return None


def scope_bags(config: ScopeConfiguration) -> List[Mapping[str, Any]]:
    """Parameter bags of a scope in lookup order: scope, additional info, custom values"""
    extra = dict(config.model_extra or {})
    additional = config.additional_info or {}
    custom = (
        config.custom_value
        or additional.get("custom_value")
        or additional.get("customValue")
        or {}
    )
    return [extra, additional, custom]


def bag_candidates(config: ScopeConfiguration, keys: Iterable[str]) -> List[Candidate]:
    keys = list(keys)
    return [(bag, key) for bag in scope_bags(config) for key in keys]


def key_candidates(config: ScopeConfiguration, keys: Iterable[str]) -> List[Candidate]:
    bags = scope_bags(config)
    return [(bag, key) for key in keys for bag in bags]


def payload_candidates(values: Optional[Mapping[str, Any]], keys: Iterable[str]) -> List[Candidate]:
    return [(values, key) for key in keys]


# ---------------------------------------------------------------------------
# Named scope parameters
# ---------------------------------------------------------------------------

ASSET_LIFETIME_KEYS = ("asset_lifetime", "assetLifetime", "assetLife", "lifetime")
TD_LOSS_KEYS = ("td_loss_factor", "TDLossFactor", "tdLossFactor", "tdloss")
RECYCLING_RATE_KEYS = (
    "default_recycling_rate", "defaultRecyclingRate", "recyclingRateDefault",
    "recycling_rate", "recyclingRate", "defaultRecycleRate",
)
EQUITY_SHARE_KEYS = (
    "equity_share_percentage", "equitySharePercentage", "equity_share",
    "equityShare", "equity", "sharePercentage",
)
AVG_LIFETIME_ENERGY_KEYS = (
    "average_lifetime_energy_consumption", "averageLifetimeEnergyConsumption",
    "avgLifetimeEnergyConsumption", "averageLifetimeConsumption", "avgLifetimeConsumption",
)
USE_PATTERN_KEYS = ("use_pattern", "usePattern", "usagePattern", "pattern")
ENERGY_EFFICIENCY_KEYS = ("energy_efficiency", "energyEfficiency", "efficiency", "deviceEfficiency")
EOL_DISPOSAL_KEYS = ("to_disposal", "toDisposal", "disposalShare", "disposalFraction")
EOL_LANDFILL_KEYS = ("to_landfill", "toLandfill", "landfillShare", "landfillFraction")
EOL_INCINERATION_KEYS = ("to_incineration", "toIncineration", "incinerationShare", "incinerationFraction")
OCCUPANCY_ENTRY_KEYS = ("occupancy_factor", "occupancEF", "occupancyEF", "occupancyFactor", "occupancy")
OCCUPANCY_CONFIG_KEYS = ("occupancy_factor", "occupancyFactor")


def _positive(value: float) -> bool:
    return value > 0


def _non_negative(value: float) -> bool:
    return value >= 0


def asset_lifetime(config: ScopeConfiguration) -> float:
    """Service life used to spread capital goods emissions; defaults to 1"""
    lifetime = first_present(bag_candidates(config, ASSET_LIFETIME_KEYS), accept=_positive)
    return lifetime if lifetime is not None else 1.0


def td_loss_factor(config: ScopeConfiguration) -> Optional[float]:
    return first_present(bag_candidates(config, TD_LOSS_KEYS))


def default_recycling_rate(config: ScopeConfiguration) -> float:
    rate = first_present(bag_candidates(config, RECYCLING_RATE_KEYS), transform=normalize_fraction)
    return rate if rate is not None else 0.0


def equity_share(config: ScopeConfiguration) -> Optional[float]:
    return first_present(bag_candidates(config, EQUITY_SHARE_KEYS), transform=normalize_fraction)


def average_lifetime_energy_consumption(config: ScopeConfiguration) -> Optional[float]:
    return first_present(bag_candidates(config, AVG_LIFETIME_ENERGY_KEYS), accept=_non_negative)


def use_pattern(config: ScopeConfiguration) -> Optional[float]:
    return first_present(key_candidates(config, USE_PATTERN_KEYS), transform=normalize_fraction)


def energy_efficiency(config: ScopeConfiguration) -> Optional[float]:
    return first_present(key_candidates(config, ENERGY_EFFICIENCY_KEYS), accept=_non_negative)


def eol_fraction(config: ScopeConfiguration, keys: Tuple[str, ...]) -> Optional[float]:
    return first_present(key_candidates(config, keys), transform=normalize_fraction)


def occupancy_factor(data_values: Mapping[str, Any], config: ScopeConfiguration) -> float:
    """
    Occupancy of a leased building as a fraction in [0, 1]

    The entry value wins over the scope configuration; 85 and 0.85 mean the same.
    Falls back to 1 so the area ratio denominator stays valid.
    """
    occupancy = first_present(payload_candidates(data_values, OCCUPANCY_ENTRY_KEYS), transform=normalize_fraction)
    if occupancy is not None:
        return occupancy

    configured = first_present(
        [(scope_bags(config)[2], key) for key in OCCUPANCY_CONFIG_KEYS],
        transform=normalize_fraction,
    )
    return configured if configured is not None else 1.0
