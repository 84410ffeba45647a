"""
Per-entry calculation context shared by the scope calculators
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional

from emission_engine.api.calculations.config_lookup import coerce_number, to_number
from emission_engine.api.calculations.uncertainty import gas_record
from emission_engine.models.emission_data import ScopeConfiguration


@dataclass
class CalculationContext:
    """Incoming values, running cumulative values and resolved factors of one entry"""

    config: ScopeConfiguration
    data_values: Mapping[str, Any]
    cumulative_values: Mapping[str, Any]
    ef: Dict[str, float] = field(default_factory=dict)
    gwp: Dict[str, float] = field(default_factory=dict)

    @property
    def tier(self) -> str:
        return self.config.calculation_model

    @property
    def uad(self) -> float:
        return self.config.uad or 0.0

    @property
    def uef(self) -> float:
        return self.config.uef or 0.0

    @property
    def custom(self) -> Mapping[str, Any]:
        block = (self.config.emission_factor_values or {}).get('custom_emission_factor')
        return block if isinstance(block, Mapping) else {}

    def value(self, key: str, default: float = 0.0) -> float:
        return to_number(self.data_values.get(key), default)

    def cumulative(self, key: str, default: float = 0.0) -> float:
        return to_number(self.cumulative_values.get(key), default)

    def optional(self, key: str) -> Optional[float]:
        """Incoming value or None when absent/non-numeric"""
        return coerce_number(self.data_values.get(key))

    def record(self, co2e: float, **gases) -> Dict[str, float]:
        return gas_record(co2e, self.uad, self.uef, **gases)
