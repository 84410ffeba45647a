"""
Data models for activity records, scope configuration and emission summaries
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field, field_validator


class ScopeType(str, Enum):
    """GHG Protocol emission scopes"""
    SCOPE_1 = "Scope 1"  # Direct emissions from owned/controlled sources
    SCOPE_2 = "Scope 2"  # Indirect emissions from purchased energy
    SCOPE_3 = "Scope 3"  # All other indirect emissions in value chain


class InputType(str, Enum):
    """How an activity record entered the system"""
    MANUAL = "manual"
    API = "API"
    IOT = "IOT"


class CalculationTier(str, Enum):
    """Calculation granularity configured on a scope"""
    TIER_1 = "tier 1"  # spend/count based
    TIER_2 = "tier 2"  # activity based
    TIER_3 = "tier 3"  # not supported yet


class EmissionFactorSource(str, Enum):
    """Where the emission factor values of a scope come from"""
    DEFRA = "DEFRA"
    EPA = "EPA"
    IPCC = "IPCC"
    COUNTRY = "Country"
    CUSTOM = "Custom"
    EMISSION_FACTOR_HUB = "EmissionFactorHub"


class ProcessingStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class CalculationStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PeriodType(str, Enum):
    """Summary period granularity"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    ALL_TIME = "all-time"


class CategoryKind(str, Enum):
    """Calculation branch a scope configuration resolves to"""
    # Scope 1
    COMBUSTION = "combustion"
    REFRIGERATION = "refrigeration"
    SF6 = "sf6"
    CH4_LEAKS = "ch4_leaks"
    PROCESS = "process"
    UNSUPPORTED_SCOPE1 = "unsupported_scope1"

    # Scope 2
    PURCHASED_ELECTRICITY = "purchased_electricity"
    PURCHASED_STEAM = "purchased_steam"
    PURCHASED_HEATING = "purchased_heating"
    PURCHASED_COOLING = "purchased_cooling"
    UNSUPPORTED_SCOPE2 = "unsupported_scope2"

    # Scope 3
    PURCHASED_GOODS = "purchased_goods"
    CAPITAL_GOODS = "capital_goods"
    FUEL_AND_ENERGY = "fuel_and_energy"
    UPSTREAM_TRANSPORT = "upstream_transport"
    WASTE = "waste"
    BUSINESS_TRAVEL = "business_travel"
    EMPLOYEE_COMMUTING = "employee_commuting"
    UPSTREAM_LEASED_ASSETS = "upstream_leased_assets"
    DOWNSTREAM_TRANSPORT = "downstream_transport"
    PROCESSING_OF_SOLD_PRODUCTS = "processing_of_sold_products"
    USE_OF_SOLD_PRODUCTS = "use_of_sold_products"
    END_OF_LIFE = "end_of_life"
    DOWNSTREAM_LEASED_ASSETS = "downstream_leased_assets"
    FRANCHISES = "franchises"
    INVESTMENTS = "investments"
    UNSUPPORTED_SCOPE3 = "unsupported_scope3"


class TargetType(str, Enum):
    NEAR_TERM = "near_term"
    NET_ZERO = "net_zero"


class TargetMethod(str, Enum):
    ABSOLUTE = "absolute"
    SDA = "sda"


class ScopeConfiguration(BaseModel):
    """
    Scope definition attached to a flowchart node.

    Read-only to the engine. Unknown top-level keys are kept so that
    tolerant parameter lookups can still find them.
    """

    scope_identifier: str
    scope_type: Optional[str] = None
    category_name: str = ""
    activity: str = ""
    calculation_model: CalculationTier = CalculationTier.TIER_1
    emission_factor: str = ""
    emission_factor_values: Dict[str, Any] = Field(default_factory=dict)

    # Uncertainty percentages
    uad: float = Field(0.0, description="Uncertainty of activity data (%)")
    uef: float = Field(0.0, description="Uncertainty of emission factor (%)")

    additional_info: Dict[str, Any] = Field(default_factory=dict)
    custom_value: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        use_enum_values = True
        validate_default = True
        extra = "allow"

    @field_validator("calculation_model", mode="before")
    @classmethod
    def _lower_tier(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator("uad", "uef", mode="before")
    @classmethod
    def _none_is_zero(cls, value):
        return 0.0 if value is None else value


class DataEntryCumulative(BaseModel):
    """Stream-level running totals stored on every activity record"""

    incoming_total_value: float = 0.0
    cumulative_total_value: float = 0.0
    entry_count: int = 0
    last_updated_at: Optional[datetime] = None


class ActivityRecord(BaseModel):
    """A single ingested row of activity data"""

    id: Optional[str] = None
    client_id: str
    node_id: str
    scope_identifier: str
    scope_type: Optional[str] = None
    input_type: InputType = InputType.MANUAL

    # Wall-clock date/time as entered plus the resolved instant (UTC)
    date: Optional[str] = None
    time: Optional[str] = None
    timestamp: datetime

    data_values: Dict[str, float] = Field(default_factory=dict)
    cumulative_values: Dict[str, float] = Field(default_factory=dict)
    high_data: Dict[str, float] = Field(default_factory=dict)
    low_data: Dict[str, float] = Field(default_factory=dict)
    last_entered_data: Dict[str, float] = Field(default_factory=dict)
    data_entry_cumulative: DataEntryCumulative = Field(default_factory=DataEntryCumulative)

    emission_factor: Optional[str] = None
    category_name: Optional[str] = None
    activity: Optional[str] = None
    source_details: Dict[str, Any] = Field(default_factory=dict)

    calculated_emissions: Optional[Dict[str, Any]] = None
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    emission_calculation_status: CalculationStatus = CalculationStatus.PENDING
    emission_calculated_at: Optional[datetime] = None
    emission_calculation_error: Optional[str] = None
    summary_update_status: Optional[str] = None

    validation_status: Optional[str] = None
    validation_errors: List[Dict[str, str]] = Field(default_factory=list)

    is_summary: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    class Config:
        use_enum_values = True
        validate_default = True


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------

class CalculateEmissionsRequest(BaseModel):
    client_id: str
    node_id: str
    scope_identifier: str
    record_id: str


class BatchRecalculationRequest(BaseModel):
    node_id: Optional[str] = None
    scope_identifier: Optional[str] = None
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    batch_size: Optional[int] = Field(None, gt=0)
    recalculate_summaries: bool = True


class ManualEntriesRequest(BaseModel):
    """Manual entry submission; each row may carry date/time and raw values"""

    entries: List[Dict[str, Any]] = Field(default_factory=list)


class EditEntryRequest(BaseModel):
    data_values: Optional[Dict[str, Any]] = None
    date: Optional[str] = None
    time: Optional[str] = None


class CoverageInput(BaseModel):
    scope12_coverage_percent: float = 0.0
    scope3_share_of_total_percent: float = 0.0
    scope3_coverage_percent: float = 0.0


class FlagInput(BaseModel):
    flag_share_percent: float = 0.0
    scope1_coverage_percent: float = 0.0
    scope3_coverage_percent: float = 0.0


class SbtiTargetRequest(BaseModel):
    """Definition of an SBTi near-term or net-zero target"""

    alignment: str = "SBTi"
    target_type: TargetType
    method: TargetMethod
    base_year: int
    target_year: int

    scope_set: str = "S1S2"  # 'S1S2' or 'S3'
    base_scope1_tco2e: float = 0.0
    base_scope2_tco2e: float = 0.0
    base_scope3_tco2e: float = 0.0

    # absolute
    minimum_reduction_percent: Optional[float] = None
    annual_rate_hint_percent: Optional[float] = None

    # sda
    base_activity: Optional[float] = None
    target_intensity: Optional[float] = None
    activity_target: Optional[float] = None
    intensity_unit: Optional[str] = None

    coverage: Optional[CoverageInput] = None
    flag: Optional[FlagInput] = None

    tool_version: Optional[str] = None

    class Config:
        use_enum_values = True
        validate_default = True


class TrajectoryPreviewRequest(BaseModel):
    alignment: str = "SBTi"
    target_type: TargetType = TargetType.NEAR_TERM
    method: TargetMethod = TargetMethod.ABSOLUTE
    base_year: int
    target_year: int
    base_emission: float
    minimum_reduction_percent: Optional[float] = None
    base_activity: Optional[float] = None
    target_intensity: Optional[float] = None
    activity_target: Optional[float] = None

    class Config:
        use_enum_values = True
        validate_default = True
