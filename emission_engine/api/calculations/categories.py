"""
Category resolution for scope configurations
"""

import re
from typing import Dict, Optional

from emission_engine.models.emission_data import (
    CategoryKind,
    EmissionFactorSource,
    ScopeConfiguration,
    ScopeType,
)

REFRIGERATION_PATTERN = re.compile(r'ref.*?geration', re.IGNORECASE)
SF6_PATTERN = re.compile(r'SF6', re.IGNORECASE)
CH4_LEAKS_PATTERN = re.compile(r'CH4[_\s-]?Leaks?', re.IGNORECASE)

SCOPE2_CATEGORIES: Dict[str, CategoryKind] = {
    'Purchased Electricity': CategoryKind.PURCHASED_ELECTRICITY,
    'Purchased Steam': CategoryKind.PURCHASED_STEAM,
    'Purchased Heating': CategoryKind.PURCHASED_HEATING,
    'Purchased Cooling': CategoryKind.PURCHASED_COOLING,
}

SCOPE3_CATEGORIES: Dict[str, CategoryKind] = {
    'Purchased Goods and Services': CategoryKind.PURCHASED_GOODS,
    'Capital Goods': CategoryKind.CAPITAL_GOODS,
    'Fuel and energy': CategoryKind.FUEL_AND_ENERGY,
    'Fuel and Energy Related Activities': CategoryKind.FUEL_AND_ENERGY,
    'Upstream Transport and Distribution': CategoryKind.UPSTREAM_TRANSPORT,
    'Waste Generated in Operation': CategoryKind.WASTE,
    'Business Travel': CategoryKind.BUSINESS_TRAVEL,
    'Employee Commuting': CategoryKind.EMPLOYEE_COMMUTING,
    'Upstream Leased Assets': CategoryKind.UPSTREAM_LEASED_ASSETS,
    'Downstream Transport and Distribution': CategoryKind.DOWNSTREAM_TRANSPORT,
    'Processing of Sold Products': CategoryKind.PROCESSING_OF_SOLD_PRODUCTS,
    'Use of Sold Products': CategoryKind.USE_OF_SOLD_PRODUCTS,
    'End-of-Life Treatment of Sold Products': CategoryKind.END_OF_LIFE,
    'Downstream Leased Assets': CategoryKind.DOWNSTREAM_LEASED_ASSETS,
    'Franchises': CategoryKind.FRANCHISES,
    'Investments': CategoryKind.INVESTMENTS,
}

# Canonical data field per Scope 2 category
SCOPE2_FIELDS: Dict[CategoryKind, str] = {
    CategoryKind.PURCHASED_ELECTRICITY: 'consumed_electricity',
    CategoryKind.PURCHASED_STEAM: 'consumed_steam',
    CategoryKind.PURCHASED_HEATING: 'consumed_heating',
    CategoryKind.PURCHASED_COOLING: 'consumed_cooling',
}


def lookup_category(table: Dict[str, CategoryKind], category: str) -> Optional[CategoryKind]:
    category = (category or '').strip()
    if category in table:
        return table[category]
    lowered = category.lower()
    for name, kind in table.items():
        if name.lower() == lowered:
            return kind
    return None


def resolve_scope1_kind(category: str, activity: str, source: str) -> CategoryKind:
    category = category or ''
    activity = activity or ''
    if 'Combustion' in category:
        return CategoryKind.COMBUSTION
    if REFRIGERATION_PATTERN.search(activity):
        return CategoryKind.REFRIGERATION
    if 'Fugitive' in category and SF6_PATTERN.search(activity):
        return CategoryKind.SF6
    if 'Fugitive' in category and CH4_LEAKS_PATTERN.search(activity):
        return CategoryKind.CH4_LEAKS
    if 'process emission' in category.lower() and source == EmissionFactorSource.CUSTOM.value:
        return CategoryKind.PROCESS
    return CategoryKind.UNSUPPORTED_SCOPE1


def resolve_category_kind(config: ScopeConfiguration, scope_type: Optional[str] = None) -> CategoryKind:
    """
    Resolve the calculation branch for a scope configuration

    Args:
        config: Scope configuration
        scope_type: Overrides ``config.scope_type`` (records carry their own)

    Returns:
        The CategoryKind; unknown categories map to the scope's UNSUPPORTED kind
    """
    scope_type = scope_type or config.scope_type

    if scope_type == ScopeType.SCOPE_1.value:
        return resolve_scope1_kind(config.category_name, config.activity, config.emission_factor)
    if scope_type == ScopeType.SCOPE_2.value:
        return lookup_category(SCOPE2_CATEGORIES, config.category_name) or CategoryKind.UNSUPPORTED_SCOPE2
    if scope_type == ScopeType.SCOPE_3.value:
        return lookup_category(SCOPE3_CATEGORIES, config.category_name) or CategoryKind.UNSUPPORTED_SCOPE3
    raise ValueError(f"Unknown scope type: {scope_type}")


def normalize_activity(activity: Optional[str]) -> str:
    """'Travel Based' / 'travel_based' -> 'travelbased'"""
    return re.sub(r'[\s_]+', '', (activity or '').lower())
