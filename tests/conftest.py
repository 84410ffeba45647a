import copy
from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from emission_engine.api.settings import DEFAULT_SETTINGS
from emission_engine.api.store import InMemoryDocumentStore
from emission_engine.main import app, build_services
from emission_engine.models.emission_data import ActivityRecord

COMBUSTION_SCOPE = {
    'scope_identifier': 'S1-diesel',
    'scope_type': 'Scope 1',
    'category_name': 'Stationary Combustion',
    'activity': 'Diesel',
    'calculation_model': 'tier 1',
    'emission_factor': 'Custom',
    'emission_factor_values': {
        'custom_emission_factor': {'CO2': 2, 'CH4': 0.01, 'N2O': 0.001, 'CH4_gwp': 28, 'N2O_gwp': 265},
    },
}

ELECTRICITY_SCOPE = {
    'scope_identifier': 'S2-grid',
    'scope_type': 'Scope 2',
    'category_name': 'Purchased Electricity',
    'activity': 'Grid',
    'calculation_model': 'tier 1',
    'emission_factor': 'Country',
    'emission_factor_values': {'country_data': {'yearly_values': [{'value': 0.4}, {'value': 0.5}]}},
}

WATER_SCOPE = {
    'scope_identifier': 'S2-water',
    'scope_type': 'Scope 2',
    'category_name': 'Purchased Water',
    'activity': 'Municipal',
    'calculation_model': 'tier 1',
    'emission_factor': 'Country',
    'emission_factor_values': {'country_data': {'yearly_values': [{'value': 0.3}]}},
}

WASTE_SCOPE = {
    'scope_identifier': 'S3-waste',
    'scope_type': 'Scope 3',
    'category_name': 'Waste Generated in Operation',
    'activity': 'Landfill',
    'calculation_model': 'tier 2',
    'emission_factor': 'Custom',
    'emission_factor_values': {'custom_emission_factor': {'CO2e': 0.01}},
}


def make_flowchart(client_id='c1'):
    return {
        'client_id': client_id,
        'is_active': True,
        'nodes': [
            {
                'id': 'n1',
                'label': 'Plant A',
                'details': {
                    'department': 'Operations',
                    'location': 'Pune',
                    'scope_details': copy.deepcopy([COMBUSTION_SCOPE, ELECTRICITY_SCOPE, WATER_SCOPE, WASTE_SCOPE]),
                },
            },
            {
                'id': 'n2',
                'label': 'Warehouse',
                'details': {
                    'department': 'Logistics',
                    'location': 'Mumbai',
                    'scope_details': copy.deepcopy([ELECTRICITY_SCOPE]),
                },
            },
        ],
    }


@pytest.fixture
def settings():
    settings = copy.deepcopy(DEFAULT_SETTINGS)
    settings['store']['backend'] = 'memory'
    settings['scheduler']['enabled'] = False
    return settings


@pytest.fixture
def store():
    store = InMemoryDocumentStore()
    store.save_flowchart(make_flowchart())
    return store


@pytest.fixture
def sink():
    return MagicMock()


@pytest.fixture
def services(settings, store, sink):
    return build_services(settings, store, sink)


@pytest.fixture
def make_record():
    """Factory for processed activity records with a stored emission result (kg)"""

    def factory(co2e_kg=1000.0, timestamp=None, **overrides):
        fields = {
            'client_id': 'c1',
            'node_id': 'n1',
            'scope_identifier': 'S1-diesel',
            'scope_type': 'Scope 1',
            'input_type': 'manual',
            'timestamp': timestamp or datetime(2024, 2, 10, 6, 0, tzinfo=timezone.utc),
            'data_values': {'fuel_consumption': 1.0},
            'emission_factor': 'Custom',
            'processing_status': 'processed',
            'calculated_emissions': {
                'incoming': {'fuel_consumption': {'CO2e': co2e_kg / 2}},
                'cumulative': {'fuel_consumption': {'CO2e': co2e_kg, 'CO2': co2e_kg}},
            },
        }
        fields.update(overrides)
        return ActivityRecord(**fields)

    return factory


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setenv('EMISSION_ENGINE_STORE', 'memory')
    monkeypatch.setenv('ENABLE_SCHEDULER', 'false')
    monkeypatch.delenv('EMISSION_ENGINE_CONFIG', raising=False)
    monkeypatch.delenv('NOTIFICATION_WEBHOOK_URL', raising=False)
    with TestClient(app) as test_client:
        test_client.app.state.store.save_flowchart(make_flowchart())
        yield test_client
