from unittest.mock import MagicMock, patch

import pytest

from emission_engine.api.notifications import (
    LoggingNotificationSink,
    NotificationSink,
    WebhookNotificationSink,
    create_sink,
)
from emission_engine.api.settings import DEFAULT_SETTINGS, load_settings
from emission_engine.api.store import InMemoryDocumentStore
from emission_engine.api.supabase_store import SupabaseDocumentStore, _summary_from_row
from emission_engine.main import create_store


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ('EMISSION_ENGINE_CONFIG', 'EMISSION_ENGINE_STORE', 'NOTIFICATION_WEBHOOK_URL', 'ENABLE_SCHEDULER'):
        monkeypatch.delenv(name, raising=False)


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings()

        assert settings == DEFAULT_SETTINGS
        assert settings is not DEFAULT_SETTINGS

    def test_yaml_file_is_merged(self, tmp_path):
        config = tmp_path / 'engine.yaml'
        config.write_text('batch:\n  size: 10\nsummary:\n  stale_after_seconds: 60\n')

        settings = load_settings(str(config))

        assert settings['batch']['size'] == 10
        assert settings['summary']['stale_after_seconds'] == 60
        assert settings['summary']['prefer_latest'] is True

    def test_config_path_from_environment(self, tmp_path, monkeypatch):
        config = tmp_path / 'engine.yaml'
        config.write_text('store:\n  backend: memory\n')
        monkeypatch.setenv('EMISSION_ENGINE_CONFIG', str(config))

        assert load_settings()['store']['backend'] == 'memory'

    def test_environment_wins(self, tmp_path, monkeypatch):
        config = tmp_path / 'engine.yaml'
        config.write_text('store:\n  backend: supabase\n')
        monkeypatch.setenv('EMISSION_ENGINE_STORE', 'memory')
        monkeypatch.setenv('ENABLE_SCHEDULER', 'no')
        monkeypatch.setenv('NOTIFICATION_WEBHOOK_URL', 'https://hooks.example.com/carbon')

        settings = load_settings(str(config))

        assert settings['store']['backend'] == 'memory'
        assert settings['scheduler']['enabled'] is False
        assert settings['notifications']['webhook_url'] == 'https://hooks.example.com/carbon'

    def test_missing_file_uses_defaults(self, tmp_path):
        assert load_settings(str(tmp_path / 'absent.yaml')) == DEFAULT_SETTINGS

    def test_non_mapping_file_is_ignored(self, tmp_path):
        config = tmp_path / 'engine.yaml'
        config.write_text('- just\n- a list\n')

        assert load_settings(str(config)) == DEFAULT_SETTINGS


class TestCreateStore:
    def test_memory_backend(self):
        assert isinstance(create_store({'store': {'backend': 'memory'}}), InMemoryDocumentStore)

    def test_unknown_backend(self):
        with pytest.raises(RuntimeError, match='Unknown store backend'):
            create_store({'store': {'backend': 'mongo'}})


class TestNotifications:
    def test_logging_sink_by_default(self):
        assert isinstance(create_sink(DEFAULT_SETTINGS), LoggingNotificationSink)

    def test_webhook_sink(self):
        sink = create_sink({'notifications': {'webhook_url': 'https://hooks.example.com', 'timeout_seconds': 3}})

        assert isinstance(sink, WebhookNotificationSink)
        assert sink.timeout == 3

    @patch('emission_engine.api.notifications.requests.post')
    def test_webhook_posts_event(self, mock_post):
        mock_post.return_value = MagicMock(status_code=200)

        WebhookNotificationSink('https://hooks.example.com').publish('summary-created', 'c1', {'total': 1.5})

        args, kwargs = mock_post.call_args
        assert args == ('https://hooks.example.com',)
        assert kwargs['json']['type'] == 'summary-created'
        assert kwargs['json']['client_id'] == 'c1'
        assert kwargs['json']['data'] == {'total': 1.5}

    @patch('emission_engine.api.notifications.requests.post')
    def test_publish_never_raises(self, mock_post):
        mock_post.side_effect = ConnectionError('unreachable')

        WebhookNotificationSink('https://hooks.example.com').publish('summary-created', 'c1')

        mock_post.assert_called_once()

    def test_sink_requires_delivery(self):
        with pytest.raises(TypeError):
            NotificationSink()


class TestSupabaseStore:
    def test_summary_row_datetimes_are_parsed(self):
        summary = _summary_from_row({
            'id': 7,
            'document': {
                'client_id': 'c1',
                'period': {'type': 'monthly', 'from': '2024-02-01T00:00:00+00:00', 'to': '2024-03-01T00:00:00+00:00'},
                'metadata': {'last_calculated': '2024-03-01T01:30:00+00:00'},
            },
        })

        assert summary['id'] == 7
        assert summary['period']['from'].month == 2
        assert summary['metadata']['last_calculated'].hour == 1

    def test_missing_target(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[])

        assert SupabaseDocumentStore(client).get_target('c1', 'near_term') is None
        client.table.assert_called_with('sbti_targets')

    def test_client_ids_are_unique(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value
        query.execute.return_value = MagicMock(data=[{'client_id': 'b'}, {'client_id': 'a'}, {'client_id': 'b'}])

        assert SupabaseDocumentStore(client).list_client_ids() == ['a', 'b']

    def test_records_are_ordered_like_the_memory_store(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.eq.return_value
        by_created = query.order.return_value.order.return_value
        by_created.order.return_value.execute.return_value = MagicMock(data=[])

        assert SupabaseDocumentStore(client).find_records('c1') == []
        query.order.assert_called_once_with('timestamp')
        query.order.return_value.order.assert_called_once_with('created_at')
        by_created.order.assert_called_once_with('id')
