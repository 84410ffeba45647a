"""
Change notification sinks
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import requests

from emission_engine.api.store import to_jsonable

logger = logging.getLogger(__name__)

SUMMARY_CREATED = 'summary-created'
SUMMARY_UPDATED = 'summary-updated'
DATA_ENTRY_SAVED = 'data-entry-saved'
DATA_ENTRY_EDITED = 'data-entry-edited'
DATA_ENTRY_DELETED = 'data-entry-deleted'
SBTI_UPSERT = 'sbti-upsert'


def build_event(event_type: str, client_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'type': event_type,
        'client_id': client_id,
        'timestamp': datetime.now(timezone.utc).isoformat(),
        'data': to_jsonable(data),
    }


class NotificationSink(ABC):
    """
    Fire-and-forget event publisher

    ``publish`` never raises; delivery problems are logged.
    """

    def publish(self, event_type: str, client_id: str, data: Optional[Dict[str, Any]] = None) -> None:
        try:
            self.deliver(build_event(event_type, client_id, data or {}))
        except Exception as e:
            logger.warning(f"Failed to publish {event_type} for client {client_id}: {e}")

    @abstractmethod
    def deliver(self, event: Dict[str, Any]) -> None:
        ...


class LoggingNotificationSink(NotificationSink):
    def deliver(self, event: Dict[str, Any]) -> None:
        logger.info(f"Event {event['type']} for client {event['client_id']}: {json.dumps(event['data'])[:500]}")


class WebhookNotificationSink(NotificationSink):
    """Posts each event as JSON to a webhook URL"""

    def __init__(self, url: str, timeout: float = 10):
        self.url = url
        self.timeout = timeout

    def deliver(self, event: Dict[str, Any]) -> None:
        res = requests.post(self.url, json=event, timeout=self.timeout)
        if res.status_code >= 300:
            logger.warning(f"Webhook returned {res.status_code} for {event['type']}: {res.text[:200]}")


def create_sink(settings: Dict[str, Any]) -> NotificationSink:
    notifications = settings.get('notifications') or {}
    url = notifications.get('webhook_url')
    if url:
        return WebhookNotificationSink(url, timeout=notifications.get('timeout_seconds', 10))
    return LoggingNotificationSink()
