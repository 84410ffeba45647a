"""
Engine settings: in-code defaults merged with an optional YAML file and environment
"""

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS: Dict[str, Any] = {
    'batch': {
        'size': 50,
    },
    'summary': {
        'stale_after_seconds': 3600,
        'prefer_latest': True,
        'refresh_periods': ['daily', 'monthly', 'yearly', 'all-time'],
        'all_time_start': '2000-01-01',
        'phase2_delay_seconds': 2,
    },
    'scheduler': {
        'enabled': True,
        'nightly_recalculation': {'hour': 1, 'minute': 30},
    },
    'timestamps': {
        # wall-clock entries are IST
        'utc_offset_minutes': 330,
    },
    'notifications': {
        'webhook_url': None,
        'timeout_seconds': 10,
    },
    'store': {
        'backend': 'supabase',
    },
}


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


def load_settings(config_path: Optional[str] = None) -> Dict[str, Any]:
    """
    Load engine settings

    Args:
        config_path: YAML file to merge over the defaults; falls back to
            the EMISSION_ENGINE_CONFIG environment variable

    Returns:
        Settings dictionary with every default key present
    """
    load_dotenv()
    settings = copy.deepcopy(DEFAULT_SETTINGS)

    config_path = config_path or os.getenv('EMISSION_ENGINE_CONFIG')
    if config_path:
        if Path(config_path).exists():
            try:
                with open(config_path, 'r') as f:
                    config = yaml.safe_load(f) or {}
                if isinstance(config, dict):
                    _merge(settings, config)
                    logger.info(f"Loaded engine settings from {config_path}")
                else:
                    logger.warning(f"Ignoring engine settings in {config_path}: top level is not a mapping")
            except (OSError, yaml.YAMLError) as e:
                logger.warning(f"Failed to load engine settings: {e}")
        else:
            logger.warning(f"Engine settings file {config_path} not found, using defaults")

    # environment wins over the file
    if os.getenv('EMISSION_ENGINE_STORE'):
        settings['store']['backend'] = os.getenv('EMISSION_ENGINE_STORE')
    if os.getenv('NOTIFICATION_WEBHOOK_URL'):
        settings['notifications']['webhook_url'] = os.getenv('NOTIFICATION_WEBHOOK_URL')
    if os.getenv('ENABLE_SCHEDULER'):
        settings['scheduler']['enabled'] = _env_flag(os.getenv('ENABLE_SCHEDULER'))

    return settings
