"""
Configuration utilities for loading and managing config files.

This module provides centralized configuration loading with:
- YAML config file parsing
- Environment variable substitution (${VAR} syntax)
- Automatic .env file loading
- Pipeline defaults, so every component runs without a config file

Usage:
    from src.utils.config import load_config, get_credential, get_pipeline_config

    config = load_config()  # Loads config with env substitution
    api_keys = get_credential('YOUTUBE_API_KEYS')  # Get credential from .env
    pipeline = get_pipeline_config(config)  # Sections merged over defaults
"""
from pathlib import Path
import yaml
import os
import re
import copy
from typing import Dict, Optional, Any
import logging
from dotenv import load_dotenv

# Use standard logging to avoid circular import
logger = logging.getLogger(__name__)

# Track if .env has been loaded
_env_loaded = False


PIPELINE_DEFAULTS: Dict[str, Any] = {
    'ingestion': {
        'platforms': ['youtube', 'twitch'],
        'max_results': 50,
        'priority_tags': ['premium', 'recommended'],
        'search_orders': ['viewCount', 'relevance'],
        'search_terms': ['Atletico de Madrid'],
    },
    'quality': {
        'default_min_view_count': 1000,
        'min_view_counts': {},
        'exclusion_terms': [],
        'always_allow_channels': [],
        'disambiguation': [],
    },
    'enrichment': {
        'timeout_seconds': 8,
        'classification_providers': [],
        'summary_providers': [],
        'default_language': 'en',
        'fallback_summary_template': 'Contenido sobre Atlético de Madrid: {title}',
        'providers': {},
        'category_keywords': None,
        'languages': None,
    },
    'notifications': {
        'message_template': 'Nuevo video de {channel}: {title}',
        'notification_type': 'new_video',
        'from_email': 'Fanhub <notificaciones@fanhub.example>',
        'site_url': '',
        'dry_run': False,
        'timeout': 15,
    },
    'scheduled_tasks': {
        'enabled': True,
        'timezone': 'UTC',
        'defaults': [
            {'task_name': 'import_premium_videos', 'cron_expression': '0 0 0 * * *', 'enabled': True,
             'description': 'Daily full import', 'max_items_to_process': 100},
            {'task_name': 'update_videos', 'cron_expression': '0 0 12 * * *', 'enabled': True,
             'description': 'Midday update', 'max_items_to_process': 30},
            {'task_name': 'refresh_enrichment', 'cron_expression': '0 30 3 * * *', 'enabled': False,
             'description': 'Retry degraded summaries and classifications', 'max_items_to_process': 50},
        ],
    },
}


def _ensure_env_loaded():
    """Ensure .env file is loaded (once)."""
    global _env_loaded
    if not _env_loaded:
        from .paths import get_env_path
        env_path = get_env_path()
        if env_path.exists():
            load_dotenv(env_path, override=True)
            logger.debug(f"Loaded environment from {env_path}")
        _env_loaded = True


def _substitute_env_vars(value: Any) -> Any:
    """Recursively substitute ${VAR} patterns with environment variables."""
    if isinstance(value, str):
        # Match ${VAR} pattern
        pattern = r'\$\{([^}]+)\}'
        matches = re.findall(pattern, value)
        for var_name in matches:
            env_value = os.getenv(var_name, '')
            value = value.replace(f'${{{var_name}}}', env_value)
        return value
    elif isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_substitute_env_vars(item) for item in value]
    return value


def load_config(config_path: Optional[Path] = None, substitute_env: bool = True) -> Dict:
    """Load configuration from yaml file with optional env variable substitution.

    Args:
        config_path: Optional path to config file. If not provided, will look in default location.
        substitute_env: If True, substitute ${VAR} patterns with environment variables.

    Returns:
        Dict containing configuration settings with env vars substituted.
    """
    # Ensure .env is loaded before reading config
    _ensure_env_loaded()

    if config_path is None:
        from .paths import get_config_path
        config_path = get_config_path()

    with open(config_path) as f:
        config = yaml.safe_load(f) or {}

    if substitute_env:
        config = _substitute_env_vars(config)

    return config


def get_credential(name: str, default: Optional[str] = None) -> Optional[str]:
    """Get a credential from environment variables.

    This is the preferred way to access credentials. It ensures .env is loaded.

    Args:
        name: Environment variable name (e.g., 'YOUTUBE_API_KEYS', 'RESEND_API_KEY')
        default: Default value if not found

    Returns:
        Credential value or default
    """
    _ensure_env_loaded()
    return os.getenv(name, default)


def _deep_merge(default: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Deep merge two dictionaries."""
    result = default.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def get_pipeline_config(config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Get the pipeline sections of the config merged over built-in defaults.

    Args:
        config: Already-loaded config. Loaded from disk when omitted; a missing
            config file yields the defaults alone.
    """
    if config is None:
        try:
            config = load_config()
        except FileNotFoundError:
            logger.warning("Config file not found, using pipeline defaults")
            config = {}
    return _deep_merge(copy.deepcopy(PIPELINE_DEFAULTS), config or {})


def split_csv(value: Any) -> list:
    """Normalize a comma-separated string (or list) into a list of stripped, non-empty items."""
    if not value:
        return []
    if isinstance(value, str):
        value = value.split(',')
    return [str(v).strip() for v in value if str(v).strip()]
