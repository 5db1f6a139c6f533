# Copyright (c) 2025 adcl.io
# All Rights Reserved.
#
# This software is proprietary and confidential. Unauthorized copying,
# distribution, or use of this software is strictly prohibited.

"""
Package catalog configuration - single source of truth.
YAML is king. Env vars only for host-specific overrides.

- ALL configuration in plain text (YAML)
- NO hidden state - everything inspectable via `cat`, `grep`
"""

import logging
import os
import yaml
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from package_catalog.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "PACKAGE_CATALOG_CONFIG"
DEFAULT_CONFIG_PATH = "package-catalog.yaml"

# One day, matching the refresh interval hosts expect by default
DEFAULT_MAX_AGE_SECONDS = 60 * 60 * 24


# =============================================================================
# CONFIGURATION DATACLASS
# =============================================================================

@dataclass(frozen=True)
class Config:
    """
    Immutable package catalog configuration.
    All values from YAML. No hidden state.
    """

    # -- Paths --
    root_path: str = "packages"

    # -- Application --
    app_version: str = "0.0.0"
    locale: str = ""

    # -- Catalogs --
    max_age_seconds: int = DEFAULT_MAX_AGE_SECONDS

    # -- Installs --
    max_concurrent_installs: int = 1

    # -- HTTP --
    http_timeout: float = 30.0
    user_agent: str = "package-catalog/1.0"

    # -- Logging --
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def root(self) -> Path:
        return Path(self.root_path).expanduser()


# =============================================================================
# LOADER
# =============================================================================

def load_config(path: str = DEFAULT_CONFIG_PATH) -> Config:
    """
    Load configuration from YAML.
    Returns defaults if file doesn't exist.

    Raises:
        ConfigurationError: If the file exists but is not valid YAML
    """
    if not Path(path).exists():
        logger.info(f"Config not found at {path}, using defaults")
        y = {}
    else:
        try:
            with open(path) as f:
                y = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML: {e}", config_file=str(path))

        if not isinstance(y, dict):
            raise ConfigurationError("Top-level YAML value must be a mapping", config_file=str(path))

    # Helper to safely navigate nested dicts
    def get(d: dict, *keys, default=None):
        for k in keys:
            if not isinstance(d, dict):
                return default
            d = d.get(k, {})
        return d if d != {} else default

    defaults = Config()
    try:
        return Config(
            root_path=str(get(y, "root", "path") or defaults.root_path),
            app_version=str(get(y, "app", "version") or defaults.app_version),
            locale=os.getenv("LOCALE", get(y, "app", "locale") or defaults.locale),
            max_age_seconds=int(get(y, "catalogs", "max_age_seconds") or defaults.max_age_seconds),
            max_concurrent_installs=int(get(y, "installs", "max_concurrent") or defaults.max_concurrent_installs),
            http_timeout=float(get(y, "http", "timeout") or defaults.http_timeout),
            user_agent=str(get(y, "http", "user_agent") or defaults.user_agent),
            log_level=os.getenv("LOG_LEVEL", get(y, "logging", "level") or defaults.log_level),
            log_format=get(y, "logging", "format") or defaults.log_format,
        )
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}", config_file=str(path))


# =============================================================================
# GLOBAL INSTANCE
# =============================================================================

_config: Optional[Config] = None


def get_config() -> Config:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = load_config(os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH))
    return _config


def reload_config() -> Config:
    """Force reload configuration."""
    global _config
    _config = None
    return get_config()
