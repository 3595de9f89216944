"""
Configuration loader — reads config.yml into ``CtlConfig`` and
resolves which profile directory to operate on.

Resolution order for each setting:

    CLI option  >  BENDCTL_* env var  >  config file  >  built-in default
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

import yaml

from bendctl.core.errors import ConfigError
from bendctl.core.models.config import CtlConfig
from bendctl.core.models.profile import Profile

logger = logging.getLogger(__name__)

CONFIG_FILE = "config.yml"
DEFAULT_PROFILE = "default"
DEFAULT_HOME = Path("~/.bendctl")


def resolve_home(home: Path | str | None = None) -> Path:
    """Directory holding every profile (``$BENDCTL_HOME`` or ``~/.bendctl``)."""
    if home is None:
        home = os.environ.get("BENDCTL_HOME") or DEFAULT_HOME
    return Path(home).expanduser().resolve()


def find_config_file(home: Path | None = None) -> Path | None:
    """Locate the config file.

    ``$BENDCTL_CONFIG`` wins; otherwise ``<home>/config.yml`` is used
    if it exists.

    Returns:
        Path to the config file, or None if there is none.
    """
    env_path = os.environ.get("BENDCTL_CONFIG")
    if env_path:
        return Path(env_path).expanduser()

    candidate = resolve_home(home) / CONFIG_FILE
    if candidate.is_file():
        return candidate
    return None


def load_config(path: Path | None = None) -> CtlConfig:
    """Load and validate configuration.

    Args:
        path: Explicit config path. If None, ``find_config_file()`` is
            consulted and built-in defaults are used when nothing is found.

    Returns:
        Validated CtlConfig model.

    Raises:
        ConfigError: If the file is missing (when given explicitly) or invalid.
    """
    explicit = path is not None
    if path is None:
        path = find_config_file()

    if path is None:
        logger.debug("No config file found, using defaults")
        return CtlConfig()

    if not path.is_file():
        if explicit or os.environ.get("BENDCTL_CONFIG"):
            raise ConfigError(f"Config file not found: {path}")
        return CtlConfig()

    logger.debug("Loading config from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    try:
        config = CtlConfig.model_validate(data)
    except Exception as e:
        raise ConfigError(f"Invalid configuration in {path}: {e}") from e

    logger.info("Loaded config from %s", path)
    return config


def resolve_profile(name: str | None = None, home: Path | str | None = None) -> Profile:
    """Build the Profile for ``name`` (``$BENDCTL_PROFILE`` or ``default``).

    Raises:
        ConfigError: If the profile name is not a safe directory name.
    """
    name = name or os.environ.get("BENDCTL_PROFILE") or DEFAULT_PROFILE
    root = resolve_home(home) / name
    try:
        return Profile(name=name, root=root)
    except ValueError as e:
        raise ConfigError(str(e)) from e
