"""
Configuration loading for KeyMesh.

Config lives at ``<home>/config.yaml``. A missing file means defaults;
an unreadable one is logged and also falls back to defaults so a broken
config never blocks a sync.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import ValidationError

from . import KEYMESH_HOME
from .models import KeyMeshConfig

logger = logging.getLogger("keymesh.config")

CONFIG_FILE_NAME = "config.yaml"


def resolve_home(home: Optional[Union[str, Path]] = None) -> Path:
    """Expand the KeyMesh home directory (argument, KEYMESH_HOME, or default)."""
    return Path(home or KEYMESH_HOME).expanduser()


def load_config(home: Path) -> KeyMeshConfig:
    """Load config.yaml from the home directory.

    Args:
        home: KeyMesh home directory.

    Returns:
        KeyMeshConfig, defaults if the file is missing or invalid.
    """
    config_file = home / CONFIG_FILE_NAME
    if config_file.exists():
        try:
            data = yaml.safe_load(config_file.read_text(encoding="utf-8")) or {}
            return KeyMeshConfig.model_validate(data)
        except (yaml.YAMLError, ValidationError, OSError) as exc:
            logger.warning("Failed to load config %s: %s", config_file, exc)
    return KeyMeshConfig()


def save_config(home: Path, config: KeyMeshConfig) -> Path:
    """Write config.yaml to the home directory.

    Returns:
        Path to the written file.
    """
    home.mkdir(parents=True, exist_ok=True)
    config_file = home / CONFIG_FILE_NAME
    config_file.write_text(
        yaml.dump(config.model_dump(mode="json"), default_flow_style=False),
        encoding="utf-8",
    )
    return config_file
