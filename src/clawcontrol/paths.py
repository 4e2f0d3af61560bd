"""Filesystem layout for ClawControl.

All data is stored under the home directory (``~/.clawcontrol`` by default):
- <home>/config.json                  # Optional application settings
- <home>/deployments/<name>/          # config.json, state.json, ssh_key(.pub)
- <home>/templates/<id>.json          # Built-in and user templates
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional, Union

DEFAULT_HOME = Path("~/.clawcontrol")

CONFIG_FILENAME = "config.json"
DEPLOYMENTS_DIRNAME = "deployments"
TEMPLATES_DIRNAME = "templates"

DEPLOYMENT_CONFIG_FILENAME = "config.json"
DEPLOYMENT_STATE_FILENAME = "state.json"
PRIVATE_KEY_FILENAME = "ssh_key"
PUBLIC_KEY_FILENAME = "ssh_key.pub"


def get_home_dir(override: Optional[Union[str, Path]] = None) -> Path:
    """Resolve the data directory: explicit override, CLAWCONTROL_HOME, then default."""
    raw = override or os.getenv("CLAWCONTROL_HOME") or DEFAULT_HOME
    return Path(raw).expanduser()


def get_default_config_path() -> Path:
    return get_home_dir() / CONFIG_FILENAME


def get_deployments_dir(home: Path) -> Path:
    path = home / DEPLOYMENTS_DIRNAME
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_templates_dir(home: Path) -> Path:
    path = home / TEMPLATES_DIRNAME
    path.mkdir(parents=True, exist_ok=True)
    return path
