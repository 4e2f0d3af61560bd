"""Configuration loading utilities for ClawControl."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .paths import get_default_config_path, get_home_dir

# Load .env file if it exists
load_dotenv()


@dataclass
class OrchestratorConfig:
    """Retry policy and polling windows for the deployment orchestrator (seconds)."""

    max_retries: int = 3
    retry_delay: float = 5.0              # flat backoff between attempts
    server_wait_timeout: float = 300.0
    server_poll_interval: float = 5.0
    server_delete_delay: float = 5.0      # pause after removing a same-named server
    ssh_wait_timeout: float = 180.0
    ssh_poll_interval: float = 5.0
    tailscale_auth_timeout: float = 300.0
    tailscale_poll_interval: float = 5.0
    daemon_settle_delay: float = 3.0


@dataclass
class SSHConfig:
    """Settings for remote sessions on provisioned servers."""

    username: str = "root"
    port: int = 22
    connect_timeout: int = 20
    command_timeout: int = 600


@dataclass
class StorageConfig:
    home_dir: Optional[str] = None  # None -> CLAWCONTROL_HOME or ~/.clawcontrol

    @property
    def home_path(self) -> Path:
        return get_home_dir(self.home_dir)


@dataclass
class LoggingConfig:
    level: str = "INFO"


@dataclass
class ProviderCredentialsConfig:
    """Default provider credentials offered when creating deployments."""

    hetzner_api_key: Optional[str] = None
    digitalocean_api_key: Optional[str] = None


def _section(cls, payload: Dict[str, Any]):
    # keys starting with "_" are comments
    cleaned = {k: v for k, v in (payload or {}).items() if not k.startswith("_")}
    return cls(**{**cls().__dict__, **cleaned})


@dataclass
class AppConfig:
    """Top-level configuration."""

    orchestrator: OrchestratorConfig = field(default_factory=OrchestratorConfig)
    ssh: SSHConfig = field(default_factory=SSHConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    providers: ProviderCredentialsConfig = field(default_factory=ProviderCredentialsConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        return cls(
            orchestrator=_section(OrchestratorConfig, payload.get("orchestrator", {})),
            ssh=_section(SSHConfig, payload.get("ssh", {})),
            storage=_section(StorageConfig, payload.get("storage", {})),
            logging=_section(LoggingConfig, payload.get("logging", {})),
            providers=_section(ProviderCredentialsConfig, payload.get("providers", {})),
        )


def _apply_env_overrides(config: AppConfig) -> None:
    env_home = os.getenv("CLAWCONTROL_HOME")
    if env_home:
        config.storage.home_dir = env_home

    env_level = os.getenv("CLAWCONTROL_LOG_LEVEL")
    if env_level:
        config.logging.level = env_level

    env_retries = os.getenv("CLAWCONTROL_MAX_RETRIES")
    if env_retries:
        config.orchestrator.max_retries = int(env_retries)

    env_delay = os.getenv("CLAWCONTROL_RETRY_DELAY")
    if env_delay:
        config.orchestrator.retry_delay = float(env_delay)

    hetzner_key = os.getenv("CLAWCONTROL_HETZNER_API_KEY") or os.getenv("HETZNER_API_KEY")
    if hetzner_key:
        config.providers.hetzner_api_key = hetzner_key

    do_key = os.getenv("CLAWCONTROL_DIGITALOCEAN_API_KEY") or os.getenv("DIGITALOCEAN_TOKEN")
    if do_key:
        config.providers.digitalocean_api_key = do_key


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load configuration from `path` or the default location.

    The default file (``<home>/config.json``) is optional; an explicit `path`
    must exist.

    Environment variables (higher priority than config file):
    - CLAWCONTROL_HOME: data directory
    - CLAWCONTROL_LOG_LEVEL: logging level name
    - CLAWCONTROL_MAX_RETRIES / CLAWCONTROL_RETRY_DELAY: per-checkpoint retry policy
    - HETZNER_API_KEY or CLAWCONTROL_HETZNER_API_KEY: default Hetzner token
    - DIGITALOCEAN_TOKEN or CLAWCONTROL_DIGITALOCEAN_API_KEY: default DigitalOcean token
    """

    if path:
        candidate = Path(path)
        if not candidate.is_file():
            raise FileNotFoundError(f"Could not find configuration file: {candidate}")
    else:
        candidate = get_default_config_path()

    if candidate.is_file():
        with candidate.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        config = AppConfig.from_dict(data)
    else:
        config = AppConfig()

    _apply_env_overrides(config)
    return config
