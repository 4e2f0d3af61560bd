"""Data model for deployments: configuration, state and checkpoints."""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

_NAME_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_NAME_LENGTH = 63


def utc_now() -> str:
    """Return the current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat()


class ProviderName(str, Enum):
    """Cloud providers a deployment can target."""
    HETZNER = "hetzner"
    DIGITALOCEAN = "digitalocean"


PROVIDER_LABELS = {
    ProviderName.HETZNER: "Hetzner Cloud",
    ProviderName.DIGITALOCEAN: "DigitalOcean",
}


class DeploymentStatus(str, Enum):
    INITIALIZED = "initialized"
    PROVISIONING = "provisioning"
    CONFIGURING = "configuring"
    DEPLOYED = "deployed"
    FAILED = "failed"
    UPDATING = "updating"


class CheckpointName(str, Enum):
    """Every checkpoint name that may appear in a persisted state file."""
    SERVER_CREATED = "server_created"
    SSH_KEY_UPLOADED = "ssh_key_uploaded"
    SSH_CONNECTED = "ssh_connected"
    SWAP_CONFIGURED = "swap_configured"
    SYSTEM_UPDATED = "system_updated"
    NVM_INSTALLED = "nvm_installed"
    NODE_INSTALLED = "node_installed"
    PNPM_INSTALLED = "pnpm_installed"
    CHROME_INSTALLED = "chrome_installed"
    OPENCLAW_INSTALLED = "openclaw_installed"
    OPENCLAW_CONFIGURED = "openclaw_configured"
    TAILSCALE_INSTALLED = "tailscale_installed"
    TAILSCALE_AUTHENTICATED = "tailscale_authenticated"
    TAILSCALE_CONFIGURED = "tailscale_configured"
    DAEMON_STARTED = "daemon_started"
    # Written by older releases; recognized when loading, never executed.
    CHANNEL_PAIRED = "channel_paired"
    COMPLETED = "completed"


CHECKPOINT_ORDER = (
    CheckpointName.SERVER_CREATED,
    CheckpointName.SSH_KEY_UPLOADED,
    CheckpointName.SSH_CONNECTED,
    CheckpointName.SWAP_CONFIGURED,
    CheckpointName.SYSTEM_UPDATED,
    CheckpointName.NVM_INSTALLED,
    CheckpointName.NODE_INSTALLED,
    CheckpointName.PNPM_INSTALLED,
    CheckpointName.CHROME_INSTALLED,
    CheckpointName.OPENCLAW_INSTALLED,
    CheckpointName.OPENCLAW_CONFIGURED,
    CheckpointName.TAILSCALE_INSTALLED,
    CheckpointName.TAILSCALE_AUTHENTICATED,
    CheckpointName.TAILSCALE_CONFIGURED,
    CheckpointName.DAEMON_STARTED,
    CheckpointName.COMPLETED,
)

_CHECKPOINT_INDEX: Dict[CheckpointName, int] = {
    name: index for index, name in enumerate(CHECKPOINT_ORDER)
}


def checkpoint_index(name: CheckpointName) -> Optional[int]:
    """Position of ``name`` in the active order, or None for legacy names."""
    return _CHECKPOINT_INDEX.get(name)


def validate_deployment_name(name: str) -> None:
    """Raise ValueError unless ``name`` is lowercase alphanumeric with hyphens."""
    if not name:
        raise ValueError("Deployment name is required")
    if len(name) > MAX_NAME_LENGTH:
        raise ValueError(f"Deployment name must be at most {MAX_NAME_LENGTH} characters")
    if not _NAME_PATTERN.match(name):
        raise ValueError(
            "Deployment name may only contain lowercase letters, digits and "
            "single hyphens, and may not start or end with a hyphen"
        )


@dataclass
class Checkpoint:
    name: CheckpointName
    completed_at: str
    retry_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name.value,
            "completedAt": self.completed_at,
            "retryCount": self.retry_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Checkpoint":
        return cls(
            name=CheckpointName(data["name"]),
            completed_at=data["completedAt"],
            retry_count=int(data.get("retryCount", 0)),
        )


_STATE_FIELDS = (
    ("server_id", "serverId"),
    ("server_ip", "serverIp"),
    ("tailscale_ip", "tailscaleIp"),
    ("ssh_key_id", "sshKeyId"),
    ("ssh_key_fingerprint", "sshKeyFingerprint"),
    ("last_error", "lastError"),
    ("deployed_at", "deployedAt"),
)


@dataclass
class DeploymentState:
    """Mutable execution record persisted as ``state.json``."""

    status: DeploymentStatus = DeploymentStatus.INITIALIZED
    server_id: Optional[str] = None
    server_ip: Optional[str] = None
    tailscale_ip: Optional[str] = None
    ssh_key_id: Optional[str] = None
    ssh_key_fingerprint: Optional[str] = None
    checkpoints: List[Checkpoint] = field(default_factory=list)
    last_error: Optional[str] = None
    deployed_at: Optional[str] = None
    updated_at: str = field(default_factory=utc_now)

    def completed_names(self) -> List[CheckpointName]:
        return [checkpoint.name for checkpoint in self.checkpoints]

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"status": self.status.value}
        for attr, key in _STATE_FIELDS:
            value = getattr(self, attr)
            if value is not None:
                payload[key] = value
        payload["checkpoints"] = [cp.to_dict() for cp in self.checkpoints]
        payload["updatedAt"] = self.updated_at
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentState":
        kwargs: Dict[str, Any] = {
            attr: data.get(key) for attr, key in _STATE_FIELDS
        }
        return cls(
            status=DeploymentStatus(data["status"]),
            checkpoints=[Checkpoint.from_dict(cp) for cp in data.get("checkpoints", [])],
            updated_at=data.get("updatedAt") or utc_now(),
            **kwargs,
        )


@dataclass(frozen=True)
class HetznerConfig:
    api_key: str
    server_type: str = "cpx11"
    location: str = "ash"
    image: str = "ubuntu-24.04"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "serverType": self.server_type,
            "location": self.location,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HetznerConfig":
        defaults = cls(api_key="")
        return cls(
            api_key=data["apiKey"],
            server_type=data.get("serverType") or defaults.server_type,
            location=data.get("location") or defaults.location,
            image=data.get("image") or defaults.image,
        )


@dataclass(frozen=True)
class DigitalOceanConfig:
    api_key: str
    size: str = "s-1vcpu-2gb"
    region: str = "nyc1"
    image: str = "ubuntu-24-04-x64"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "size": self.size,
            "region": self.region,
            "image": self.image,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DigitalOceanConfig":
        defaults = cls(api_key="")
        return cls(
            api_key=data["apiKey"],
            size=data.get("size") or defaults.size,
            region=data.get("region") or defaults.region,
            image=data.get("image") or defaults.image,
        )


@dataclass(frozen=True)
class OpenClawConfig:
    """Optional overrides merged into the generated gateway configuration."""

    gateway: Dict[str, Any] = field(default_factory=dict)
    browser: Dict[str, Any] = field(default_factory=dict)

    @property
    def gateway_port(self) -> int:
        return int(self.gateway.get("port", 18789))

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.gateway:
            payload["gateway"] = dict(self.gateway)
        if self.browser:
            payload["browser"] = dict(self.browser)
        return payload

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "OpenClawConfig":
        data = data or {}
        return cls(gateway=dict(data.get("gateway") or {}), browser=dict(data.get("browser") or {}))


@dataclass(frozen=True)
class OpenClawAgentConfig:
    """AI model provider and messaging channel for the agent."""

    ai_provider: str
    ai_api_key: str
    model: str
    telegram_bot_token: str
    channel: str = "telegram"
    telegram_allow_from: Optional[str] = None

    def validate(self) -> None:
        for attr, label in (
            ("ai_provider", "AI provider"),
            ("ai_api_key", "AI provider API key"),
            ("model", "Model identifier"),
            ("telegram_bot_token", "Telegram bot token"),
        ):
            if not getattr(self, attr):
                raise ValueError(f"{label} is required")

    @property
    def model_key(self) -> str:
        return f"{self.ai_provider}/{self.model}"

    def to_dict(self) -> Dict[str, Any]:
        payload = {
            "aiProvider": self.ai_provider,
            "aiApiKey": self.ai_api_key,
            "model": self.model,
            "channel": self.channel,
            "telegramBotToken": self.telegram_bot_token,
        }
        if self.telegram_allow_from:
            payload["telegramAllowFrom"] = self.telegram_allow_from
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OpenClawAgentConfig":
        return cls(
            ai_provider=data["aiProvider"],
            ai_api_key=data["aiApiKey"],
            model=data["model"],
            channel=data.get("channel") or "telegram",
            telegram_bot_token=data["telegramBotToken"],
            telegram_allow_from=data.get("telegramAllowFrom"),
        )


@dataclass(frozen=True)
class DeploymentConfig:
    """Immutable user intent captured when a deployment is created."""

    name: str
    provider: ProviderName
    created_at: str = field(default_factory=utc_now)
    hetzner: Optional[HetznerConfig] = None
    digitalocean: Optional[DigitalOceanConfig] = None
    openclaw_config: OpenClawConfig = field(default_factory=OpenClawConfig)
    openclaw_agent: Optional[OpenClawAgentConfig] = None

    def validate(self) -> None:
        validate_deployment_name(self.name)
        if self.provider == ProviderName.HETZNER:
            if self.hetzner is None or not self.hetzner.api_key:
                raise ValueError("Hetzner API key is required")
        elif self.provider == ProviderName.DIGITALOCEAN:
            if self.digitalocean is None or not self.digitalocean.api_key:
                raise ValueError("DigitalOcean API token is required")
        if self.openclaw_agent is not None:
            self.openclaw_agent.validate()

    @property
    def api_key(self) -> str:
        section = self.hetzner if self.provider == ProviderName.HETZNER else self.digitalocean
        if section is None:
            raise ValueError(f"No {self.provider.value} settings in deployment {self.name}")
        return section.api_key

    def fork(self, new_name: str) -> "DeploymentConfig":
        """Return a copy of this config under ``new_name``."""
        forked = replace(self, name=new_name, created_at=utc_now())
        forked.validate()
        return forked

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "name": self.name,
            "provider": self.provider.value,
            "createdAt": self.created_at,
            "openclawConfig": self.openclaw_config.to_dict(),
        }
        if self.hetzner:
            payload["hetzner"] = self.hetzner.to_dict()
        if self.digitalocean:
            payload["digitalocean"] = self.digitalocean.to_dict()
        if self.openclaw_agent:
            payload["openclawAgent"] = self.openclaw_agent.to_dict()
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DeploymentConfig":
        hetzner = data.get("hetzner")
        digitalocean = data.get("digitalocean")
        agent = data.get("openclawAgent")
        return cls(
            name=data["name"],
            provider=ProviderName(data["provider"]),
            created_at=data.get("createdAt") or utc_now(),
            hetzner=HetznerConfig.from_dict(hetzner) if hetzner else None,
            digitalocean=DigitalOceanConfig.from_dict(digitalocean) if digitalocean else None,
            openclaw_config=OpenClawConfig.from_dict(data.get("openclawConfig")),
            openclaw_agent=OpenClawAgentConfig.from_dict(agent) if agent else None,
        )


@dataclass
class Deployment:
    """A deployment's config and state, as loaded from local storage."""

    config: DeploymentConfig
    state: DeploymentState
    ssh_key_path: Path

    @property
    def name(self) -> str:
        return self.config.name
