"""Cloud provider clients and the factory that selects one per deployment."""

from __future__ import annotations

from typing import Any, List, TYPE_CHECKING

from ..models import PROVIDER_LABELS, ProviderName
from .base import (
    ActionInfo,
    CloudProvider,
    CloudProviderError,
    ProviderStateError,
    ProviderTimeoutError,
    ServerInfo,
    ServerSpec,
    SSHKeyInfo,
)
from .digitalocean import DigitalOceanClient
from .hetzner import HetznerClient

if TYPE_CHECKING:
    from ..models import DeploymentConfig

SUPPORTED_PROVIDERS = [ProviderName.HETZNER, ProviderName.DIGITALOCEAN]

AI_PROVIDERS = [
    {"name": "anthropic", "label": "Anthropic", "description": "Claude models (Recommended)"},
    {"name": "openai", "label": "OpenAI", "description": "GPT-4o, o1, and more"},
    {"name": "openrouter", "label": "OpenRouter", "description": "Access multiple providers via one API"},
    {"name": "google", "label": "Google", "description": "Gemini models"},
    {"name": "groq", "label": "Groq", "description": "Fast inference for open models"},
]


def create_provider_client(provider: ProviderName, api_key: str, **kwargs: Any) -> CloudProvider:
    """
    Factory function to create the client for ``provider``.

    Raises:
        ValueError: If provider is not supported
    """
    provider = ProviderName(provider)
    if provider == ProviderName.HETZNER:
        return HetznerClient(api_key, **kwargs)
    if provider == ProviderName.DIGITALOCEAN:
        return DigitalOceanClient(api_key, **kwargs)
    raise ValueError(
        f"Unsupported cloud provider: {provider}. "
        f"Supported providers: {', '.join(p.value for p in SUPPORTED_PROVIDERS)}"
    )


def create_provider(config: "DeploymentConfig", **kwargs: Any) -> CloudProvider:
    """Create the provider client a deployment is configured for."""
    return create_provider_client(config.provider, config.api_key, **kwargs)


def server_spec_from_config(config: "DeploymentConfig", ssh_key_ids: List[str]) -> ServerSpec:
    """Translate the deployment's provider section into a server request."""
    if config.provider == ProviderName.HETZNER and config.hetzner:
        return ServerSpec(
            name=config.name,
            size=config.hetzner.server_type,
            region=config.hetzner.location,
            image=config.hetzner.image,
            ssh_key_ids=list(ssh_key_ids),
        )
    if config.provider == ProviderName.DIGITALOCEAN and config.digitalocean:
        return ServerSpec(
            name=config.name,
            size=config.digitalocean.size,
            region=config.digitalocean.region,
            image=config.digitalocean.image,
            ssh_key_ids=list(ssh_key_ids),
        )
    raise ValueError(f"Deployment {config.name} has no {config.provider.value} settings")


__all__ = [
    "AI_PROVIDERS",
    "ActionInfo",
    "CloudProvider",
    "CloudProviderError",
    "DigitalOceanClient",
    "HetznerClient",
    "PROVIDER_LABELS",
    "ProviderStateError",
    "ProviderTimeoutError",
    "SUPPORTED_PROVIDERS",
    "ServerInfo",
    "ServerSpec",
    "SSHKeyInfo",
    "create_provider",
    "create_provider_client",
    "server_spec_from_config",
]
