"""Deployment templates: reusable provider sizing plus AI model choices."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..models import (
    DeploymentConfig,
    DigitalOceanConfig,
    HetznerConfig,
    OpenClawAgentConfig,
    ProviderName,
    utc_now,
)
from ..paths import get_templates_dir
from .fs import read_json, write_json_atomic

logger = logging.getLogger(__name__)


class TemplateError(RuntimeError):
    """Raised for missing, invalid or protected templates."""


@dataclass
class Template:
    id: str
    name: str
    provider: ProviderName
    ai_provider: str
    model: str
    description: str = ""
    built_in: bool = False
    created_at: str = field(default_factory=utc_now)
    channel: str = "telegram"
    hetzner: Optional[Dict[str, str]] = None
    digitalocean: Optional[Dict[str, str]] = None

    def validate(self) -> None:
        for attr in ("id", "name", "ai_provider", "model"):
            if not getattr(self, attr):
                raise TemplateError(f"Template field '{attr}' is required")

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "builtIn": self.built_in,
            "createdAt": self.created_at,
            "provider": self.provider.value,
        }
        if self.hetzner:
            payload["hetzner"] = dict(self.hetzner)
        if self.digitalocean:
            payload["digitalocean"] = dict(self.digitalocean)
        payload.update({"aiProvider": self.ai_provider, "model": self.model, "channel": self.channel})
        return payload

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Template":
        try:
            template = cls(
                id=data["id"],
                name=data["name"],
                description=data.get("description", ""),
                built_in=bool(data.get("builtIn", False)),
                created_at=data.get("createdAt") or utc_now(),
                provider=ProviderName(data["provider"]),
                hetzner=data.get("hetzner"),
                digitalocean=data.get("digitalocean"),
                ai_provider=data["aiProvider"],
                model=data["model"],
                channel=data.get("channel") or "telegram",
            )
        except (KeyError, ValueError, TypeError) as exc:
            raise TemplateError(f"Invalid template: {exc}") from exc
        template.validate()
        return template

    def to_config(
        self,
        name: str,
        api_key: str,
        *,
        ai_api_key: str,
        telegram_bot_token: str,
        telegram_allow_from: Optional[str] = None,
    ) -> DeploymentConfig:
        """Build a deployment config from this template and the user's secrets."""
        hetzner = None
        digitalocean = None
        if self.provider == ProviderName.HETZNER:
            sizing = self.hetzner or {}
            hetzner = HetznerConfig(
                api_key=api_key,
                server_type=sizing.get("serverType", "cpx11"),
                location=sizing.get("location", "ash"),
                image=sizing.get("image", "ubuntu-24.04"),
            )
        else:
            sizing = self.digitalocean or {}
            digitalocean = DigitalOceanConfig(
                api_key=api_key,
                size=sizing.get("size", "s-1vcpu-2gb"),
                region=sizing.get("region", "nyc1"),
                image=sizing.get("image", "ubuntu-24-04-x64"),
            )
        config = DeploymentConfig(
            name=name,
            provider=self.provider,
            hetzner=hetzner,
            digitalocean=digitalocean,
            openclaw_agent=OpenClawAgentConfig(
                ai_provider=self.ai_provider,
                ai_api_key=ai_api_key,
                model=self.model,
                channel=self.channel,
                telegram_bot_token=telegram_bot_token,
                telegram_allow_from=telegram_allow_from,
            ),
        )
        config.validate()
        return config


_HETZNER_US_EAST = {"serverType": "cpx11", "location": "ash", "image": "ubuntu-24.04"}
_DIGITALOCEAN_NYC1 = {"size": "s-1vcpu-2gb", "region": "nyc1", "image": "ubuntu-24-04-x64"}

BUILT_IN_TEMPLATES: List[Template] = [
    Template(
        id="hetzner-telegram-openrouter-kimi",
        name="Hetzner + OpenRouter Kimi K2.5",
        description=(
            "Deploy OpenClaw on Hetzner Cloud (US East) with OpenRouter using "
            "Moonshotai Kimi K2.5 model via Telegram"
        ),
        built_in=True,
        created_at="2025-01-01T00:00:00.000Z",
        provider=ProviderName.HETZNER,
        hetzner=dict(_HETZNER_US_EAST),
        ai_provider="openrouter",
        model="moonshotai/kimi-k2.5",
    ),
    Template(
        id="digitalocean-telegram-openrouter-kimi",
        name="DigitalOcean + OpenRouter Kimi K2.5",
        description=(
            "Deploy OpenClaw on DigitalOcean (NYC1) with OpenRouter using "
            "Moonshotai Kimi K2.5 model via Telegram"
        ),
        built_in=True,
        created_at="2025-01-01T00:00:00.000Z",
        provider=ProviderName.DIGITALOCEAN,
        digitalocean=dict(_DIGITALOCEAN_NYC1),
        ai_provider="openrouter",
        model="moonshotai/kimi-k2.5",
    ),
    Template(
        id="beacon24-concierge-hetzner",
        name="Beacon24 Concierge (Hetzner)",
        description=(
            "Deploy a Beacon24 Concierge personal AI on Hetzner Cloud with OpenRouter. "
            "Pre-configured for 1:1 client assistants."
        ),
        built_in=True,
        created_at="2026-02-22T00:00:00.000Z",
        provider=ProviderName.HETZNER,
        hetzner=dict(_HETZNER_US_EAST),
        ai_provider="openrouter",
        model="openrouter/anthropic/claude-haiku-4-5",
    ),
]


def _slugify(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")


class TemplateStore:
    """Templates stored as ``<home>/templates/<id>.json``."""

    def __init__(self, home: Path) -> None:
        self.root = get_templates_dir(Path(home))

    def _path(self, template_id: str) -> Path:
        return self.root / f"{template_id}.json"

    def seed_built_ins(self) -> None:
        # existing files win so local edits to a built-in survive
        for template in BUILT_IN_TEMPLATES:
            path = self._path(template.id)
            if not path.exists():
                write_json_atomic(path, template.to_dict())

    def list(self) -> List[Template]:
        self.seed_built_ins()
        templates = []
        for path in self.root.glob("*.json"):
            try:
                templates.append(Template.from_dict(read_json(path)))
            except (TemplateError, ValueError) as exc:
                logger.warning("Skipping invalid template %s: %s", path.name, exc)
        return sorted(templates, key=lambda t: (not t.built_in, t.name.lower()))

    def exists(self, template_id: str) -> bool:
        return self._path(template_id).exists()

    def get(self, template_id: str) -> Template:
        path = self._path(template_id)
        if not path.exists():
            builtin = next((t for t in BUILT_IN_TEMPLATES if t.id == template_id), None)
            if builtin:
                return builtin
            raise TemplateError(f"Template '{template_id}' not found")
        try:
            return Template.from_dict(read_json(path))
        except ValueError as exc:
            raise TemplateError(f"Template '{template_id}' is not valid JSON: {exc}") from exc

    def save(self, template: Template) -> Template:
        template.validate()
        write_json_atomic(self._path(template.id), template.to_dict())
        return template

    def delete(self, template_id: str) -> None:
        template = self.get(template_id)
        if template.built_in:
            raise TemplateError("Cannot delete built-in templates")
        self._path(template_id).unlink()

    def generate_id(self, name: str) -> str:
        base = _slugify(name) or "template"
        candidate = base
        counter = 1
        while self.exists(candidate):
            candidate = f"{base}-{counter}"
            counter += 1
        return candidate

    def fork(
        self,
        source_id: str,
        name: str,
        *,
        provider: Optional[ProviderName] = None,
        size: Optional[str] = None,
        ai_provider: Optional[str] = None,
        model: Optional[str] = None,
    ) -> Template:
        """Save a user copy of ``source_id`` named ``name``.

        Sizing carries over when the provider stays the same; switching
        provider starts from that provider's defaults. ``size`` overrides the
        server type or droplet size.
        """
        name = name.strip()
        if not name:
            raise TemplateError("Template name is required")
        source = self.get(source_id)
        provider = ProviderName(provider) if provider else source.provider

        hetzner = None
        digitalocean = None
        if provider == ProviderName.HETZNER:
            hetzner = dict(source.hetzner or _HETZNER_US_EAST)
            if size:
                hetzner["serverType"] = size
        else:
            digitalocean = dict(source.digitalocean or _DIGITALOCEAN_NYC1)
            if size:
                digitalocean["size"] = size

        template = Template(
            id=self.generate_id(name),
            name=name,
            description=f'Forked from "{source.name}"',
            built_in=False,
            provider=provider,
            hetzner=hetzner,
            digitalocean=digitalocean,
            ai_provider=ai_provider or source.ai_provider,
            model=model or source.model,
            channel=source.channel,
        )
        logger.info("Forked template %s into %s", source.id, template.id)
        return self.save(template)
