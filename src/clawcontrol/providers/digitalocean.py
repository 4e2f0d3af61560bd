"""DigitalOcean API client."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from .base import (
    ActionInfo,
    CloudProviderError,
    HTTPProviderClient,
    ProviderTimeoutError,
    ResourceId,
    ServerInfo,
    ServerSpec,
    SSHKeyInfo,
)

logger = logging.getLogger(__name__)

DO_API_BASE = "https://api.digitalocean.com/v2"


def _public_ipv4(payload: Dict[str, Any]) -> Optional[str]:
    for network in (payload.get("networks") or {}).get("v4", []):
        if network.get("type") == "public":
            return network.get("ip_address")
    return None


def _droplet_from_payload(payload: Dict[str, Any]) -> ServerInfo:
    return ServerInfo(
        id=str(payload["id"]),
        name=payload.get("name", ""),
        status=payload.get("status", "unknown"),
        ipv4=_public_ipv4(payload),
        raw=payload,
    )


def _key_from_payload(payload: Dict[str, Any]) -> SSHKeyInfo:
    return SSHKeyInfo(
        id=str(payload["id"]),
        name=payload.get("name", ""),
        fingerprint=payload.get("fingerprint", ""),
        public_key=payload.get("public_key", ""),
    )


class DigitalOceanClient(HTTPProviderClient):
    name = "digitalocean"
    label = "DigitalOcean"
    base_url = DO_API_BASE
    active_status = "active"
    unexpected_statuses = frozenset({"off", "archive"})
    not_running_code = "droplet_not_active"

    def _parse_error(self, data: Any) -> tuple:
        data = data if isinstance(data, dict) else {}
        return (
            data.get("id", "unknown"),
            data.get("message", "Unknown DigitalOcean API error"),
        )

    def _validation_request(self) -> None:
        self._request("GET", "/account")

    def _resource_label(self) -> str:
        return "Droplet"

    def _timeout_message(self, timeout: float) -> str:
        return f"Droplet did not become active within {timeout:g} seconds"

    # SSH keys

    def list_ssh_keys(self) -> List[SSHKeyInfo]:
        data = self._request("GET", "/account/keys")
        return [_key_from_payload(item) for item in data.get("ssh_keys", [])]

    def get_ssh_key(self, id_or_fingerprint: ResourceId) -> SSHKeyInfo:
        data = self._request("GET", f"/account/keys/{id_or_fingerprint}")
        return _key_from_payload(data["ssh_key"])

    def create_ssh_key(self, name: str, public_key: str) -> SSHKeyInfo:
        data = self._request("POST", "/account/keys", {"name": name, "public_key": public_key})
        return _key_from_payload(data["ssh_key"])

    def delete_ssh_key(self, id_or_fingerprint: ResourceId) -> None:
        self._request("DELETE", f"/account/keys/{id_or_fingerprint}")

    # Droplets

    def list_servers(self) -> List[ServerInfo]:
        data = self._request("GET", "/droplets")
        return [_droplet_from_payload(item) for item in data.get("droplets", [])]

    def get_server(self, server_id: ResourceId) -> ServerInfo:
        data = self._request("GET", f"/droplets/{server_id}")
        return _droplet_from_payload(data["droplet"])

    def create_server(self, spec: ServerSpec) -> ServerInfo:
        body = {
            "name": spec.name,
            "region": spec.region,
            "size": spec.size,
            "image": spec.image,
            "ssh_keys": [int(key_id) if key_id.isdigit() else key_id for key_id in spec.ssh_key_ids],
        }
        data = self._request("POST", "/droplets", body)
        return _droplet_from_payload(data["droplet"])

    def delete_server(self, server_id: ResourceId) -> None:
        self._request("DELETE", f"/droplets/{server_id}")

    # Actions

    def get_action(self, action_id: ResourceId) -> ActionInfo:
        data = self._request("GET", f"/actions/{action_id}")
        action = data["action"]
        return ActionInfo(id=str(action["id"]), status=action.get("status", ""), type=action.get("type", ""))

    def wait_for_action(self, action_id: ResourceId, timeout: float, poll_interval: float) -> None:
        start = self._clock()
        while self._clock() - start < timeout:
            action = self.get_action(action_id)
            if action.status == "completed":
                return
            if action.status == "errored":
                raise CloudProviderError("action_failed", "Action failed")
            self._sleep(poll_interval)
        raise ProviderTimeoutError(f"Action did not complete within {timeout:g} seconds")
