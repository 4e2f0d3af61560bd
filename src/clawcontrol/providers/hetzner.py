"""Hetzner Cloud API client."""

from __future__ import annotations

import logging
from typing import Any, Dict, List

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

HETZNER_API_BASE = "https://api.hetzner.cloud/v1"


def _server_from_payload(payload: Dict[str, Any]) -> ServerInfo:
    ipv4 = ((payload.get("public_net") or {}).get("ipv4") or {}).get("ip")
    return ServerInfo(
        id=str(payload["id"]),
        name=payload.get("name", ""),
        status=payload.get("status", "unknown"),
        ipv4=ipv4,
        raw=payload,
    )


def _key_from_payload(payload: Dict[str, Any]) -> SSHKeyInfo:
    return SSHKeyInfo(
        id=str(payload["id"]),
        name=payload.get("name", ""),
        fingerprint=payload.get("fingerprint", ""),
        public_key=payload.get("public_key", ""),
    )


class HetznerClient(HTTPProviderClient):
    name = "hetzner"
    label = "Hetzner"
    base_url = HETZNER_API_BASE
    active_status = "running"
    unexpected_statuses = frozenset({"off", "deleting"})

    def _parse_error(self, data: Any) -> tuple:
        error = (data or {}).get("error") if isinstance(data, dict) else None
        error = error or {}
        return (
            error.get("code", "unknown"),
            error.get("message", "Unknown Hetzner API error"),
        )

    def _validation_request(self) -> None:
        self._request("GET", "/servers")

    # SSH keys

    def list_ssh_keys(self) -> List[SSHKeyInfo]:
        data = self._request("GET", "/ssh_keys")
        return [_key_from_payload(item) for item in data.get("ssh_keys", [])]

    def get_ssh_key(self, key_id: ResourceId) -> SSHKeyInfo:
        data = self._request("GET", f"/ssh_keys/{key_id}")
        return _key_from_payload(data["ssh_key"])

    def create_ssh_key(self, name: str, public_key: str) -> SSHKeyInfo:
        data = self._request("POST", "/ssh_keys", {"name": name, "public_key": public_key})
        return _key_from_payload(data["ssh_key"])

    def delete_ssh_key(self, key_id: ResourceId) -> None:
        self._request("DELETE", f"/ssh_keys/{key_id}")

    # Servers

    def list_servers(self) -> List[ServerInfo]:
        data = self._request("GET", "/servers")
        return [_server_from_payload(item) for item in data.get("servers", [])]

    def get_server(self, server_id: ResourceId) -> ServerInfo:
        data = self._request("GET", f"/servers/{server_id}")
        return _server_from_payload(data["server"])

    def create_server(self, spec: ServerSpec) -> ServerInfo:
        body = {
            "name": spec.name,
            "server_type": spec.size,
            "image": spec.image,
            "location": spec.region,
            "ssh_keys": [int(key_id) for key_id in spec.ssh_key_ids],
            "start_after_create": True,
        }
        data = self._request("POST", "/servers", body)
        return _server_from_payload(data["server"])

    def delete_server(self, server_id: ResourceId) -> None:
        self._request("DELETE", f"/servers/{server_id}")

    # Actions

    def get_action(self, action_id: ResourceId) -> ActionInfo:
        data = self._request("GET", f"/actions/{action_id}")
        action = data["action"]
        return ActionInfo(id=str(action["id"]), status=action.get("status", ""), type=action.get("command", ""))

    def wait_for_action(self, action_id: ResourceId, timeout: float, poll_interval: float) -> None:
        start = self._clock()
        while self._clock() - start < timeout:
            action = self.get_action(action_id)
            if action.status == "success":
                return
            if action.status == "error":
                raise CloudProviderError("action_failed", "Action failed")
            self._sleep(poll_interval)
        raise ProviderTimeoutError(f"Action did not complete within {timeout:g} seconds")
