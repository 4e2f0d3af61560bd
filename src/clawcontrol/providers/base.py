"""Abstract cloud provider contract and the shared HTTP plumbing."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, FrozenSet, List, Optional, Union

import requests

logger = logging.getLogger(__name__)

ResourceId = Union[int, str]


class CloudProviderError(RuntimeError):
    """Structured error surfaced by every provider call."""

    def __init__(self, code: str, message: str, status_code: int = 0) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code

    @property
    def is_not_found(self) -> bool:
        return self.code == "not_found" or self.status_code == 404

    @property
    def is_unauthorized(self) -> bool:
        return self.code in ("unauthorized", "forbidden") or self.status_code in (401, 403)


class ProviderTimeoutError(CloudProviderError):
    """A polling wait passed its deadline."""

    def __init__(self, message: str) -> None:
        super().__init__("timeout", message)


class ProviderStateError(CloudProviderError):
    """A resource reached a terminal state other than the one being waited for."""


@dataclass
class ServerSpec:
    name: str
    size: str
    region: str
    image: str
    ssh_key_ids: List[str] = field(default_factory=list)


@dataclass
class ServerInfo:
    id: str
    name: str
    status: str
    ipv4: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict, repr=False)


@dataclass
class SSHKeyInfo:
    id: str
    name: str
    fingerprint: str
    public_key: str = ""


@dataclass
class ActionInfo:
    id: str
    status: str
    type: str = ""


class CloudProvider(ABC):
    """Capabilities the orchestrator needs from a cloud vendor.

    None of these calls is idempotent at the HTTP layer; callers check for
    existing resources before creating new ones.
    """

    name: str = ""
    label: str = ""

    @abstractmethod
    def validate_api_key(self) -> bool:
        """Return False on an authorization-denied response; propagate other errors."""

    @abstractmethod
    def create_server(self, spec: ServerSpec) -> ServerInfo:
        ...

    @abstractmethod
    def get_server(self, server_id: ResourceId) -> ServerInfo:
        ...

    @abstractmethod
    def delete_server(self, server_id: ResourceId) -> None:
        ...

    @abstractmethod
    def list_servers(self) -> List[ServerInfo]:
        ...

    @abstractmethod
    def create_ssh_key(self, name: str, public_key: str) -> SSHKeyInfo:
        ...

    @abstractmethod
    def delete_ssh_key(self, key_id: ResourceId) -> None:
        ...

    @abstractmethod
    def list_ssh_keys(self) -> List[SSHKeyInfo]:
        ...

    @abstractmethod
    def wait_for_server_running(
        self, server_id: ResourceId, timeout: float, poll_interval: float
    ) -> ServerInfo:
        ...

    @abstractmethod
    def wait_for_action(self, action_id: ResourceId, timeout: float, poll_interval: float) -> None:
        ...


class HTTPProviderClient(CloudProvider):
    """Bearer-token JSON client shared by the concrete providers."""

    base_url: str = ""
    active_status: str = ""
    unexpected_statuses: FrozenSet[str] = frozenset()
    not_running_code: str = "server_not_running"

    def __init__(
        self,
        api_key: str,
        *,
        session: Optional[requests.Session] = None,
        request_timeout: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.api_key = api_key
        self.session = session or requests.Session()
        self.request_timeout = request_timeout
        self._sleep = sleep
        self._clock = clock

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    @abstractmethod
    def _parse_error(self, data: Any) -> tuple:
        """Return ``(code, message)`` from an error response body."""

    def _request(self, method: str, endpoint: str, body: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{endpoint}"
        logger.debug("%s %s %s", self.label, method, endpoint)
        response = self.session.request(
            method,
            url,
            headers=self._headers(),
            json=body,
            timeout=self.request_timeout,
        )

        # DELETE returns 204 with no body
        if response.status_code == 204 or not response.content:
            if response.ok:
                return None
            raise CloudProviderError(
                "unknown", f"{self.label} API returned HTTP {response.status_code}", response.status_code
            )

        try:
            data = response.json()
        except ValueError:
            data = None

        if not response.ok:
            code, message = self._parse_error(data)
            raise CloudProviderError(code, message, response.status_code)

        return data

    def validate_api_key(self) -> bool:
        try:
            self._validation_request()
        except CloudProviderError as exc:
            if exc.is_unauthorized:
                return False
            raise
        return True

    @abstractmethod
    def _validation_request(self) -> None:
        ...

    def wait_for_server_running(
        self, server_id: ResourceId, timeout: float, poll_interval: float
    ) -> ServerInfo:
        start = self._clock()
        while self._clock() - start < timeout:
            server = self.get_server(server_id)
            if server.status == self.active_status:
                return server
            if server.status in self.unexpected_statuses:
                raise ProviderStateError(
                    self.not_running_code,
                    f"{self._resource_label()} entered unexpected state: {server.status}",
                )
            logger.debug("%s %s status=%s, waiting", self._resource_label(), server_id, server.status)
            self._sleep(poll_interval)
        raise ProviderTimeoutError(self._timeout_message(timeout))

    def _resource_label(self) -> str:
        return "Server"

    def _timeout_message(self, timeout: float) -> str:
        return f"Server did not start within {timeout:g} seconds"
