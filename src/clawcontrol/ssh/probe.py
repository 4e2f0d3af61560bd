"""Health probing for deployed servers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional

from .credentials import SSHCredentials
from .session import SSHConnectionError, SSHSession

logger = logging.getLogger(__name__)


@dataclass
class DeploymentHealth:
    ssh_reachable: bool
    service_active: bool
    detail: Optional[str] = None

    @property
    def healthy(self) -> bool:
        return self.ssh_reachable and self.service_active

    def to_payload(self) -> dict:
        return {
            "ssh_reachable": self.ssh_reachable,
            "service_active": self.service_active,
            "detail": self.detail,
        }


class HealthProbe:
    """Checks that a server answers over SSH and its gateway service is up."""

    def __init__(
        self,
        session_factory: Callable[[SSHCredentials], SSHSession] = SSHSession,
        service_name: str = "openclaw",
    ) -> None:
        self._session_factory = session_factory
        self.service_name = service_name

    def check(self, credentials: SSHCredentials) -> DeploymentHealth:
        session = self._session_factory(credentials)
        try:
            session.connect()
        except SSHConnectionError as exc:
            return DeploymentHealth(ssh_reachable=False, service_active=False, detail=str(exc))
        try:
            result = session.exec(f"systemctl is-active {self.service_name}")
            state = result.stdout.strip()
            return DeploymentHealth(
                ssh_reachable=True,
                service_active=state == "active",
                detail=state or result.stderr,
            )
        finally:
            session.disconnect()
