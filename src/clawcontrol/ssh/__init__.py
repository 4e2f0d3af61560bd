"""SSH utilities for ClawControl."""

from .credentials import SSHCredentials
from .keys import SSHKeyPair, generate_key_pair
from .probe import DeploymentHealth, HealthProbe
from .session import (
    SSHCommandResult,
    SSHConnectionError,
    SSHSession,
    SSHTimeoutError,
    wait_for_available,
)

__all__ = [
    "SSHCredentials",
    "SSHCommandResult",
    "SSHConnectionError",
    "SSHKeyPair",
    "SSHSession",
    "SSHTimeoutError",
    "DeploymentHealth",
    "HealthProbe",
    "generate_key_pair",
    "wait_for_available",
]
