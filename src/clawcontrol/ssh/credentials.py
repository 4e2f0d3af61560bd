"""SSH credential helpers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional


@dataclass
class SSHCredentials:
    """Key-based login for a provisioned server."""

    host: str
    key_path: str
    username: str = "root"
    port: int = 22
    timeout: int = 20

    def validate(self) -> None:
        if not self.host:
            raise ValueError("SSH host is required")
        if not self.key_path:
            raise ValueError("Key authentication requires a key_path")

    def to_command_args(self, remote_command: Optional[str] = None) -> List[str]:
        """Argument vector for the system ``ssh`` client.

        Host keys are not pinned: provider servers are recreated with the
        same IP and a new host key.
        """
        args = [
            "ssh",
            "-i",
            self.key_path,
            "-o",
            "StrictHostKeyChecking=no",
            "-o",
            "UserKnownHostsFile=/dev/null",
        ]
        if self.port != 22:
            args += ["-p", str(self.port)]
        args.append(f"{self.username}@{self.host}")
        if remote_command:
            args += ["-t", remote_command]
        return args
