"""SSH session management built on Paramiko."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List, Optional

import paramiko

from .credentials import SSHCredentials

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 4096


class SSHConnectionError(RuntimeError):
    """Raised when an SSH connection cannot be established."""

    pass


class SSHTimeoutError(SSHConnectionError):
    """Raised when a server does not accept SSH connections in time."""

    pass


@dataclass
class SSHCommandResult:
    command: str
    stdout: str
    stderr: str
    exit_status: int

    @property
    def ok(self) -> bool:
        return self.exit_status == 0

    @property
    def output(self) -> str:
        """stderr if present, otherwise stdout; used in error messages."""
        return self.stderr or self.stdout


class SSHSession:
    """High-level wrapper around paramiko.SSHClient."""

    def __init__(
        self,
        credentials: SSHCredentials,
        *,
        client_factory: Callable[[], paramiko.SSHClient] | None = None,
        command_timeout: int = 600,
        poll_interval: float = 0.1,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.credentials = credentials
        self.command_timeout = command_timeout
        self.poll_interval = poll_interval
        self._sleep = sleep
        self._clock = clock
        self._client_factory = client_factory or paramiko.SSHClient
        self._client: Optional[paramiko.SSHClient] = None

    def __enter__(self) -> "SSHSession":
        self.connect()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.disconnect()

    def connect(self) -> None:
        if self._client:
            return
        client = self._client_factory()
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        try:
            client.connect(
                hostname=self.credentials.host,
                port=self.credentials.port,
                username=self.credentials.username,
                key_filename=self.credentials.key_path,
                timeout=self.credentials.timeout,
                look_for_keys=False,
                allow_agent=False,
            )
        except (paramiko.SSHException, OSError) as exc:
            client.close()
            raise SSHConnectionError(str(exc)) from exc
        self._client = client
        logger.debug("Connected to %s@%s", self.credentials.username, self.credentials.host)

    def is_connected(self) -> bool:
        if not self._client:
            return False
        transport = self._client.get_transport()
        return bool(transport and transport.is_active())

    def disconnect(self) -> None:
        if self._client:
            self._client.close()
            self._client = None

    def exec(self, command: str, *, timeout: Optional[int] = None) -> SSHCommandResult:
        """Run ``command`` and wait for it to finish.

        A non-zero exit status is returned, not raised; callers decide which
        commands are required. Output is drained while the command runs so a
        chatty command cannot stall on a full channel window, and the channel
        is closed once ``timeout`` seconds pass without an exit status.
        """
        if not self._client:
            self.connect()
        assert self._client is not None

        if timeout is None:
            timeout = self.command_timeout

        # heredoc bodies may carry secrets; log the first line only
        logger.debug("exec: %s", command.splitlines()[0] if command else command)
        _stdin, stdout, _stderr = self._client.exec_command(command, timeout=timeout)
        channel = stdout.channel

        stdout_chunks: List[bytes] = []
        stderr_chunks: List[bytes] = []
        deadline = self._clock() + timeout
        while not channel.exit_status_ready():
            self._drain(channel, stdout_chunks, stderr_chunks)
            if self._clock() >= deadline:
                channel.close()
                logger.warning("Command timed out after %ss on %s", timeout, self.credentials.host)
                return SSHCommandResult(
                    command=command,
                    stdout=_decode(stdout_chunks),
                    stderr=f"TIMEOUT: Command did not complete within {timeout} seconds.",
                    exit_status=-1,
                )
            self._sleep(self.poll_interval)

        self._drain(channel, stdout_chunks, stderr_chunks)
        exit_status = channel.recv_exit_status()
        return SSHCommandResult(
            command=command,
            stdout=_decode(stdout_chunks),
            stderr=_decode(stderr_chunks),
            exit_status=exit_status,
        )

    @staticmethod
    def _drain(channel: paramiko.Channel, stdout_chunks: List[bytes], stderr_chunks: List[bytes]) -> None:
        while channel.recv_ready():
            stdout_chunks.append(channel.recv(READ_CHUNK_SIZE))
        while channel.recv_stderr_ready():
            stderr_chunks.append(channel.recv_stderr(READ_CHUNK_SIZE))


def _decode(chunks: List[bytes]) -> str:
    return b"".join(chunks).decode("utf-8", errors="replace").strip()


def wait_for_available(
    credentials: SSHCredentials,
    timeout: float,
    poll_interval: float,
    *,
    session_factory: Callable[[SSHCredentials], SSHSession] = SSHSession,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    """Block until ``credentials.host`` accepts an SSH login.

    Each probe opens and immediately closes a session.
    """
    start = clock()
    last_error: Optional[Exception] = None
    while clock() - start < timeout:
        session = session_factory(credentials)
        try:
            session.connect()
        except SSHConnectionError as exc:
            last_error = exc
            logger.debug("SSH not yet available on %s: %s", credentials.host, exc)
            sleep(poll_interval)
            continue
        session.disconnect()
        return
    message = f"SSH did not become available on {credentials.host} within {timeout:g} seconds"
    if last_error:
        message += f" (last error: {last_error})"
    raise SSHTimeoutError(message)
