"""Shared helpers and exceptions for provisioning recipes."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from ..ssh import SSHCommandResult, SSHSession

logger = logging.getLogger(__name__)

Reporter = Optional[Callable[[str], None]]

NVM_PREFIX = "source ~/.nvm/nvm.sh &&"
APT_ENV = "DEBIAN_FRONTEND=noninteractive"


class StepError(RuntimeError):
    """A recipe command failed or its end state could not be verified."""

    def __init__(self, message: str, result: Optional[SSHCommandResult] = None) -> None:
        super().__init__(message)
        self.result = result


class FatalStepError(StepError):
    """A failure that retrying the checkpoint cannot fix."""


class PreconditionError(FatalStepError):
    """Local state a step depends on is missing (key pair, server IP, key id)."""


class TailscaleAuthTimeoutError(FatalStepError):
    """The user did not complete Tailscale login in time."""


def exec_or_fail(session: SSHSession, command: str, error_message: str) -> str:
    """Run a required command, raising StepError with its output on failure."""
    result = session.exec(command)
    if not result.ok:
        raise StepError(f"{error_message}: {result.output}", result)
    return result.stdout


def report(reporter: Reporter, message: str) -> None:
    logger.debug(message)
    if reporter:
        reporter(message)
