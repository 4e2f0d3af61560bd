"""Tailscale install, login and serve recipes."""

from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

from ..ssh import SSHSession
from .common import Reporter, StepError, TailscaleAuthTimeoutError, exec_or_fail, report

logger = logging.getLogger(__name__)

_URL_GREP = "grep -oP 'https://[^\\s]+' | head -1"


def _is_authenticated(session: SSHSession) -> bool:
    result = session.exec("tailscale status --json")
    if not result.ok:
        return False
    try:
        status = json.loads(result.stdout)
    except ValueError:
        return False
    return status.get("BackendState") == "Running" and bool((status.get("Self") or {}).get("Online"))


def install_tailscale(session: SSHSession, reporter: Reporter = None) -> None:
    check = session.exec("which tailscale")
    if check.ok and "tailscale" in check.stdout:
        report(reporter, "Tailscale already installed")
        return

    report(reporter, "Installing Tailscale...")
    exec_or_fail(
        session, "curl -fsSL https://tailscale.com/install.sh | sh", "Failed to install Tailscale"
    )
    session.exec("systemctl enable tailscaled")
    session.exec("systemctl start tailscaled")

    verify = session.exec("tailscale --version")
    if not verify.ok:
        raise StepError("Tailscale installation verification failed", verify)


def get_tailscale_auth_url(session: SSHSession) -> Optional[str]:
    """Return the login URL, or None when the node is already authenticated."""
    if _is_authenticated(session):
        return None

    up = session.exec(f"timeout 10 tailscale up 2>&1 | {_URL_GREP}")
    url = up.stdout.strip()
    if url.startswith("https://"):
        return url

    login = session.exec(f"tailscale login 2>&1 | {_URL_GREP}")
    url = login.stdout.strip()
    if url.startswith("https://"):
        return url
    return None


def wait_for_tailscale_auth(
    session: SSHSession,
    timeout: float = 300.0,
    poll_interval: float = 5.0,
    *,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> None:
    start = clock()
    while clock() - start < timeout:
        if _is_authenticated(session):
            return
        sleep(poll_interval)
    raise TailscaleAuthTimeoutError("Tailscale authentication timed out")


def configure_tailscale_serve(session: SSHSession, port: int = 18789) -> str:
    """Expose the gateway port on the tailnet and return the node's Tailscale IPv4."""
    ip_result = session.exec("tailscale ip -4")
    tailscale_ip = ip_result.stdout.strip()
    if not ip_result.ok or not tailscale_ip:
        raise StepError("Failed to get Tailscale IP", ip_result)

    exec_or_fail(session, f"tailscale serve --bg {port}", "Failed to configure Tailscale serve")
    return tailscale_ip
