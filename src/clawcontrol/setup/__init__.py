"""Idempotent provisioning recipes run over an SSH session.

Every recipe probes for its end state first and returns early when it is
already satisfied, so a checkpoint can be re-run after a crash or a full
restart without duplicating work.
"""

from .common import (
    FatalStepError,
    PreconditionError,
    StepError,
    TailscaleAuthTimeoutError,
    exec_or_fail,
)
from .openclaw import (
    build_openclaw_config,
    configure_openclaw,
    get_openclaw_logs,
    install_openclaw,
    install_openclaw_daemon,
    is_openclaw_running,
    restart_openclaw_daemon,
    start_openclaw_daemon,
    write_openclaw_env_file,
)
from .system import (
    install_chrome,
    install_node,
    install_nvm,
    install_pnpm,
    setup_swap,
    update_system,
)
from .tailscale import (
    configure_tailscale_serve,
    get_tailscale_auth_url,
    install_tailscale,
    wait_for_tailscale_auth,
)

__all__ = [
    "FatalStepError",
    "PreconditionError",
    "StepError",
    "TailscaleAuthTimeoutError",
    "build_openclaw_config",
    "configure_openclaw",
    "configure_tailscale_serve",
    "exec_or_fail",
    "get_openclaw_logs",
    "get_tailscale_auth_url",
    "install_chrome",
    "install_node",
    "install_nvm",
    "install_openclaw",
    "install_openclaw_daemon",
    "install_pnpm",
    "install_tailscale",
    "is_openclaw_running",
    "restart_openclaw_daemon",
    "setup_swap",
    "start_openclaw_daemon",
    "update_system",
    "wait_for_tailscale_auth",
    "write_openclaw_env_file",
]
