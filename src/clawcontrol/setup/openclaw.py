"""OpenClaw gateway recipes: install, configuration, secrets and the systemd daemon."""

from __future__ import annotations

import json
import time
from typing import Any, Callable, Dict, Optional

from ..models import OpenClawAgentConfig, OpenClawConfig, utc_now
from ..ssh import SSHSession
from .common import NVM_PREFIX, Reporter, StepError, exec_or_fail, report

OPENCLAW_INSTALL_URL = "https://openclaw.ai/install.sh"
OPENCLAW_VERSION_TAG = "2026.2.3-1"
SERVICE_NAME = "openclaw"
SERVICE_PATH = f"/etc/systemd/system/{SERVICE_NAME}.service"
CONFIG_PATH = "~/.openclaw/openclaw.json"
ENV_PATH = "~/.openclaw/.env"

PROVIDER_ENV_VARS = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
    "openrouter": "OPENROUTER_API_KEY",
    "google": "GOOGLE_API_KEY",
    "groq": "GROQ_API_KEY",
}


def install_openclaw(session: SSHSession, reporter: Reporter = None) -> None:
    check = session.exec(f"{NVM_PREFIX} openclaw --version")
    if check.ok and check.stdout.strip():
        report(reporter, "OpenClaw already installed")
        return

    report(reporter, "Installing OpenClaw...")
    exec_or_fail(
        session, f"{NVM_PREFIX} curl -fsSL {OPENCLAW_INSTALL_URL} | bash", "Failed to install OpenClaw"
    )

    verify = session.exec(f"{NVM_PREFIX} openclaw --version")
    if not verify.ok:
        raise StepError("OpenClaw installation verification failed", verify)


def build_openclaw_config(
    custom: Optional[OpenClawConfig] = None,
    agent: Optional[OpenClawAgentConfig] = None,
    now: Optional[str] = None,
) -> Dict[str, Any]:
    """Build the ``openclaw.json`` document for a headless gateway.

    ``custom`` overrides are merged shallowly over the browser and gateway
    defaults. The agent section adds model, auth profile and Telegram
    channel settings.
    """
    custom = custom or OpenClawConfig()
    now = now or utc_now()

    config: Dict[str, Any] = {
        "browser": {
            "enabled": True,
            "remoteCdpTimeoutMs": 15000,
            "remoteCdpHandshakeTimeoutMs": 3000,
            "defaultProfile": "openclaw",
            "color": "#FF4500",
            "headless": True,
            "noSandbox": True,
            "attachOnly": False,
            "executablePath": "/usr/bin/google-chrome",
            "profiles": {"openclaw": {"cdpPort": 18800, "color": "#FF4500"}},
            **custom.browser,
        },
        "gateway": {
            "port": 18789,
            "mode": "local",
            "bind": "loopback",
            "tailscale": {"mode": "serve", "resetOnExit": False},
            **custom.gateway,
        },
        "commands": {"native": "auto", "nativeSkills": "auto"},
        "messages": {"ackReactionScope": "group-mentions"},
    }

    if agent:
        model_key = agent.model_key
        config["agents"] = {
            "defaults": {
                "maxConcurrent": 4,
                "subagents": {"maxConcurrent": 8},
                "workspace": "/root/.openclaw/workspace",
                "models": {
                    f"{agent.ai_provider}/auto": {"alias": agent.ai_provider.capitalize()},
                    model_key: {},
                },
                "model": {"primary": model_key},
            }
        }
        config["auth"] = {
            "profiles": {
                f"{agent.ai_provider}:default": {"provider": agent.ai_provider, "mode": "api_key"}
            }
        }
        if agent.channel == "telegram" and agent.telegram_bot_token:
            telegram: Dict[str, Any] = {"enabled": True, "botToken": agent.telegram_bot_token}
            if agent.telegram_allow_from:
                telegram["allowFrom"] = [agent.telegram_allow_from]
            config["channels"] = {"telegram": telegram}
            config["plugins"] = {"entries": {"telegram": {"enabled": True}}}

    config["wizard"] = {
        "lastRunAt": now,
        "lastRunVersion": OPENCLAW_VERSION_TAG,
        "lastRunCommand": "onboard",
        "lastRunMode": "local",
    }
    config["meta"] = {"lastTouchedVersion": OPENCLAW_VERSION_TAG, "lastTouchedAt": now}
    return config


def configure_openclaw(
    session: SSHSession,
    custom: Optional[OpenClawConfig] = None,
    agent: Optional[OpenClawAgentConfig] = None,
    reporter: Reporter = None,
) -> None:
    session.exec("mkdir -p ~/.openclaw")

    report(reporter, "Writing OpenClaw configuration...")
    document = json.dumps(build_openclaw_config(custom, agent), indent=2)
    exec_or_fail(
        session,
        f"cat > {CONFIG_PATH} << 'EOFCONFIG'\n{document}\nEOFCONFIG",
        "Failed to write OpenClaw configuration",
    )

    verify = session.exec(f"cat {CONFIG_PATH}")
    if not verify.ok or "browser" not in verify.stdout:
        raise StepError("OpenClaw configuration verification failed", verify)


def provider_env_var(ai_provider: str) -> str:
    return PROVIDER_ENV_VARS.get(ai_provider.lower(), f"{ai_provider.upper()}_API_KEY")


def write_openclaw_env_file(
    session: SSHSession, agent: OpenClawAgentConfig, reporter: Reporter = None
) -> None:
    """Write the AI provider key to the daemon's EnvironmentFile (mode 600)."""
    env_var = provider_env_var(agent.ai_provider)
    content = f"# OpenClaw AI Provider Environment\n{env_var}={agent.ai_api_key}\n"

    session.exec("mkdir -p ~/.openclaw")
    report(reporter, "Writing AI provider credentials...")
    exec_or_fail(
        session,
        f"cat > {ENV_PATH} << 'EOFENV'\n{content}\nEOFENV",
        "Failed to write OpenClaw environment file",
    )
    session.exec(f"chmod 600 {ENV_PATH}")

    verify = session.exec(f"cat {ENV_PATH}")
    if not verify.ok or env_var not in verify.stdout:
        raise StepError("OpenClaw environment file verification failed")


def build_service_unit(openclaw_bin: str, node_bin: str, port: int = 18789) -> str:
    node_bin_dir = node_bin.rsplit("/", 1)[0]
    return (
        "[Unit]\n"
        "Description=OpenClaw Gateway\n"
        "After=network.target\n"
        "\n"
        "[Service]\n"
        "Type=simple\n"
        "User=root\n"
        "WorkingDirectory=/root\n"
        "EnvironmentFile=/root/.openclaw/.env\n"
        f"Environment=PATH={node_bin_dir}:/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin\n"
        "Environment=HOME=/root\n"
        "Environment=NVM_DIR=/root/.nvm\n"
        f"ExecStart={openclaw_bin} gateway --port {port}\n"
        "Restart=on-failure\n"
        "RestartSec=5\n"
        "StandardOutput=journal\n"
        "StandardError=journal\n"
        "\n"
        "[Install]\n"
        "WantedBy=multi-user.target\n"
    )


def install_openclaw_daemon(session: SSHSession, port: int = 18789, reporter: Reporter = None) -> None:
    which = session.exec(f"{NVM_PREFIX} which openclaw")
    openclaw_bin = which.stdout.strip()
    if not which.ok or not openclaw_bin:
        raise StepError("OpenClaw binary not found. Is it installed?", which)

    node = session.exec(f"{NVM_PREFIX} which node")
    node_bin = node.stdout.strip()
    if not node.ok or not node_bin:
        raise StepError("Node binary not found.", node)

    report(reporter, "Installing OpenClaw systemd service...")
    unit = build_service_unit(openclaw_bin, node_bin, port)
    exec_or_fail(
        session,
        f"cat > {SERVICE_PATH} << 'EOFSERVICE'\n{unit}\nEOFSERVICE",
        "Failed to write OpenClaw systemd service",
    )
    exec_or_fail(session, "systemctl daemon-reload", "Failed to reload systemd")
    exec_or_fail(session, f"systemctl enable {SERVICE_NAME}", "Failed to enable OpenClaw service")


def is_openclaw_running(session: SSHSession) -> bool:
    # exact match: "inactive" must not count as active
    result = session.exec(f"systemctl is-active {SERVICE_NAME}")
    return result.stdout.strip() == "active"


def get_openclaw_logs(session: SSHSession, lines: int = 100) -> str:
    result = session.exec(f"journalctl -u {SERVICE_NAME} -n {int(lines)} --no-pager")
    return result.stdout


def start_openclaw_daemon(
    session: SSHSession,
    settle_delay: float = 3.0,
    *,
    sleep: Callable[[float], None] = time.sleep,
    reporter: Reporter = None,
) -> None:
    report(reporter, "Starting OpenClaw daemon...")
    exec_or_fail(session, f"systemctl start {SERVICE_NAME}", "Failed to start OpenClaw daemon")
    sleep(settle_delay)

    if not is_openclaw_running(session):
        logs = session.exec(f"journalctl -u {SERVICE_NAME} -n 20 --no-pager || true")
        raise StepError(f"OpenClaw daemon not running after start. Logs: {logs.stdout or logs.stderr}")


def restart_openclaw_daemon(session: SSHSession) -> None:
    exec_or_fail(session, f"systemctl restart {SERVICE_NAME}", "Failed to restart OpenClaw daemon")
