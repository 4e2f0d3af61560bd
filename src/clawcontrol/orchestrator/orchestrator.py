"""Deployment orchestrator: drives a deployment through its checkpoints."""

from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

from ..config import AppConfig
from ..interaction import CallbackInteractionHandler, InteractionHandler
from ..models import (
    CHECKPOINT_ORDER,
    CheckpointName,
    DeploymentStatus,
    checkpoint_index,
    utc_now,
)
from ..providers import CloudProvider, create_provider, server_spec_from_config
from ..providers.base import CloudProviderError
from ..setup import (
    FatalStepError,
    PreconditionError,
    StepError,
    configure_openclaw,
    configure_tailscale_serve,
    get_tailscale_auth_url,
    install_chrome,
    install_node,
    install_nvm,
    install_openclaw,
    install_openclaw_daemon,
    install_pnpm,
    install_tailscale,
    is_openclaw_running,
    setup_swap,
    start_openclaw_daemon,
    update_system,
    wait_for_tailscale_auth,
    write_openclaw_env_file,
)
from ..ssh import SSHCredentials, SSHKeyPair, SSHSession, generate_key_pair, wait_for_available
from ..store import DeploymentStore
from .ledger import CheckpointLedger, get_checkpoint_retry_count, get_next_checkpoint
from .models import DeploymentError, DeploymentProgress, describe_checkpoint

logger = logging.getLogger(__name__)

ONBOARD_COMMAND = "source ~/.nvm/nvm.sh && openclaw onboard --install-daemon"

TAILSCALE_AUTH_PROMPT = (
    "Tailscale needs authentication.\n\n"
    "Tailscale is a secure networking tool that creates a private VPN between your devices "
    "and your OpenClaw server, so the gateway is only accessible to you.\n\n"
    "What is Tailscale? https://tailscale.com/docs/concepts/what-is-tailscale\n"
    "OpenClaw Tailscale docs: https://docs.openclaw.ai/gateway/tailscale\n\n"
    "Would you like to open your browser to authenticate?\n\n"
    "URL: {url}"
)

ONBOARD_PROMPT = (
    "Your OpenClaw config has been applied and the daemon is running.\n\n"
    "Would you like to also run 'openclaw onboard' interactively for additional setup?\n"
    "(This is optional, your agent is already configured.)"
)

RESTART_PROMPT = (
    '"{description}" failed after {attempts} attempts.\n\n'
    "Error: {error}\n\n"
    "This could be caused by a temporary network issue, a misconfigured API key, "
    "or a problem with the remote server. You can retry the deployment from the beginning "
    "to try again.\n\n"
    "Would you like to retry from the beginning?"
)

MISSING_STATE_PROMPT = (
    '"{description}" cannot run: {error}.\n\n'
    "Files this step needs are missing from the local deployment directory, so resuming "
    "will keep failing. Retrying from the beginning removes the existing server and SSH key "
    "at the provider and provisions a fresh one.\n\n"
    "Would you like to retry from the beginning?"
)

SSHWaiter = Callable[[SSHCredentials, float, float], None]


class DeploymentOrchestrator:
    """
    Runs the fixed checkpoint sequence for one deployment.

    Resuming starts after the highest completed checkpoint. Each checkpoint
    is attempted up to ``max_retries`` times with a flat delay between
    attempts; after that the interaction handler is asked whether to start
    over from the first checkpoint.

    ``steps`` maps every checkpoint to the callable that performs it.
    """

    def __init__(
        self,
        deployment_name: str,
        interaction: InteractionHandler,
        *,
        store: Optional[DeploymentStore] = None,
        provider: Optional[CloudProvider] = None,
        app_config: Optional[AppConfig] = None,
        session_factory: Optional[Callable[[SSHCredentials], SSHSession]] = None,
        ssh_waiter: Optional[SSHWaiter] = None,
        key_generator: Callable[[str], SSHKeyPair] = generate_key_pair,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.app_config = app_config or AppConfig()
        self.settings = self.app_config.orchestrator
        self.store = store or DeploymentStore(self.app_config.storage.home_path)
        self.deployment = self.store.get(deployment_name)
        self.name = deployment_name
        self.interaction = interaction
        self.ledger = CheckpointLedger(self.store, deployment_name)
        self.provider = provider or create_provider(self.deployment.config)
        self.logger = logger or logging.getLogger(__name__)

        self._session_factory = session_factory or self._default_session
        self._ssh_waiter = ssh_waiter or self._wait_for_ssh
        self._key_generator = key_generator
        self._sleep = sleep
        self._clock = clock
        self._session: Optional[SSHSession] = None

        self.steps: Dict[CheckpointName, Callable[[], None]] = {
            CheckpointName.SERVER_CREATED: self._create_server,
            CheckpointName.SSH_KEY_UPLOADED: self._upload_ssh_key,
            CheckpointName.SSH_CONNECTED: self._connect_ssh,
            CheckpointName.SWAP_CONFIGURED: self._remote(CheckpointName.SWAP_CONFIGURED, setup_swap),
            CheckpointName.SYSTEM_UPDATED: self._remote(CheckpointName.SYSTEM_UPDATED, update_system),
            CheckpointName.NVM_INSTALLED: self._remote(CheckpointName.NVM_INSTALLED, install_nvm),
            CheckpointName.NODE_INSTALLED: self._remote(CheckpointName.NODE_INSTALLED, install_node),
            CheckpointName.PNPM_INSTALLED: self._remote(CheckpointName.PNPM_INSTALLED, install_pnpm),
            CheckpointName.CHROME_INSTALLED: self._remote(CheckpointName.CHROME_INSTALLED, install_chrome),
            CheckpointName.OPENCLAW_INSTALLED: self._remote(
                CheckpointName.OPENCLAW_INSTALLED, install_openclaw
            ),
            CheckpointName.OPENCLAW_CONFIGURED: self._configure_openclaw,
            CheckpointName.TAILSCALE_INSTALLED: self._remote(
                CheckpointName.TAILSCALE_INSTALLED, install_tailscale
            ),
            CheckpointName.TAILSCALE_AUTHENTICATED: self._authenticate_tailscale,
            CheckpointName.TAILSCALE_CONFIGURED: self._configure_tailscale,
            CheckpointName.DAEMON_STARTED: self._start_daemon,
            CheckpointName.COMPLETED: lambda: None,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def deploy(self) -> None:
        """Run from the checkpoint after the last completed one.

        Raises:
            DeploymentError: when a checkpoint fails terminally
        """
        start = get_next_checkpoint(self.ledger.read())
        self.logger.info("Deploying %s from checkpoint %s", self.name, start.value)
        self.ledger.update(status=DeploymentStatus.PROVISIONING)
        try:
            self._execute_from(start)
        finally:
            self._disconnect()

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------

    def _execute_from(self, start: CheckpointName) -> None:
        index = checkpoint_index(start)
        while index < len(CHECKPOINT_ORDER):
            if self._run_checkpoint(CHECKPOINT_ORDER[index]):
                index += 1
            else:
                index = 0

        self.ledger.update(status=DeploymentStatus.DEPLOYED, deployed_at=utc_now())
        self.logger.info("Deployment %s complete", self.name)

    def _run_checkpoint(self, checkpoint: CheckpointName) -> bool:
        """Execute one checkpoint under the retry policy.

        Returns True when the checkpoint completed and False when the user
        chose to restart the whole deployment.
        """
        description = describe_checkpoint(checkpoint)
        max_retries = self.settings.max_retries
        retry_count = get_checkpoint_retry_count(self.ledger.read(), checkpoint)

        self._report(checkpoint, description)

        while retry_count < max_retries:
            try:
                self.steps[checkpoint]()
            except PreconditionError as exc:
                # local files are gone; another attempt cannot bring them back
                retry_count += 1
                error = str(exc)
                self.ledger.record_failure(error)
                self.logger.error("%s cannot run: %s", description, error)
                prompt = MISSING_STATE_PROMPT.format(description=description, error=error)
                return self._offer_restart(checkpoint, prompt, description, error, retry_count, exc)
            except FatalStepError as exc:
                retry_count += 1
                self.ledger.record_failure(str(exc))
                self.logger.error("%s failed and cannot be retried: %s", description, exc)
                raise DeploymentError(
                    f'Deployment failed at "{description}": {exc}',
                    checkpoint,
                    retry_count,
                    recoverable=False,
                ) from exc
            except Exception as exc:
                retry_count += 1
                error = str(exc)
                self.ledger.record_failure(error)
                self.logger.warning(
                    "%s failed (attempt %d/%d): %s", description, retry_count, max_retries, error
                )
                if retry_count < max_retries:
                    self._report(
                        checkpoint,
                        f"{description} failed (attempt {retry_count}/{max_retries}), retrying...",
                    )
                    self._sleep(self.settings.retry_delay)
                    continue

                prompt = RESTART_PROMPT.format(description=description, attempts=max_retries, error=error)
                return self._offer_restart(checkpoint, prompt, description, error, retry_count, exc)
            else:
                self.ledger.mark_complete(checkpoint, retry_count)
                return True

        # a stored retry count already at the limit leaves nothing to attempt
        return True

    def _offer_restart(
        self,
        checkpoint: CheckpointName,
        prompt: str,
        description: str,
        error: str,
        retry_count: int,
        cause: Exception,
    ) -> bool:
        """Ask whether to start over from the first checkpoint.

        Returns False after clearing the ledger; raises a non-recoverable
        DeploymentError when declined.
        """
        if self.interaction.confirm(prompt):
            self.logger.info("Restarting deployment %s from the beginning", self.name)
            self._disconnect()
            self.ledger.reset_to(CHECKPOINT_ORDER[0])
            self.ledger.update(status=DeploymentStatus.PROVISIONING)
            return False
        raise DeploymentError(
            f'Deployment failed at "{description}": {error}',
            checkpoint,
            retry_count,
            recoverable=False,
        ) from cause

    # ------------------------------------------------------------------
    # Progress and sessions
    # ------------------------------------------------------------------

    def _report(self, checkpoint: CheckpointName, message: str) -> None:
        progress = DeploymentProgress.for_checkpoint(
            checkpoint, self.ledger.read().completed_names(), message
        )
        self.logger.info("[%s] %s", checkpoint.value, message)
        try:
            self.interaction.on_progress(progress)
        except Exception:  # progress is fire-and-forget
            self.logger.warning("Progress callback raised", exc_info=True)

    def _reporter(self, checkpoint: CheckpointName) -> Callable[[str], None]:
        return lambda message: self._report(checkpoint, message)

    def _credentials(self, host: str) -> SSHCredentials:
        ssh = self.app_config.ssh
        return SSHCredentials(
            host=host,
            key_path=str(self.store.private_key_path(self.name)),
            username=ssh.username,
            port=ssh.port,
            timeout=ssh.connect_timeout,
        )

    def _default_session(self, credentials: SSHCredentials) -> SSHSession:
        return SSHSession(credentials, command_timeout=self.app_config.ssh.command_timeout)

    def _wait_for_ssh(self, credentials: SSHCredentials, timeout: float, poll_interval: float) -> None:
        wait_for_available(
            credentials,
            timeout,
            poll_interval,
            session_factory=self._session_factory,
            sleep=self._sleep,
            clock=self._clock,
        )

    def _require_server_ip(self) -> str:
        server_ip = self.ledger.read().server_ip
        if not server_ip:
            raise PreconditionError("Server IP not found in state")
        return server_ip

    def _require_key_pair(self) -> SSHKeyPair:
        key_pair = self.store.load_key_pair(self.name)
        if key_pair is None:
            raise PreconditionError("SSH key pair not found")
        return key_pair

    def _ensure_connected(self) -> SSHSession:
        if self._session is not None and self._session.is_connected():
            return self._session
        server_ip = self._require_server_ip()
        self._require_key_pair()
        session = self._session_factory(self._credentials(server_ip))
        session.connect()
        self._session = session
        return session

    def _disconnect(self) -> None:
        if self._session is not None:
            self._session.disconnect()
            self._session = None

    def _remote(self, checkpoint: CheckpointName, recipe: Callable[..., None]) -> Callable[[], None]:
        def run() -> None:
            recipe(self._ensure_connected(), self._reporter(checkpoint))

        return run

    # ------------------------------------------------------------------
    # Checkpoint implementations
    # ------------------------------------------------------------------

    def _delete_if_exists(self, delete: Callable[[str], None], resource_id: str) -> bool:
        try:
            delete(resource_id)
        except CloudProviderError as exc:
            if exc.is_not_found:
                return False
            raise
        return True

    def _create_server(self) -> None:
        config = self.deployment.config
        report = self._reporter(CheckpointName.SERVER_CREATED)
        label = self.provider.label or config.provider.value
        state = self.ledger.read()
        key_name = f"clawcontrol-{config.name}"

        key_pair = self.store.load_key_pair(self.name)
        if key_pair is None and (state.server_id or state.ssh_key_id):
            # remote resources without local keys are unreachable; start clean
            report("Local SSH keys missing, cleaning up remote resources...")
            if state.server_id and self._delete_if_exists(self.provider.delete_server, state.server_id):
                report("Deleted existing server...")
            if state.ssh_key_id and self._delete_if_exists(self.provider.delete_ssh_key, state.ssh_key_id):
                report("Deleted existing SSH key...")
            self.ledger.update(server_id=None, server_ip=None, ssh_key_id=None, ssh_key_fingerprint=None)

        if key_pair is None:
            report("Generating SSH key pair...")
            key_pair = self._key_generator(key_name)
            self.store.save_key_pair(self.name, key_pair)

        stale_key = next((k for k in self.provider.list_ssh_keys() if k.name == key_name), None)
        if stale_key:
            report(f"Removing stale SSH key from {label}...")
            self.provider.delete_ssh_key(stale_key.id)

        report(f"Uploading SSH key to {label}...")
        ssh_key = self.provider.create_ssh_key(key_name, key_pair.public_key)
        self.ledger.update(ssh_key_id=ssh_key.id, ssh_key_fingerprint=ssh_key.fingerprint)

        existing = next((s for s in self.provider.list_servers() if s.name == config.name), None)
        if existing:
            report("Removing existing server with same name...")
            self.provider.delete_server(existing.id)
            self._sleep(self.settings.server_delete_delay)

        report("Creating VPS server...")
        server = self.provider.create_server(server_spec_from_config(config, [ssh_key.id]))
        self.ledger.update(server_id=server.id)

        report("Waiting for server to start...")
        running = self.provider.wait_for_server_running(
            server.id, self.settings.server_wait_timeout, self.settings.server_poll_interval
        )
        if not running.ipv4:
            raise StepError(f"Server {running.id} has no public IPv4 address")
        self.ledger.update(server_ip=running.ipv4)

    def _upload_ssh_key(self) -> None:
        # the key is uploaded while creating the server; this checkpoint only
        # confirms it so older state files resume correctly
        if not self.ledger.read().ssh_key_id:
            raise PreconditionError("SSH key not found in state")

    def _connect_ssh(self) -> None:
        server_ip = self._require_server_ip()
        self._require_key_pair()
        self._disconnect()

        self._report(CheckpointName.SSH_CONNECTED, "Waiting for SSH to become available...")
        credentials = self._credentials(server_ip)
        self._ssh_waiter(credentials, self.settings.ssh_wait_timeout, self.settings.ssh_poll_interval)

        session = self._session_factory(credentials)
        session.connect()
        self._session = session

    def _configure_openclaw(self) -> None:
        session = self._ensure_connected()
        config = self.deployment.config
        report = self._reporter(CheckpointName.OPENCLAW_CONFIGURED)
        configure_openclaw(session, config.openclaw_config, config.openclaw_agent, report)
        if config.openclaw_agent:
            report("Writing AI provider environment...")
            write_openclaw_env_file(session, config.openclaw_agent, report)

    def _authenticate_tailscale(self) -> None:
        session = self._ensure_connected()
        checkpoint = CheckpointName.TAILSCALE_AUTHENTICATED
        auth_url = get_tailscale_auth_url(session)
        if not auth_url:
            self._report(checkpoint, "Tailscale already authenticated")
            return

        if self.interaction.confirm(TAILSCALE_AUTH_PROMPT.format(url=auth_url)):
            self.interaction.open_url(auth_url)
        else:
            self._report(checkpoint, f"Open {auth_url} to authenticate this server")

        self._report(checkpoint, "Waiting for Tailscale authentication...")
        wait_for_tailscale_auth(
            session,
            self.settings.tailscale_auth_timeout,
            self.settings.tailscale_poll_interval,
            sleep=self._sleep,
            clock=self._clock,
        )

    def _configure_tailscale(self) -> None:
        session = self._ensure_connected()
        port = self.deployment.config.openclaw_config.gateway_port
        tailscale_ip = configure_tailscale_serve(session, port)
        self.ledger.update(tailscale_ip=tailscale_ip)

    def _start_daemon(self) -> None:
        session = self._ensure_connected()
        server_ip = self._require_server_ip()
        checkpoint = CheckpointName.DAEMON_STARTED
        report = self._reporter(checkpoint)
        port = self.deployment.config.openclaw_config.gateway_port

        install_openclaw_daemon(session, port, report)
        start_openclaw_daemon(session, self.settings.daemon_settle_delay, sleep=self._sleep, reporter=report)
        report("OpenClaw daemon is running.")

        if not self.interaction.confirm(ONBOARD_PROMPT):
            return

        self._require_key_pair()
        report("Opening terminal for optional OpenClaw onboard...")
        self.interaction.spawn_terminal(self.name, server_ip, ONBOARD_COMMAND)

        report("Verifying OpenClaw daemon after onboard...")
        session = self._ensure_connected()
        self._sleep(self.settings.daemon_settle_delay)
        if not is_openclaw_running(session):
            # best effort; onboarding may have installed its own unit
            session.exec("systemctl restart openclaw || true")
            self._sleep(2)


def start_deployment(
    deployment_name: str,
    on_progress: Optional[Callable[[DeploymentProgress], None]] = None,
    on_confirm: Optional[Callable[[str], bool]] = None,
    on_open_url: Optional[Callable[[str], None]] = None,
    on_spawn_terminal: Optional[Callable[[str, str, str], None]] = None,
    **kwargs,
) -> None:
    """Deploy ``deployment_name`` using plain callables for interaction.

    Keyword arguments are passed to :class:`DeploymentOrchestrator`.
    """
    handler = CallbackInteractionHandler(
        on_progress=on_progress,
        on_confirm=on_confirm,
        on_open_url=on_open_url,
        on_spawn_terminal=on_spawn_terminal,
    )
    DeploymentOrchestrator(deployment_name, handler, **kwargs).deploy()
