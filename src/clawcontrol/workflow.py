"""High-level workflow operations behind the command-line interface."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

from .config import AppConfig
from .interaction import CLIInteractionHandler, InteractionHandler
from .models import (
    PROVIDER_LABELS,
    CheckpointName,
    Deployment,
    DeploymentConfig,
    DeploymentState,
    DeploymentStatus,
    DigitalOceanConfig,
    HetznerConfig,
    OpenClawAgentConfig,
    ProviderName,
)
from .orchestrator import CheckpointLedger, DeploymentOrchestrator, get_last_checkpoint
from .providers import CloudProvider, CloudProviderError, create_provider_client
from .setup import get_openclaw_logs, is_openclaw_running, restart_openclaw_daemon
from .ssh import DeploymentHealth, HealthProbe, SSHCredentials, SSHSession
from .store import DeploymentStore, StorageError, TemplateStore
from .utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class CreateDeploymentRequest:
    """Everything needed to register a new deployment."""

    name: str
    provider: ProviderName
    api_key: str
    ai_provider: str = ""
    ai_api_key: str = ""
    model: str = ""
    telegram_bot_token: str = ""
    telegram_allow_from: Optional[str] = None
    template_id: Optional[str] = None
    # provider sizing; None keeps the provider defaults
    size: Optional[str] = None
    region: Optional[str] = None
    image: Optional[str] = None
    skip_validation: bool = False


@dataclass
class DeploymentStatusReport:
    name: str
    provider: ProviderName
    status: DeploymentStatus
    server_ip: Optional[str] = None
    tailscale_ip: Optional[str] = None
    last_checkpoint: Optional[CheckpointName] = None
    completed_checkpoints: int = 0
    last_error: Optional[str] = None
    deployed_at: Optional[str] = None
    health: Optional[DeploymentHealth] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "provider": self.provider.value,
            "status": self.status.value,
            "server_ip": self.server_ip,
            "tailscale_ip": self.tailscale_ip,
            "last_checkpoint": self.last_checkpoint.value if self.last_checkpoint else None,
            "completed_checkpoints": self.completed_checkpoints,
            "last_error": self.last_error,
            "deployed_at": self.deployed_at,
            "health": self.health.to_payload() if self.health else None,
        }


@dataclass
class DestroyResult:
    name: str
    deleted: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class DeploymentWorkflow:
    """Coordinates storage, provider clients and the orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        *,
        store: Optional[DeploymentStore] = None,
        template_store: Optional[TemplateStore] = None,
        provider_factory: Callable[..., CloudProvider] = create_provider_client,
        interaction_handler: Optional[InteractionHandler] = None,
        session_factory: Optional[Callable[[SSHCredentials], SSHSession]] = None,
        orchestrator_factory: Callable[..., DeploymentOrchestrator] = DeploymentOrchestrator,
    ) -> None:
        self.config = config
        home = config.storage.home_path
        self.store = store or DeploymentStore(home)
        self.templates = template_store or TemplateStore(home)
        self.provider_factory = provider_factory
        self._session_factory = session_factory or (
            lambda credentials: SSHSession(credentials, command_timeout=config.ssh.command_timeout)
        )
        self.health_probe = HealthProbe(session_factory=self._session_factory)
        self.orchestrator_factory = orchestrator_factory
        self.interaction_handler = interaction_handler or CLIInteractionHandler(
            terminal_command=self.terminal_command
        )

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def build_config(self, request: CreateDeploymentRequest) -> DeploymentConfig:
        if request.template_id:
            template = self.templates.get(request.template_id)
            return template.to_config(
                request.name,
                request.api_key,
                ai_api_key=request.ai_api_key,
                telegram_bot_token=request.telegram_bot_token,
                telegram_allow_from=request.telegram_allow_from,
            )

        hetzner = None
        digitalocean = None
        if request.provider == ProviderName.HETZNER:
            hetzner = HetznerConfig(api_key=request.api_key)
            hetzner = replace(
                hetzner,
                server_type=request.size or hetzner.server_type,
                location=request.region or hetzner.location,
                image=request.image or hetzner.image,
            )
        else:
            digitalocean = DigitalOceanConfig(api_key=request.api_key)
            digitalocean = replace(
                digitalocean,
                size=request.size or digitalocean.size,
                region=request.region or digitalocean.region,
                image=request.image or digitalocean.image,
            )

        agent = None
        if request.ai_provider:
            agent = OpenClawAgentConfig(
                ai_provider=request.ai_provider,
                ai_api_key=request.ai_api_key,
                model=request.model,
                telegram_bot_token=request.telegram_bot_token,
                telegram_allow_from=request.telegram_allow_from,
            )
        config = DeploymentConfig(
            name=request.name,
            provider=ProviderName(request.provider),
            hetzner=hetzner,
            digitalocean=digitalocean,
            openclaw_agent=agent,
        )
        config.validate()
        return config

    def create_deployment(self, request: CreateDeploymentRequest) -> Deployment:
        config = self.build_config(request)
        if self.store.exists(config.name):
            raise StorageError(f"Deployment '{config.name}' already exists")

        if not request.skip_validation:
            client = self.provider_factory(config.provider, config.api_key)
            logger.info("Validating %s API key", PROVIDER_LABELS[config.provider])
            if not client.validate_api_key():
                raise ValueError(f"Invalid {PROVIDER_LABELS[config.provider]} API key")

        return self.store.create(config)

    def fork(self, source: str, new_name: str) -> Deployment:
        return self.store.fork(source, new_name)

    # ------------------------------------------------------------------
    # Deployment
    # ------------------------------------------------------------------

    def deploy(self, name: str, interaction_handler: Optional[InteractionHandler] = None) -> DeploymentState:
        orchestrator = self.orchestrator_factory(
            name,
            interaction_handler or self.interaction_handler,
            store=self.store,
            app_config=self.config,
            session_factory=self._session_factory,
        )
        orchestrator.deploy()
        return self.store.load_state(name)

    def reset(self, name: str, checkpoint: CheckpointName) -> DeploymentState:
        self.store.load_config(name)
        return CheckpointLedger(self.store, name).reset_to(checkpoint)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def status(self, name: str, *, probe: bool = True) -> DeploymentStatusReport:
        deployment = self.store.get(name)
        state = deployment.state
        report = DeploymentStatusReport(
            name=name,
            provider=deployment.config.provider,
            status=state.status,
            server_ip=state.server_ip,
            tailscale_ip=state.tailscale_ip,
            last_checkpoint=get_last_checkpoint(state),
            completed_checkpoints=len(state.checkpoints),
            last_error=state.last_error,
            deployed_at=state.deployed_at,
        )
        # only finished deployments are expected to answer
        if probe and state.status == DeploymentStatus.DEPLOYED and state.server_ip:
            report.health = self.health_probe.check(self._credentials(name, state.server_ip))
        return report

    def list_status(self, *, probe: bool = False) -> List[DeploymentStatusReport]:
        return [self.status(name, probe=probe) for name in self.store.list_names()]

    def logs(self, name: str, lines: int = 100) -> str:
        server_ip = self._require_server_ip(name)
        session = self._session_factory(self._credentials(name, server_ip))
        with session:
            return get_openclaw_logs(session, lines)

    def restart(self, name: str) -> bool:
        """Restart the gateway service; returns whether it is active afterwards."""
        server_ip = self._require_server_ip(name)
        session = self._session_factory(self._credentials(name, server_ip))
        with session:
            restart_openclaw_daemon(session)
            return is_openclaw_running(session)

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    def destroy(self, name: str, *, force: bool = False) -> DestroyResult:
        """Delete the server and SSH key at the provider, then the local files.

        Resources already gone are skipped. Other provider errors abort the
        destroy unless ``force`` is set, leaving local files in place.
        """
        deployment = self.store.get(name)
        state = deployment.state
        result = DestroyResult(name=name)
        provider = self.provider_factory(deployment.config.provider, deployment.config.api_key)

        resources = (
            ("server", state.server_id, provider.delete_server),
            ("ssh key", state.ssh_key_id, provider.delete_ssh_key),
        )
        for label, resource_id, delete in resources:
            if not resource_id:
                continue
            try:
                delete(resource_id)
                result.deleted.append(label)
                logger.info("Deleted %s %s for %s", label, resource_id, name)
            except CloudProviderError as exc:
                if exc.is_not_found:
                    result.skipped.append(label)
                    logger.info("%s %s already deleted", label.capitalize(), resource_id)
                elif force:
                    result.skipped.append(label)
                    logger.warning("Ignoring failure deleting %s %s: %s", label, resource_id, exc)
                else:
                    raise

        self.store.delete(name)
        return result

    # ------------------------------------------------------------------
    # SSH access
    # ------------------------------------------------------------------

    def _credentials(self, name: str, host: str) -> SSHCredentials:
        ssh = self.config.ssh
        return SSHCredentials(
            host=host,
            key_path=str(self.store.private_key_path(name)),
            username=ssh.username,
            port=ssh.port,
            timeout=ssh.connect_timeout,
        )

    def _require_server_ip(self, name: str) -> str:
        state = self.store.load_state(name)
        if not state.server_ip:
            raise StorageError(f"Deployment '{name}' has no server yet; run deploy first")
        return state.server_ip

    def ssh_command(self, name: str, remote_command: Optional[str] = None) -> List[str]:
        """argv for an interactive ``ssh`` session into the deployment's server."""
        return self._credentials(name, self._require_server_ip(name)).to_command_args(remote_command)

    def terminal_command(self, name: str, server_ip: str, command: str) -> List[str]:
        return self._credentials(name, server_ip).to_command_args(command)
