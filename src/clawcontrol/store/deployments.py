"""Per-deployment directories holding config, state and the SSH key pair."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Optional

from ..models import (
    Deployment,
    DeploymentConfig,
    DeploymentState,
    utc_now,
    validate_deployment_name,
)
from ..paths import (
    DEPLOYMENT_CONFIG_FILENAME,
    DEPLOYMENT_STATE_FILENAME,
    PRIVATE_KEY_FILENAME,
    PUBLIC_KEY_FILENAME,
    get_deployments_dir,
)
from ..ssh import SSHKeyPair
from .fs import read_json, write_json_atomic, write_text_atomic

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """A deployment's files are missing, unreadable or conflict with a request."""


class DeploymentStore:
    """Reads and writes ``<home>/deployments/<name>/``.

    Every write replaces the file atomically so a crash leaves either the
    old or the new content on disk.
    """

    def __init__(self, home: Path) -> None:
        self.home = Path(home)
        self.root = get_deployments_dir(self.home)

    # Paths

    def deployment_dir(self, name: str) -> Path:
        return self.root / name

    def config_path(self, name: str) -> Path:
        return self.deployment_dir(name) / DEPLOYMENT_CONFIG_FILENAME

    def state_path(self, name: str) -> Path:
        return self.deployment_dir(name) / DEPLOYMENT_STATE_FILENAME

    def private_key_path(self, name: str) -> Path:
        return self.deployment_dir(name) / PRIVATE_KEY_FILENAME

    def public_key_path(self, name: str) -> Path:
        return self.deployment_dir(name) / PUBLIC_KEY_FILENAME

    # Deployments

    def exists(self, name: str) -> bool:
        return self.config_path(name).is_file()

    def list_names(self) -> List[str]:
        return sorted(
            entry.name
            for entry in self.root.iterdir()
            if entry.is_dir() and (entry / DEPLOYMENT_CONFIG_FILENAME).is_file()
        )

    def list(self) -> List[Deployment]:
        deployments = []
        for name in self.list_names():
            try:
                deployments.append(self.get(name))
            except StorageError as exc:
                logger.warning("Skipping deployment %s: %s", name, exc)
        return deployments

    def create(self, config: DeploymentConfig) -> Deployment:
        config.validate()
        if self.exists(config.name):
            raise StorageError(f"Deployment '{config.name}' already exists")
        self.deployment_dir(config.name).mkdir(parents=True, exist_ok=True)
        write_json_atomic(self.config_path(config.name), config.to_dict())
        state = DeploymentState()
        self.save_state(config.name, state)
        logger.info("Created deployment %s (%s)", config.name, config.provider.value)
        return Deployment(config=config, state=state, ssh_key_path=self.private_key_path(config.name))

    def get(self, name: str) -> Deployment:
        return Deployment(
            config=self.load_config(name),
            state=self.load_state(name),
            ssh_key_path=self.private_key_path(name),
        )

    def fork(self, source: str, new_name: str) -> Deployment:
        """Copy ``source``'s configuration under ``new_name`` with a fresh state."""
        validate_deployment_name(new_name)
        config = self.load_config(source)
        return self.create(config.fork(new_name))

    def delete(self, name: str) -> None:
        path = self.deployment_dir(name)
        if not path.exists():
            raise StorageError(f"Deployment '{name}' not found")
        shutil.rmtree(path)
        logger.info("Deleted local files for deployment %s", name)

    # Config and state

    def load_config(self, name: str) -> DeploymentConfig:
        path = self.config_path(name)
        if not path.is_file():
            raise StorageError(f"Deployment '{name}' not found")
        try:
            return DeploymentConfig.from_dict(read_json(path))
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageError(f"Invalid configuration for deployment '{name}': {exc}") from exc

    def load_state(self, name: str) -> DeploymentState:
        path = self.state_path(name)
        if not path.is_file():
            if self.exists(name):
                return DeploymentState()
            raise StorageError(f"Deployment '{name}' not found")
        try:
            return DeploymentState.from_dict(read_json(path))
        except (ValueError, KeyError, TypeError) as exc:
            raise StorageError(f"Invalid state for deployment '{name}': {exc}") from exc

    def save_state(self, name: str, state: DeploymentState) -> None:
        state.updated_at = utc_now()
        write_json_atomic(self.state_path(name), state.to_dict())

    # SSH keys

    def save_key_pair(self, name: str, key_pair: SSHKeyPair) -> Path:
        private_path = self.private_key_path(name)
        write_text_atomic(private_path, key_pair.private_key, mode=0o600)
        write_text_atomic(self.public_key_path(name), key_pair.public_key.strip() + "\n", mode=0o644)
        return private_path

    def load_key_pair(self, name: str) -> Optional[SSHKeyPair]:
        private_path = self.private_key_path(name)
        public_path = self.public_key_path(name)
        if not private_path.is_file() or not public_path.is_file():
            return None
        return SSHKeyPair(
            private_key=private_path.read_text(encoding="utf-8"),
            public_key=public_path.read_text(encoding="utf-8").strip(),
        )
