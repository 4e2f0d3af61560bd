"""Data models for the orchestrator module."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from ..models import CHECKPOINT_ORDER, CheckpointName, checkpoint_index

CHECKPOINT_DESCRIPTIONS: Dict[CheckpointName, str] = {
    CheckpointName.SERVER_CREATED: "Creating VPS server",
    CheckpointName.SSH_KEY_UPLOADED: "Uploading SSH keys",
    CheckpointName.SSH_CONNECTED: "Connecting via SSH",
    CheckpointName.SWAP_CONFIGURED: "Setting up swap memory",
    CheckpointName.SYSTEM_UPDATED: "Updating system packages",
    CheckpointName.NVM_INSTALLED: "Installing NVM",
    CheckpointName.NODE_INSTALLED: "Installing Node.js",
    CheckpointName.PNPM_INSTALLED: "Installing pnpm",
    CheckpointName.CHROME_INSTALLED: "Installing Google Chrome",
    CheckpointName.OPENCLAW_INSTALLED: "Installing OpenClaw",
    CheckpointName.OPENCLAW_CONFIGURED: "Configuring OpenClaw",
    CheckpointName.TAILSCALE_INSTALLED: "Installing Tailscale",
    CheckpointName.TAILSCALE_AUTHENTICATED: "Authenticating Tailscale",
    CheckpointName.TAILSCALE_CONFIGURED: "Configuring Tailscale",
    CheckpointName.DAEMON_STARTED: "Starting OpenClaw daemon",
    CheckpointName.CHANNEL_PAIRED: "Pairing messaging channel",
    CheckpointName.COMPLETED: "Deployment complete",
}


def describe_checkpoint(checkpoint: CheckpointName) -> str:
    return CHECKPOINT_DESCRIPTIONS.get(checkpoint, checkpoint.value)


def progress_percent(checkpoint: CheckpointName) -> float:
    """Linear progress for ``checkpoint``: index / (N - 1) * 100."""
    index = checkpoint_index(checkpoint)
    if index is None:
        return 0.0
    return index / (len(CHECKPOINT_ORDER) - 1) * 100


@dataclass
class DeploymentProgress:
    """Snapshot passed to the progress callback."""

    current_step: CheckpointName
    completed_steps: List[CheckpointName] = field(default_factory=list)
    total_steps: int = len(CHECKPOINT_ORDER)
    progress: float = 0.0
    message: str = ""

    @classmethod
    def for_checkpoint(
        cls, checkpoint: CheckpointName, completed: List[CheckpointName], message: str
    ) -> "DeploymentProgress":
        return cls(
            current_step=checkpoint,
            completed_steps=list(completed),
            total_steps=len(CHECKPOINT_ORDER),
            progress=progress_percent(checkpoint),
            message=message,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentStep": self.current_step.value,
            "completedSteps": [name.value for name in self.completed_steps],
            "totalSteps": self.total_steps,
            "progress": self.progress,
            "message": self.message,
        }


class DeploymentError(RuntimeError):
    """Terminal deployment failure surfaced to the caller of ``deploy``."""

    def __init__(
        self,
        message: str,
        checkpoint: CheckpointName,
        retry_count: int,
        recoverable: bool = True,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.checkpoint = checkpoint
        self.retry_count = retry_count
        self.recoverable = recoverable
