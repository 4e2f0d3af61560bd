"""Orchestrator module for checkpointed deployments.

- CheckpointLedger: persisted record of completed checkpoints
- DeploymentOrchestrator: runs checkpoints in order under the retry policy
- start_deployment: callback-based entry point
"""

from .ledger import (
    CheckpointLedger,
    get_checkpoint_retry_count,
    get_last_checkpoint,
    get_next_checkpoint,
    reset_checkpoints,
)
from .models import (
    CHECKPOINT_DESCRIPTIONS,
    DeploymentError,
    DeploymentProgress,
    describe_checkpoint,
    progress_percent,
)
from .orchestrator import DeploymentOrchestrator, ONBOARD_COMMAND, start_deployment

__all__ = [
    "CHECKPOINT_DESCRIPTIONS",
    "CheckpointLedger",
    "DeploymentError",
    "DeploymentOrchestrator",
    "DeploymentProgress",
    "ONBOARD_COMMAND",
    "describe_checkpoint",
    "get_checkpoint_retry_count",
    "get_last_checkpoint",
    "get_next_checkpoint",
    "progress_percent",
    "reset_checkpoints",
    "start_deployment",
]
