"""Checkpoint ledger: the persisted record of completed provisioning steps."""

from __future__ import annotations

import logging
from typing import Any, Optional

from ..models import (
    CHECKPOINT_ORDER,
    Checkpoint,
    CheckpointName,
    DeploymentState,
    DeploymentStatus,
    checkpoint_index,
    utc_now,
)

logger = logging.getLogger(__name__)


def get_last_checkpoint(state: DeploymentState) -> Optional[CheckpointName]:
    """Highest-ordered completed checkpoint, independent of storage order.

    Legacy names outside the active order are ignored.
    """
    indexed = [
        checkpoint_index(cp.name) for cp in state.checkpoints if checkpoint_index(cp.name) is not None
    ]
    if not indexed:
        return None
    return CHECKPOINT_ORDER[max(indexed)]


def get_next_checkpoint(state: DeploymentState) -> CheckpointName:
    last = get_last_checkpoint(state)
    if last is None:
        return CHECKPOINT_ORDER[0]
    index = checkpoint_index(last)
    if index >= len(CHECKPOINT_ORDER) - 1:
        return CheckpointName.COMPLETED
    return CHECKPOINT_ORDER[index + 1]


def get_checkpoint_retry_count(state: DeploymentState, name: CheckpointName) -> int:
    for checkpoint in state.checkpoints:
        if checkpoint.name == name:
            return checkpoint.retry_count
    return 0


def reset_checkpoints(state: DeploymentState, target: CheckpointName) -> DeploymentState:
    """Drop every checkpoint at or after ``target`` (and legacy entries)."""
    target_index = checkpoint_index(target)
    if target_index is None:
        raise ValueError(f"Cannot reset to checkpoint outside the active order: {target.value}")
    state.checkpoints = [
        cp
        for cp in state.checkpoints
        if checkpoint_index(cp.name) is not None and checkpoint_index(cp.name) < target_index
    ]
    state.status = DeploymentStatus.CONFIGURING if state.checkpoints else DeploymentStatus.INITIALIZED
    state.last_error = None
    return state


class CheckpointLedger:
    """Read-modify-write access to one deployment's ``state.json``.

    Each mutation reads the current file and writes it back immediately;
    nothing is cached or batched.
    """

    def __init__(self, store, name: str) -> None:
        self.store = store
        self.name = name

    def read(self) -> DeploymentState:
        return self.store.load_state(self.name)

    def update(self, **fields: Any) -> DeploymentState:
        state = self.read()
        for key, value in fields.items():
            if not hasattr(state, key):
                raise AttributeError(f"DeploymentState has no field '{key}'")
            setattr(state, key, value)
        self.store.save_state(self.name, state)
        return state

    def mark_complete(self, name: CheckpointName, retry_count: int = 0) -> DeploymentState:
        state = self.read()
        entry = Checkpoint(name=name, completed_at=utc_now(), retry_count=retry_count)
        for position, existing in enumerate(state.checkpoints):
            if existing.name == name:
                state.checkpoints[position] = entry
                break
        else:
            state.checkpoints.append(entry)
        state.status = (
            DeploymentStatus.DEPLOYED if name == CheckpointName.COMPLETED else DeploymentStatus.CONFIGURING
        )
        self.store.save_state(self.name, state)
        logger.debug("Checkpoint %s complete for %s (retries=%d)", name.value, self.name, retry_count)
        return state

    def record_failure(self, message: str) -> DeploymentState:
        return self.update(last_error=message, status=DeploymentStatus.FAILED)

    def reset_to(self, target: CheckpointName) -> DeploymentState:
        state = reset_checkpoints(self.read(), target)
        self.store.save_state(self.name, state)
        logger.info("Reset %s to checkpoint %s", self.name, target.value)
        return state
