"""Tests for the checkpoint ledger."""

import pytest

from clawcontrol.models import (
    CHECKPOINT_ORDER,
    Checkpoint,
    CheckpointName,
    DeploymentState,
    DeploymentStatus,
)
from clawcontrol.orchestrator import (
    CheckpointLedger,
    get_checkpoint_retry_count,
    get_last_checkpoint,
    get_next_checkpoint,
    reset_checkpoints,
)
from clawcontrol.store import DeploymentStore

from fakes import make_config


def _state(*names: CheckpointName) -> DeploymentState:
    return DeploymentState(
        status=DeploymentStatus.CONFIGURING,
        checkpoints=[Checkpoint(name=n, completed_at="2025-01-01T00:00:00Z") for n in names],
    )


@pytest.fixture
def ledger(tmp_path):
    store = DeploymentStore(tmp_path)
    store.create(make_config())
    return CheckpointLedger(store, "demo")


class TestLastCheckpoint:
    def test_empty_ledger(self):
        state = DeploymentState()
        assert get_last_checkpoint(state) is None
        assert get_next_checkpoint(state) == CheckpointName.SERVER_CREATED

    def test_highest_order_wins_regardless_of_storage_order(self):
        state = _state(
            CheckpointName.NVM_INSTALLED,
            CheckpointName.SERVER_CREATED,
            CheckpointName.SYSTEM_UPDATED,
        )
        assert get_last_checkpoint(state) == CheckpointName.NVM_INSTALLED
        assert get_next_checkpoint(state) == CheckpointName.NODE_INSTALLED

    def test_legacy_entries_are_ignored(self):
        state = _state(CheckpointName.SERVER_CREATED, CheckpointName.CHANNEL_PAIRED)
        assert get_last_checkpoint(state) == CheckpointName.SERVER_CREATED

    def test_next_after_completed_is_completed(self):
        state = _state(*CHECKPOINT_ORDER)
        assert get_next_checkpoint(state) == CheckpointName.COMPLETED

    def test_retry_count_lookup(self):
        state = _state(CheckpointName.SERVER_CREATED)
        state.checkpoints[0].retry_count = 2
        assert get_checkpoint_retry_count(state, CheckpointName.SERVER_CREATED) == 2
        assert get_checkpoint_retry_count(state, CheckpointName.SSH_CONNECTED) == 0


class TestResetCheckpoints:
    def test_truncates_at_target(self):
        state = _state(*CHECKPOINT_ORDER[:6])
        state.last_error = "old failure"
        reset_checkpoints(state, CheckpointName.SYSTEM_UPDATED)
        assert state.completed_names() == list(CHECKPOINT_ORDER[:4])
        assert state.status == DeploymentStatus.CONFIGURING
        assert state.last_error is None

    def test_reset_to_first_returns_to_initialized(self):
        state = _state(CheckpointName.SERVER_CREATED, CheckpointName.CHANNEL_PAIRED)
        reset_checkpoints(state, CheckpointName.SERVER_CREATED)
        assert state.checkpoints == []
        assert state.status == DeploymentStatus.INITIALIZED

    def test_legacy_target_rejected(self):
        with pytest.raises(ValueError):
            reset_checkpoints(_state(), CheckpointName.CHANNEL_PAIRED)


class TestCheckpointLedger:
    def test_mark_complete_persists_immediately(self, ledger, tmp_path):
        ledger.mark_complete(CheckpointName.SERVER_CREATED, retry_count=1)

        reloaded = DeploymentStore(tmp_path).load_state("demo")
        assert reloaded.completed_names() == [CheckpointName.SERVER_CREATED]
        assert reloaded.checkpoints[0].retry_count == 1
        assert reloaded.status == DeploymentStatus.CONFIGURING

    def test_at_most_one_entry_per_name(self, ledger):
        ledger.mark_complete(CheckpointName.SERVER_CREATED)
        ledger.mark_complete(CheckpointName.SSH_KEY_UPLOADED)
        state = ledger.mark_complete(CheckpointName.SERVER_CREATED, retry_count=2)

        names = state.completed_names()
        assert names.count(CheckpointName.SERVER_CREATED) == 1
        assert get_checkpoint_retry_count(state, CheckpointName.SERVER_CREATED) == 2

    def test_completed_checkpoint_marks_deployed(self, ledger):
        state = ledger.mark_complete(CheckpointName.COMPLETED)
        assert state.status == DeploymentStatus.DEPLOYED

    def test_record_failure(self, ledger):
        state = ledger.record_failure("apt-get exploded")
        assert state.status == DeploymentStatus.FAILED
        assert ledger.read().last_error == "apt-get exploded"

    def test_update_rejects_unknown_fields(self, ledger):
        with pytest.raises(AttributeError):
            ledger.update(not_a_field=1)

    def test_update_none_clears_field(self, ledger):
        ledger.update(server_ip="203.0.113.10")
        assert ledger.update(server_ip=None).server_ip is None

    def test_reset_to_persists(self, ledger):
        for name in CHECKPOINT_ORDER[:5]:
            ledger.mark_complete(name)
        ledger.reset_to(CheckpointName.SSH_CONNECTED)
        assert ledger.read().completed_names() == list(CHECKPOINT_ORDER[:2])
