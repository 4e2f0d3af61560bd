"""Tests for the command-line front end."""

import io
import json

import pytest
from rich.console import Console

from clawcontrol import cli
from clawcontrol.cli import build_parser, run_cli
from clawcontrol.models import CheckpointName, ProviderName
from clawcontrol.orchestrator import CheckpointLedger, DeploymentError
from clawcontrol.setup import PreconditionError
from clawcontrol.store import DeploymentStore, TemplateStore
from clawcontrol.workflow import DeploymentWorkflow


@pytest.fixture
def output(monkeypatch):
    console = Console(file=io.StringIO(), width=200)
    monkeypatch.setattr(cli, "console", console)
    return console.file


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"storage": {"home_dir": str(tmp_path / "home")}}))
    return str(path)


def _new(config_path, name="demo", *extra):
    return run_cli(
        [
            "--config", config_path, "new", name,
            "--provider", "hetzner",
            "--api-key", "hz-token",
            "--ai-provider", "openrouter",
            "--ai-api-key", "sk-or",
            "--model", "moonshotai/kimi-k2.5",
            "--telegram-bot-token", "1:abc",
            "--skip-validation",
            *extra,
        ]
    )


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        build_parser().parse_args([])


def test_reset_checkpoint_choices_exclude_legacy_names():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["reset", "demo", "--to", "channel_paired"])


def test_new_creates_deployment(config_path, tmp_path, output):
    assert _new(config_path) == 0
    assert "Created deployment" in output.getvalue()
    assert DeploymentStore(tmp_path / "home").exists("demo")


def test_new_rejects_bad_name(config_path, output):
    assert _new(config_path, "Bad_Name") == 1
    assert "Error" in output.getvalue()


def test_status_lists_deployments(config_path, output):
    _new(config_path, "alpha")
    _new(config_path, "beta")
    output.seek(0)
    output.truncate()

    assert run_cli(["--config", config_path, "status", "--json"]) == 0

    payload = json.loads(output.getvalue())
    assert [item["name"] for item in payload] == ["alpha", "beta"]
    assert payload[0]["status"] == "initialized"


def test_reset_and_fork(config_path, tmp_path):
    _new(config_path)
    store = DeploymentStore(tmp_path / "home")
    ledger = CheckpointLedger(store, "demo")
    ledger.mark_complete(CheckpointName.SERVER_CREATED)
    ledger.mark_complete(CheckpointName.SSH_KEY_UPLOADED)

    assert run_cli(["--config", config_path, "reset", "demo", "--to", "ssh_key_uploaded"]) == 0
    assert store.load_state("demo").completed_names() == [CheckpointName.SERVER_CREATED]

    assert run_cli(["--config", config_path, "fork", "demo", "demo-two"]) == 0
    assert store.load_state("demo-two").checkpoints == []


def test_destroy_without_remote_resources(config_path, tmp_path):
    _new(config_path)
    assert run_cli(["--config", config_path, "destroy", "demo", "--yes"]) == 0
    assert not DeploymentStore(tmp_path / "home").exists("demo")


def test_missing_deployment_returns_error(config_path, output):
    assert run_cli(["--config", config_path, "deploy", "ghost"]) == 1
    assert "not found" in output.getvalue()


def test_missing_config_file(tmp_path):
    assert run_cli(["--config", str(tmp_path / "nope.json"), "status"]) == 1


def test_templates_listing_and_protection(config_path, output):
    assert run_cli(["--config", config_path, "templates"]) == 0
    assert "Beacon24" in output.getvalue()

    assert run_cli(["--config", config_path, "templates", "--delete", "beacon24-concierge-hetzner"]) == 1


def test_templates_fork_saves_user_template(config_path, tmp_path, output):
    args = [
        "--config", config_path, "templates",
        "--fork", "hetzner-telegram-openrouter-kimi", "My Kimi Box",
        "--provider", "digitalocean",
        "--size", "s-2vcpu-4gb",
        "--model", "moonshotai/kimi-k2",
    ]
    assert run_cli(args) == 0
    assert "my-kimi-box" in output.getvalue()

    forked = TemplateStore(tmp_path / "home").get("my-kimi-box")
    assert forked.built_in is False
    assert forked.description == 'Forked from "Hetzner + OpenRouter Kimi K2.5"'
    assert forked.provider == ProviderName.DIGITALOCEAN
    assert forked.digitalocean["size"] == "s-2vcpu-4gb"
    assert forked.digitalocean["region"] == "nyc1"
    assert forked.hetzner is None
    assert forked.ai_provider == "openrouter"
    assert forked.model == "moonshotai/kimi-k2"

    assert run_cli(["--config", config_path, "templates", "--delete", "my-kimi-box"]) == 0


def test_templates_fork_of_unknown_template(config_path, output):
    assert run_cli(["--config", config_path, "templates", "--fork", "ghost", "Copy"]) == 1
    assert "not found" in output.getvalue()


def test_deploy_with_missing_local_files_suggests_reset(config_path, output, monkeypatch):
    def deploy(self, name, interaction_handler=None):
        try:
            raise PreconditionError("SSH key pair not found")
        except PreconditionError as exc:
            raise DeploymentError(
                'Deployment failed at "Setting up swap memory": SSH key pair not found',
                CheckpointName.SWAP_CONFIGURED,
                1,
                recoverable=False,
            ) from exc

    _new(config_path)
    monkeypatch.setattr(DeploymentWorkflow, "deploy", deploy)

    assert run_cli(["--config", config_path, "deploy", "demo", "--non-interactive"]) == 1
    text = output.getvalue()
    assert "clawcontrol reset demo --to server_created" in text
    assert "again to resume" not in text
