"""Tests for deployment and template storage."""

import json
import stat

import pytest

from clawcontrol.models import DeploymentStatus, ProviderName
from clawcontrol.store import (
    BUILT_IN_TEMPLATES,
    DeploymentStore,
    StorageError,
    Template,
    TemplateError,
    TemplateStore,
)

from fakes import fake_key_pair, make_config


@pytest.fixture
def store(tmp_path):
    return DeploymentStore(tmp_path)


class TestDeploymentStore:
    def test_create_writes_config_and_initialized_state(self, store, tmp_path):
        deployment = store.create(make_config())

        assert deployment.state.status == DeploymentStatus.INITIALIZED
        directory = tmp_path / "deployments" / "demo"
        config = json.loads((directory / "config.json").read_text())
        state = json.loads((directory / "state.json").read_text())
        assert config["hetzner"]["apiKey"] == "hz-token"
        assert state["status"] == "initialized"
        assert state["checkpoints"] == []

    def test_create_refuses_existing_name(self, store):
        store.create(make_config())
        with pytest.raises(StorageError, match="already exists"):
            store.create(make_config())

    def test_get_missing_deployment(self, store):
        with pytest.raises(StorageError, match="not found"):
            store.get("ghost")

    def test_invalid_state_file_is_storage_error(self, store):
        store.create(make_config())
        store.state_path("demo").write_text(json.dumps({"status": "exploded"}))
        with pytest.raises(StorageError, match="Invalid state"):
            store.load_state("demo")

    def test_unknown_checkpoint_is_storage_error(self, store):
        store.create(make_config())
        payload = {
            "status": "configuring",
            "checkpoints": [{"name": "warp_drive", "completedAt": "x", "retryCount": 0}],
            "updatedAt": "x",
        }
        store.state_path("demo").write_text(json.dumps(payload))
        with pytest.raises(StorageError):
            store.load_state("demo")

    def test_list_skips_broken_deployments(self, store):
        store.create(make_config("alpha"))
        store.create(make_config("beta"))
        store.config_path("beta").write_text("{not json")

        assert store.list_names() == ["alpha", "beta"]
        assert [d.name for d in store.list()] == ["alpha"]

    def test_fork_copies_config_with_fresh_state(self, store):
        store.create(make_config())
        store.save_key_pair("demo", fake_key_pair())

        forked = store.fork("demo", "demo-two")

        assert forked.config.hetzner == store.load_config("demo").hetzner
        assert forked.state.checkpoints == []
        assert store.load_key_pair("demo-two") is None

    def test_key_pair_permissions(self, store):
        store.create(make_config())
        path = store.save_key_pair("demo", fake_key_pair())

        assert stat.S_IMODE(path.stat().st_mode) == 0o600
        loaded = store.load_key_pair("demo")
        assert loaded.public_key == "ssh-rsa AAAAfake clawcontrol"

    def test_delete_removes_directory(self, store):
        store.create(make_config())
        store.delete("demo")
        assert not store.exists("demo")
        with pytest.raises(StorageError):
            store.delete("demo")

    def test_state_writes_leave_no_temp_files(self, store):
        store.create(make_config())
        state = store.load_state("demo")
        state.server_ip = "203.0.113.10"
        store.save_state("demo", state)

        files = sorted(p.name for p in store.deployment_dir("demo").iterdir())
        assert files == ["config.json", "state.json"]
        assert store.load_state("demo").server_ip == "203.0.113.10"


class TestTemplateStore:
    def test_built_ins_are_seeded_and_listed_first(self, tmp_path):
        templates = TemplateStore(tmp_path)
        templates.save(
            Template(id="aaa", name="AAA custom", provider=ProviderName.HETZNER, ai_provider="openai", model="gpt-4o")
        )

        listed = templates.list()

        assert [t.id for t in listed[:3]] == [
            "beacon24-concierge-hetzner",
            "digitalocean-telegram-openrouter-kimi",
            "hetzner-telegram-openrouter-kimi",
        ]
        assert listed[-1].id == "aaa"
        assert (tmp_path / "templates" / "hetzner-telegram-openrouter-kimi.json").is_file()

    def test_seeding_keeps_local_edits(self, tmp_path):
        templates = TemplateStore(tmp_path)
        templates.seed_built_ins()
        edited = templates.get("hetzner-telegram-openrouter-kimi")
        edited.model = "moonshotai/kimi-k2"
        templates.save(edited)

        templates.seed_built_ins()

        assert templates.get("hetzner-telegram-openrouter-kimi").model == "moonshotai/kimi-k2"

    def test_built_ins_cannot_be_deleted(self, tmp_path):
        with pytest.raises(TemplateError):
            TemplateStore(tmp_path).delete("beacon24-concierge-hetzner")

    def test_delete_user_template(self, tmp_path):
        templates = TemplateStore(tmp_path)
        templates.save(
            Template(id="mine", name="Mine", provider=ProviderName.HETZNER, ai_provider="groq", model="llama")
        )
        templates.delete("mine")
        with pytest.raises(TemplateError, match="not found"):
            templates.get("mine")

    def test_generate_id_avoids_conflicts(self, tmp_path):
        templates = TemplateStore(tmp_path)
        assert templates.generate_id("My Template!") == "my-template"
        templates.save(
            Template(id="my-template", name="x", provider=ProviderName.HETZNER, ai_provider="groq", model="m")
        )
        assert templates.generate_id("My Template!") == "my-template-1"

    def test_invalid_template_file_is_skipped(self, tmp_path):
        templates = TemplateStore(tmp_path)
        (tmp_path / "templates" / "broken.json").write_text(json.dumps({"id": "broken"}))
        assert "broken" not in [t.id for t in templates.list()]

    def test_to_config_builds_deployment(self):
        template = next(t for t in BUILT_IN_TEMPLATES if t.provider == ProviderName.DIGITALOCEAN)
        config = template.to_config(
            "agent-one", "do-token", ai_api_key="sk-or", telegram_bot_token="1:a", telegram_allow_from="7"
        )
        assert config.digitalocean.region == "nyc1"
        assert config.api_key == "do-token"
        assert config.openclaw_agent.model_key == "openrouter/moonshotai/kimi-k2.5"
        assert config.openclaw_agent.telegram_allow_from == "7"

    def test_fork_keeps_sizing_for_same_provider(self, tmp_path):
        templates = TemplateStore(tmp_path)
        forked = templates.fork("hetzner-telegram-openrouter-kimi", "Bigger Box", size="cpx31")

        assert forked.id == "bigger-box"
        assert forked.built_in is False
        assert forked.hetzner == {"serverType": "cpx31", "location": "ash", "image": "ubuntu-24.04"}
        assert forked.model == "moonshotai/kimi-k2.5"
        assert templates.get("bigger-box").description == 'Forked from "Hetzner + OpenRouter Kimi K2.5"'
        # the built-in source is untouched
        assert templates.get("hetzner-telegram-openrouter-kimi").hetzner["serverType"] == "cpx11"

    def test_fork_switching_provider_uses_defaults(self, tmp_path):
        forked = TemplateStore(tmp_path).fork(
            "beacon24-concierge-hetzner", "Concierge DO", provider=ProviderName.DIGITALOCEAN, ai_provider="groq"
        )
        assert forked.hetzner is None
        assert forked.digitalocean["size"] == "s-1vcpu-2gb"
        assert forked.ai_provider == "groq"
        assert forked.model == "openrouter/anthropic/claude-haiku-4-5"

    def test_fork_avoids_id_conflicts(self, tmp_path):
        templates = TemplateStore(tmp_path)
        first = templates.fork("hetzner-telegram-openrouter-kimi", "Copy")
        second = templates.fork("hetzner-telegram-openrouter-kimi", "Copy")
        assert (first.id, second.id) == ("copy", "copy-1")

    def test_fork_requires_name(self, tmp_path):
        with pytest.raises(TemplateError, match="name is required"):
            TemplateStore(tmp_path).fork("hetzner-telegram-openrouter-kimi", "  ")
