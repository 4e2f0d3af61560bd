import tempfile
import unittest
from pathlib import Path

from clawcontrol.config import AppConfig
from clawcontrol.interaction import AutoResponseHandler
from clawcontrol.models import CheckpointName, DeploymentStatus, ProviderName
from clawcontrol.orchestrator import CheckpointLedger
from clawcontrol.providers import CloudProviderError, ServerSpec
from clawcontrol.store import StorageError
from clawcontrol.workflow import CreateDeploymentRequest, DeploymentWorkflow

from fakes import FakeProvider, FakeRemote, fake_key_pair


class StubOrchestrator:
    instances = []

    def __init__(self, name, interaction, *, store, app_config, session_factory) -> None:
        self.name = name
        self.interaction = interaction
        self.store = store
        StubOrchestrator.instances.append(self)

    def deploy(self) -> None:
        CheckpointLedger(self.store, self.name).update(
            status=DeploymentStatus.DEPLOYED, server_ip="203.0.113.10"
        )


class FailingProvider(FakeProvider):
    def delete_server(self, server_id):
        raise CloudProviderError("locked", "Server is locked", 423)


class WorkflowTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.home = Path(self._tmp.name)
        config = AppConfig()
        config.storage.home_dir = str(self.home)
        self.provider = FakeProvider()
        self.remote = (
            FakeRemote()
            .on("systemctl is-active openclaw", ("active", 0))
            .on("journalctl -u openclaw", ("gateway listening on 18789", 0))
        )
        StubOrchestrator.instances = []
        self.workflow = DeploymentWorkflow(
            config,
            provider_factory=lambda provider, api_key: self.provider,
            interaction_handler=AutoResponseHandler(),
            session_factory=lambda credentials: self.remote,
            orchestrator_factory=StubOrchestrator,
        )

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def _request(self, **overrides) -> CreateDeploymentRequest:
        values = dict(
            name="demo",
            provider=ProviderName.HETZNER,
            api_key="hz-token",
            ai_provider="openrouter",
            ai_api_key="sk-or",
            model="moonshotai/kimi-k2.5",
            telegram_bot_token="1:abc",
        )
        values.update(overrides)
        return CreateDeploymentRequest(**values)

    def _deployed(self) -> None:
        self.workflow.create_deployment(self._request())
        self.workflow.store.save_key_pair("demo", fake_key_pair())
        self.workflow.deploy("demo")

    # creation

    def test_create_deployment_validates_key(self) -> None:
        self.provider.valid = False
        with self.assertRaises(ValueError):
            self.workflow.create_deployment(self._request())
        self.assertFalse(self.workflow.store.exists("demo"))

    def test_skip_validation(self) -> None:
        self.provider.valid = False
        deployment = self.workflow.create_deployment(self._request(skip_validation=True))
        self.assertEqual(deployment.state.status, DeploymentStatus.INITIALIZED)

    def test_sizing_overrides(self) -> None:
        deployment = self.workflow.create_deployment(self._request(size="cpx21", region="fsn1"))
        self.assertEqual(deployment.config.hetzner.server_type, "cpx21")
        self.assertEqual(deployment.config.hetzner.location, "fsn1")
        self.assertEqual(deployment.config.hetzner.image, "ubuntu-24.04")

    def test_create_from_template(self) -> None:
        deployment = self.workflow.create_deployment(
            self._request(
                provider=ProviderName.HETZNER,
                template_id="beacon24-concierge-hetzner",
                model="",
            )
        )
        self.assertEqual(deployment.config.openclaw_agent.model, "openrouter/anthropic/claude-haiku-4-5")

    def test_duplicate_name(self) -> None:
        self.workflow.create_deployment(self._request())
        with self.assertRaises(StorageError):
            self.workflow.create_deployment(self._request())

    # deployment and inspection

    def test_deploy_runs_orchestrator(self) -> None:
        self.workflow.create_deployment(self._request())
        state = self.workflow.deploy("demo")
        self.assertEqual(state.status, DeploymentStatus.DEPLOYED)
        self.assertIsInstance(StubOrchestrator.instances[0].interaction, AutoResponseHandler)

    def test_status_probes_deployed_servers(self) -> None:
        self._deployed()
        report = self.workflow.status("demo")
        self.assertTrue(report.health.healthy)
        self.assertEqual(report.to_payload()["health"]["service_active"], True)

    def test_status_skips_probe_before_deploy(self) -> None:
        self.workflow.create_deployment(self._request())
        report = self.workflow.status("demo")
        self.assertIsNone(report.health)
        self.assertEqual(self.remote.commands, [])

    def test_logs(self) -> None:
        self._deployed()
        self.assertEqual(self.workflow.logs("demo", 50), "gateway listening on 18789")
        self.assertIn("journalctl -u openclaw -n 50 --no-pager", self.remote.commands)
        self.assertFalse(self.remote.connected)

    def test_logs_require_server(self) -> None:
        self.workflow.create_deployment(self._request())
        with self.assertRaises(StorageError):
            self.workflow.logs("demo")

    def test_restart(self) -> None:
        self._deployed()
        self.assertTrue(self.workflow.restart("demo"))
        self.assertIn("systemctl restart openclaw", self.remote.commands)

    def test_reset(self) -> None:
        self.workflow.create_deployment(self._request())
        ledger = CheckpointLedger(self.workflow.store, "demo")
        ledger.mark_complete(CheckpointName.SERVER_CREATED)
        ledger.mark_complete(CheckpointName.SSH_KEY_UPLOADED)

        state = self.workflow.reset("demo", CheckpointName.SSH_KEY_UPLOADED)

        self.assertEqual(state.completed_names(), [CheckpointName.SERVER_CREATED])
        self.assertEqual(state.status, DeploymentStatus.CONFIGURING)

    def test_ssh_command_uses_deployment_key(self) -> None:
        self._deployed()
        argv = self.workflow.ssh_command("demo")
        key_path = str(self.workflow.store.private_key_path("demo"))
        self.assertEqual(argv[:3], ["ssh", "-i", key_path])
        self.assertEqual(argv[-1], "root@203.0.113.10")

    # teardown

    def test_destroy_deletes_remote_then_local(self) -> None:
        self.workflow.create_deployment(self._request())
        server = self.provider.create_server(ServerSpec("demo", "cpx11", "ash", "ubuntu-24.04"))
        key = self.provider.create_ssh_key("clawcontrol-demo", "ssh-rsa AAAA")
        CheckpointLedger(self.workflow.store, "demo").update(server_id=server.id, ssh_key_id=key.id)

        result = self.workflow.destroy("demo")

        self.assertEqual(result.deleted, ["server", "ssh key"])
        self.assertEqual(self.provider.servers, {})
        self.assertFalse(self.workflow.store.exists("demo"))

    def test_destroy_tolerates_missing_resources(self) -> None:
        self.workflow.create_deployment(self._request())
        CheckpointLedger(self.workflow.store, "demo").update(server_id="999", ssh_key_id="998")

        result = self.workflow.destroy("demo")

        self.assertEqual(result.skipped, ["server", "ssh key"])
        self.assertFalse(self.workflow.store.exists("demo"))

    def test_destroy_aborts_on_provider_error_unless_forced(self) -> None:
        self.provider = FailingProvider()
        self.workflow.create_deployment(self._request())
        CheckpointLedger(self.workflow.store, "demo").update(server_id="1")

        with self.assertRaises(CloudProviderError):
            self.workflow.destroy("demo")
        self.assertTrue(self.workflow.store.exists("demo"))

        result = self.workflow.destroy("demo", force=True)
        self.assertEqual(result.skipped, ["server"])
        self.assertFalse(self.workflow.store.exists("demo"))


if __name__ == "__main__":
    unittest.main()
