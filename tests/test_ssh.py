import threading
import unittest

import paramiko

from clawcontrol.ssh import (
    HealthProbe,
    SSHConnectionError,
    SSHCredentials,
    SSHSession,
    SSHTimeoutError,
    generate_key_pair,
    wait_for_available,
)


def _channel(stdout: bytes = b"", stderr: bytes = b"", status=None) -> paramiko.Channel:
    """Detached paramiko channel preloaded as a transport would fill it."""
    channel = paramiko.Channel(1)
    channel.in_buffer.feed(stdout)
    channel.in_stderr_buffer.feed(stderr)
    if status is not None:
        channel.exit_status = status
        channel.status_event.set()
    return channel


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeTransport:
    def __init__(self, active: bool = True) -> None:
        self.active = active

    def is_active(self) -> bool:
        return self.active


class FakeSSHClient:
    def __init__(self, stdout: str = "ok\n", status=0, stderr: str = "", fail: bool = False) -> None:
        self.connected = False
        self.closed = False
        self.commands: list[str] = []
        self.channels: list[paramiko.Channel] = []
        self.transport = FakeTransport()
        self._stdout = stdout
        self._stderr = stderr
        self._status = status
        self._fail = fail

    def set_missing_host_key_policy(self, policy) -> None:
        self.policy = policy

    def connect(self, **kwargs) -> None:
        if self._fail:
            raise OSError("Connection refused")
        self.connected = True
        self.kwargs = kwargs

    def get_transport(self):
        return self.transport if self.connected else None

    def exec_command(self, command: str, timeout=None):
        self.commands.append(command)
        self.timeout = timeout
        channel = _channel(self._stdout.encode("utf-8"), self._stderr.encode("utf-8"), self._status)
        self.channels.append(channel)
        return (
            None,
            paramiko.ChannelFile(channel, "rb"),
            paramiko.ChannelStderrFile(channel, "rb"),
        )

    def close(self) -> None:
        self.closed = True
        self.connected = False


def _credentials(**overrides) -> SSHCredentials:
    values = {"host": "203.0.113.10", "key_path": "/tmp/demo/ssh_key"}
    values.update(overrides)
    return SSHCredentials(**values)


class SSHSessionTests(unittest.TestCase):
    def test_exec_uses_client_factory_and_key_auth(self) -> None:
        client = FakeSSHClient()
        session = SSHSession(_credentials(), client_factory=lambda: client)
        with session:
            self.assertTrue(session.is_connected())
            result = session.exec("echo test")
        self.assertTrue(result.ok)
        self.assertEqual(result.stdout, "ok")
        self.assertEqual(client.kwargs["key_filename"], "/tmp/demo/ssh_key")
        self.assertEqual(client.kwargs["username"], "root")
        self.assertFalse(client.kwargs["look_for_keys"])
        self.assertTrue(client.closed)
        self.assertFalse(session.is_connected())

    def test_non_zero_exit_is_returned(self) -> None:
        client = FakeSSHClient(stdout="", stderr="warning\n", status=2)
        session = SSHSession(_credentials(), client_factory=lambda: client)
        result = session.exec("false")
        self.assertFalse(result.ok)
        self.assertEqual(result.exit_status, 2)
        self.assertEqual(result.output, "warning")

    def test_output_is_drained_in_chunks(self) -> None:
        client = FakeSSHClient(stdout="x" * 10000 + "\n")
        session = SSHSession(_credentials(), client_factory=lambda: client)
        result = session.exec("cat big.log")
        self.assertEqual(len(result.stdout), 10000)

    def test_command_timeout_closes_hung_channel(self) -> None:
        clock = FakeClock()
        client = FakeSSHClient(stdout="partial\n", status=None)
        session = SSHSession(
            _credentials(),
            client_factory=lambda: client,
            command_timeout=7,
            poll_interval=0.5,
            sleep=clock.sleep,
            clock=clock,
        )
        result = session.exec("sleep 100")
        self.assertEqual(result.exit_status, -1)
        self.assertIn("TIMEOUT", result.stderr)
        self.assertEqual(result.stdout, "partial")
        self.assertEqual(client.timeout, 7)
        self.assertEqual(clock.now, 7.0)
        self.assertEqual(len(clock.sleeps), 14)

    def test_command_timeout_with_real_clock(self) -> None:
        client = FakeSSHClient(status=None)
        session = SSHSession(_credentials(), client_factory=lambda: client, command_timeout=1, poll_interval=0.05)
        results = []
        worker = threading.Thread(target=lambda: results.append(session.exec("sleep 100")), daemon=True)
        worker.start()
        worker.join(5)
        self.assertFalse(worker.is_alive())
        self.assertEqual(results[0].exit_status, -1)

    def test_closed_channel_without_status_returns(self) -> None:
        client = FakeSSHClient(status=None)
        original = client.exec_command

        def exec_and_drop(command, timeout=None):
            streams = original(command, timeout)
            channel = client.channels[-1]
            with channel.lock:
                channel._set_closed()
            return streams

        client.exec_command = exec_and_drop
        result = SSHSession(_credentials(), client_factory=lambda: client).exec("reboot")
        self.assertEqual(result.exit_status, -1)
        self.assertEqual(result.stdout, "ok")

    def test_connect_failure_is_wrapped(self) -> None:
        client = FakeSSHClient(fail=True)
        session = SSHSession(_credentials(), client_factory=lambda: client)
        with self.assertRaises(SSHConnectionError):
            session.connect()
        self.assertTrue(client.closed)
        self.assertFalse(session.is_connected())

    def test_dropped_transport_reports_disconnected(self) -> None:
        client = FakeSSHClient()
        session = SSHSession(_credentials(), client_factory=lambda: client)
        session.connect()
        client.transport.active = False
        self.assertFalse(session.is_connected())


class FakeProbeSession:
    def __init__(self, credentials, outcomes) -> None:
        self.credentials = credentials
        self._outcomes = outcomes
        self.disconnected = False

    def connect(self) -> None:
        if self._outcomes.pop(0):
            return
        raise SSHConnectionError("Connection refused")

    def disconnect(self) -> None:
        self.disconnected = True


class WaitForAvailableTests(unittest.TestCase):
    def test_returns_once_connect_succeeds(self) -> None:
        outcomes = [False, False, True]
        sessions = []
        sleeps = []

        def factory(credentials):
            session = FakeProbeSession(credentials, outcomes)
            sessions.append(session)
            return session

        clock = iter(range(100)).__next__
        wait_for_available(_credentials(), 180, 5, session_factory=factory, sleep=sleeps.append, clock=clock)

        self.assertEqual(len(sessions), 3)
        self.assertEqual(sleeps, [5, 5])
        self.assertTrue(sessions[-1].disconnected)

    def test_times_out(self) -> None:
        outcomes = [False] * 10
        clock = iter(range(0, 1000, 60)).__next__
        with self.assertRaises(SSHTimeoutError) as ctx:
            wait_for_available(
                _credentials(),
                180,
                5,
                session_factory=lambda c: FakeProbeSession(c, outcomes),
                sleep=lambda _: None,
                clock=clock,
            )
        self.assertIn("Connection refused", str(ctx.exception))


class CredentialsTests(unittest.TestCase):
    def test_command_args_for_interactive_ssh(self) -> None:
        args = _credentials().to_command_args("openclaw onboard")
        self.assertEqual(
            args,
            [
                "ssh",
                "-i",
                "/tmp/demo/ssh_key",
                "-o",
                "StrictHostKeyChecking=no",
                "-o",
                "UserKnownHostsFile=/dev/null",
                "root@203.0.113.10",
                "-t",
                "openclaw onboard",
            ],
        )

    def test_custom_port(self) -> None:
        args = _credentials(port=2222).to_command_args()
        self.assertIn("-p", args)
        self.assertEqual(args[-1], "root@203.0.113.10")

    def test_validate(self) -> None:
        with self.assertRaises(ValueError):
            _credentials(host="").validate()


class HealthProbeTests(unittest.TestCase):
    def _probe(self, stdout: str) -> HealthProbe:
        return HealthProbe(
            session_factory=lambda credentials: SSHSession(
                credentials, client_factory=lambda: FakeSSHClient(stdout=stdout)
            )
        )

    def test_active_service_is_healthy(self) -> None:
        health = self._probe("active\n").check(_credentials())
        self.assertTrue(health.healthy)

    def test_inactive_is_not_active(self) -> None:
        health = self._probe("inactive\n").check(_credentials())
        self.assertTrue(health.ssh_reachable)
        self.assertFalse(health.service_active)
        self.assertEqual(health.detail, "inactive")

    def test_unreachable_server(self) -> None:
        probe = HealthProbe(
            session_factory=lambda credentials: SSHSession(
                credentials, client_factory=lambda: FakeSSHClient(fail=True)
            )
        )
        health = probe.check(_credentials())
        self.assertFalse(health.ssh_reachable)
        self.assertFalse(health.healthy)


class KeyGenerationTests(unittest.TestCase):
    def test_generates_openssh_key_pair(self) -> None:
        pair = generate_key_pair("clawcontrol-demo", bits=2048)
        self.assertTrue(pair.public_key.startswith("ssh-rsa "))
        self.assertTrue(pair.public_key.endswith(" clawcontrol-demo"))
        self.assertIn("PRIVATE KEY", pair.private_key)


if __name__ == "__main__":
    unittest.main()
