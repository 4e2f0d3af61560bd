"""Interaction handlers: how the orchestrator talks to the person deploying."""

from __future__ import annotations

import logging
import subprocess
import webbrowser
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Callable, List, Optional, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.prompt import Confirm

if TYPE_CHECKING:
    from ..orchestrator.models import DeploymentProgress

logger = logging.getLogger(__name__)

ProgressCallback = Callable[["DeploymentProgress"], None]
ConfirmCallback = Callable[[str], bool]
OpenUrlCallback = Callable[[str], None]
SpawnTerminalCallback = Callable[[str, str, str], None]


class InteractionHandler(ABC):
    """Abstract base class for the four deployment interaction points.

    Every method blocks until the person (or automation) has answered;
    ``spawn_terminal`` returns only after the external session has ended.
    """

    @abstractmethod
    def on_progress(self, progress: "DeploymentProgress") -> None:
        """Receive a progress snapshot. Must not raise."""
        pass

    @abstractmethod
    def confirm(self, message: str) -> bool:
        """Ask a yes/no question."""
        pass

    @abstractmethod
    def open_url(self, url: str) -> None:
        pass

    @abstractmethod
    def spawn_terminal(self, deployment_name: str, server_ip: str, command: str) -> None:
        """Hand the person an interactive shell running ``command`` on the server."""
        pass


class CLIInteractionHandler(InteractionHandler):
    """Terminal handler rendering with rich."""

    def __init__(
        self,
        console: Optional[Console] = None,
        terminal_command: Optional[Callable[[str, str, str], Sequence[str]]] = None,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
    ) -> None:
        """
        Initialize the CLI handler.

        Args:
            console: rich console to render on
            terminal_command: builds the ssh argv for (deployment, server_ip, command)
            runner: runs the argv in the foreground; ``subprocess.run`` by default
        """
        self.console = console or Console()
        self._terminal_command = terminal_command
        self._runner = runner
        self._last_step: Optional[str] = None

    def on_progress(self, progress: "DeploymentProgress") -> None:
        step = progress.current_step.value
        if step != self._last_step:
            self._last_step = step
            self.console.print(
                f"[bold cyan][{progress.progress:5.1f}%][/bold cyan] [bold]{progress.message}[/bold]"
            )
        else:
            self.console.print(f"         [dim]{progress.message}[/dim]")

    def confirm(self, message: str) -> bool:
        self.console.print(Panel(message, border_style="yellow"))
        try:
            return Confirm.ask("Continue?", console=self.console, default=False)
        except (KeyboardInterrupt, EOFError):
            self.console.print("\n(cancelled)")
            return False

    def open_url(self, url: str) -> None:
        self.console.print(f"Opening [link={url}]{url}[/link]")
        if not webbrowser.open(url):
            self.console.print("[yellow]Could not open a browser; visit the URL above manually.[/yellow]")

    def spawn_terminal(self, deployment_name: str, server_ip: str, command: str) -> None:
        if self._terminal_command is None:
            raise RuntimeError("No terminal command builder configured")
        argv: List[str] = list(self._terminal_command(deployment_name, server_ip, command))
        self.console.print(
            Panel(
                f"Opening an SSH session to {deployment_name} ({server_ip}).\n"
                "Deployment resumes when you exit the session.",
                border_style="cyan",
            )
        )
        result = self._runner(argv, check=False)
        if result.returncode != 0:
            logger.warning("Interactive session for %s exited with %s", deployment_name, result.returncode)


class CallbackInteractionHandler(InteractionHandler):
    """
    Interaction handler that uses callbacks.
    Useful for embedding the orchestrator in another UI.
    """

    def __init__(
        self,
        on_progress: Optional[ProgressCallback] = None,
        on_confirm: Optional[ConfirmCallback] = None,
        on_open_url: Optional[OpenUrlCallback] = None,
        on_spawn_terminal: Optional[SpawnTerminalCallback] = None,
    ) -> None:
        self.progress_callback = on_progress or (lambda progress: None)
        self.confirm_callback = on_confirm or (lambda message: False)
        self.open_url_callback = on_open_url or (lambda url: None)
        self.spawn_terminal_callback = on_spawn_terminal or (lambda name, ip, command: None)

    def on_progress(self, progress: "DeploymentProgress") -> None:
        self.progress_callback(progress)

    def confirm(self, message: str) -> bool:
        return bool(self.confirm_callback(message))

    def open_url(self, url: str) -> None:
        self.open_url_callback(url)

    def spawn_terminal(self, deployment_name: str, server_ip: str, command: str) -> None:
        self.spawn_terminal_callback(deployment_name, server_ip, command)


class AutoResponseHandler(InteractionHandler):
    """
    Automatic response handler for testing or non-interactive mode.
    Answers every confirmation the same way and never opens anything.
    """

    def __init__(self, always_confirm: bool = False) -> None:
        self.always_confirm = always_confirm
        self.confirmations: List[str] = []
        self.opened_urls: List[str] = []

    def on_progress(self, progress: "DeploymentProgress") -> None:
        logger.info("[%5.1f%%] %s", progress.progress, progress.message)

    def confirm(self, message: str) -> bool:
        self.confirmations.append(message)
        logger.info("Auto-responding %s to: %s", "yes" if self.always_confirm else "no", message.splitlines()[0])
        return self.always_confirm

    def open_url(self, url: str) -> None:
        self.opened_urls.append(url)
        logger.info("Not opening URL in non-interactive mode: %s", url)

    def spawn_terminal(self, deployment_name: str, server_ip: str, command: str) -> None:
        logger.info("Skipping interactive session for %s in non-interactive mode", deployment_name)
