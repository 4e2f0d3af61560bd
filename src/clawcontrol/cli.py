"""Command-line interface for ClawControl."""

from __future__ import annotations

import argparse
import json
import subprocess
from dataclasses import dataclass
from typing import Callable, Optional

from rich.console import Console
from rich.prompt import Confirm, Prompt
from rich.table import Table

from .config import AppConfig, load_config
from .interaction import AutoResponseHandler
from .models import CHECKPOINT_ORDER, PROVIDER_LABELS, CheckpointName, ProviderName
from .orchestrator import DeploymentError, describe_checkpoint
from .providers import AI_PROVIDERS, CloudProviderError
from .setup import PreconditionError
from .store import StorageError, TemplateError
from .utils.logging import configure_logging
from .workflow import CreateDeploymentRequest, DeploymentWorkflow

console = Console()


@dataclass
class CLIContext:
    """Context captured from CLI arguments."""

    config: AppConfig
    workflow: DeploymentWorkflow


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="clawcontrol",
        description="Provision and manage OpenClaw gateways on cloud VPS instances.",
    )
    parser.add_argument(
        "--config",
        type=str,
        default=None,
        help="Path to a JSON config file overriding defaults.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    new_parser = subparsers.add_parser("new", help="Create a new deployment configuration")
    new_parser.add_argument("name", nargs="?", help="Deployment name (lowercase, digits, hyphens)")
    new_parser.add_argument("--template", help="Template id to start from")
    new_parser.add_argument(
        "--provider", choices=[p.value for p in ProviderName], help="Cloud provider"
    )
    new_parser.add_argument("--api-key", help="Cloud provider API key")
    new_parser.add_argument("--ai-provider", choices=[p["name"] for p in AI_PROVIDERS])
    new_parser.add_argument("--ai-api-key", help="API key for the AI provider")
    new_parser.add_argument("--model", help="Model identifier, e.g. moonshotai/kimi-k2.5")
    new_parser.add_argument("--telegram-bot-token")
    new_parser.add_argument("--telegram-allow-from", help="Telegram user id allowed to chat")
    new_parser.add_argument("--size", help="Server type / droplet size")
    new_parser.add_argument("--region", help="Location / region")
    new_parser.add_argument("--image", help="OS image")
    new_parser.add_argument(
        "--skip-validation", action="store_true", help="Do not check the provider API key"
    )

    deploy_parser = subparsers.add_parser("deploy", help="Deploy or resume a deployment")
    deploy_parser.add_argument("name")
    deploy_parser.add_argument(
        "--non-interactive",
        action="store_true",
        help="Decline every prompt; the Tailscale login URL is printed instead of opened",
    )

    status_parser = subparsers.add_parser("status", help="Show deployment status")
    status_parser.add_argument("name", nargs="?")
    status_parser.add_argument("--json", action="store_true", dest="as_json")

    logs_parser = subparsers.add_parser("logs", help="Show OpenClaw gateway logs")
    logs_parser.add_argument("name")
    logs_parser.add_argument("-n", "--lines", type=int, default=100)

    ssh_parser = subparsers.add_parser("ssh", help="Open an SSH session to the server")
    ssh_parser.add_argument("name")

    restart_parser = subparsers.add_parser("restart", help="Restart the OpenClaw gateway service")
    restart_parser.add_argument("name")

    destroy_parser = subparsers.add_parser("destroy", help="Delete the server and local files")
    destroy_parser.add_argument("name")
    destroy_parser.add_argument(
        "--force", action="store_true", help="Delete local files even if provider cleanup fails"
    )
    destroy_parser.add_argument("--yes", "-y", action="store_true", help="Do not ask for confirmation")

    reset_parser = subparsers.add_parser("reset", help="Forget checkpoints from CHECKPOINT onwards")
    reset_parser.add_argument("name")
    reset_parser.add_argument(
        "--to",
        required=True,
        dest="checkpoint",
        choices=[cp.value for cp in CHECKPOINT_ORDER],
    )

    fork_parser = subparsers.add_parser("fork", help="Copy a deployment's configuration")
    fork_parser.add_argument("source")
    fork_parser.add_argument("new_name")

    templates_parser = subparsers.add_parser("templates", help="List or manage templates")
    group = templates_parser.add_mutually_exclusive_group()
    group.add_argument("--show", metavar="ID")
    group.add_argument("--delete", metavar="ID")
    group.add_argument(
        "--fork", nargs=2, metavar=("ID", "NAME"), help="Save a copy of template ID under NAME"
    )
    templates_parser.add_argument("--provider", choices=[p.value for p in ProviderName])
    templates_parser.add_argument("--size", help="Server type / droplet size for the fork")
    templates_parser.add_argument("--ai-provider", choices=[p["name"] for p in AI_PROVIDERS])
    templates_parser.add_argument("--model", help="Model for the fork")

    return parser


def _build_context(args: argparse.Namespace) -> CLIContext:
    config = load_config(args.config)
    configure_logging(config.logging.level)
    return CLIContext(config=config, workflow=DeploymentWorkflow(config))


def _ask(value: Optional[str], prompt: str, *, password: bool = False, default: Optional[str] = None) -> str:
    if value:
        return value
    return Prompt.ask(prompt, password=password, default=default, console=console) or ""


def handle_new_command(args: argparse.Namespace, context: CLIContext) -> int:
    workflow = context.workflow
    name = _ask(args.name, "Deployment name")

    template = workflow.templates.get(args.template) if args.template else None
    provider_value = template.provider.value if template else args.provider
    if not provider_value:
        provider_value = Prompt.ask(
            "Cloud provider",
            choices=[p.value for p in ProviderName],
            default=ProviderName.HETZNER.value,
            console=console,
        )
    provider = ProviderName(provider_value)

    credentials = context.config.providers
    default_key = (
        credentials.hetzner_api_key if provider == ProviderName.HETZNER else credentials.digitalocean_api_key
    )
    api_key = _ask(args.api_key or default_key, f"{PROVIDER_LABELS[provider]} API key", password=True)

    ai_provider = template.ai_provider if template else args.ai_provider
    if not ai_provider:
        ai_provider = Prompt.ask(
            "AI provider", choices=[p["name"] for p in AI_PROVIDERS], default="openrouter", console=console
        )
    model = template.model if template else _ask(args.model, "Model")

    request = CreateDeploymentRequest(
        name=name,
        provider=provider,
        api_key=api_key,
        ai_provider=ai_provider,
        ai_api_key=_ask(args.ai_api_key, f"{ai_provider} API key", password=True),
        model=model,
        telegram_bot_token=_ask(args.telegram_bot_token, "Telegram bot token", password=True),
        telegram_allow_from=args.telegram_allow_from,
        template_id=template.id if template else None,
        size=args.size,
        region=args.region,
        image=args.image,
        skip_validation=args.skip_validation,
    )
    deployment = workflow.create_deployment(request)
    console.print(f"[green]Created deployment [bold]{deployment.name}[/bold].[/green]")
    console.print(f"Run [bold]clawcontrol deploy {deployment.name}[/bold] to provision it.")
    return 0


def handle_deploy_command(args: argparse.Namespace, context: CLIContext) -> int:
    handler = AutoResponseHandler(always_confirm=False) if args.non_interactive else None
    try:
        state = context.workflow.deploy(args.name, handler)
    except DeploymentError as exc:
        console.print(f"[red]Deployment failed at {exc.checkpoint.value}:[/red] {exc.message}")
        if isinstance(exc.__cause__, PreconditionError):
            first = CHECKPOINT_ORDER[0].value
            console.print(
                "Local files for this deployment are missing, so resuming cannot succeed. Run "
                f"[bold]clawcontrol reset {args.name} --to {first}[/bold] and deploy again to "
                "provision a fresh server."
            )
        else:
            console.print(
                f"Run [bold]clawcontrol deploy {args.name}[/bold] again to resume from the last "
                "successful checkpoint."
            )
        return 1
    console.print(f"[green]Deployment {args.name} is live.[/green]")
    if state.tailscale_ip:
        console.print(f"Gateway reachable on your tailnet at [bold]{state.tailscale_ip}[/bold]")
    return 0


def handle_status_command(args: argparse.Namespace, context: CLIContext) -> int:
    workflow = context.workflow
    if args.name:
        reports = [workflow.status(args.name)]
    else:
        reports = workflow.list_status()

    if args.as_json:
        console.print_json(json.dumps([r.to_payload() for r in reports]))
        return 0

    if not reports:
        console.print("No deployments yet. Create one with [bold]clawcontrol new[/bold].")
        return 0

    table = Table(title="Deployments")
    for column in ("Name", "Provider", "Status", "Server IP", "Tailscale IP", "Progress", "Health"):
        table.add_column(column)
    for report in reports:
        progress = describe_checkpoint(report.last_checkpoint) if report.last_checkpoint else "-"
        if report.health is None:
            health = "-"
        elif report.health.healthy:
            health = "[green]healthy[/green]"
        else:
            health = f"[red]{report.health.detail or 'unreachable'}[/red]"
        table.add_row(
            report.name,
            PROVIDER_LABELS[report.provider],
            report.status.value,
            report.server_ip or "-",
            report.tailscale_ip or "-",
            progress,
            health,
        )
    console.print(table)
    for report in reports:
        if report.last_error and report.status.value == "failed":
            console.print(f"[red]{report.name}: {report.last_error}[/red]")
    return 0


def handle_logs_command(args: argparse.Namespace, context: CLIContext) -> int:
    output = context.workflow.logs(args.name, args.lines)
    console.print(output or "(no log output)", markup=False, highlight=False)
    return 0


def handle_ssh_command(
    args: argparse.Namespace,
    context: CLIContext,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> int:
    argv = context.workflow.ssh_command(args.name)
    return runner(argv, check=False).returncode


def handle_restart_command(args: argparse.Namespace, context: CLIContext) -> int:
    if context.workflow.restart(args.name):
        console.print(f"[green]OpenClaw gateway on {args.name} restarted.[/green]")
        return 0
    console.print(
        f"[red]OpenClaw gateway on {args.name} is not active after restart.[/red] "
        f"Check [bold]clawcontrol logs {args.name}[/bold]."
    )
    return 1


def handle_destroy_command(args: argparse.Namespace, context: CLIContext) -> int:
    if not args.yes and not Confirm.ask(
        f"Destroy [bold]{args.name}[/bold]? The server and its data will be deleted",
        default=False,
        console=console,
    ):
        console.print("Aborted.")
        return 1
    result = context.workflow.destroy(args.name, force=args.force)
    if result.deleted:
        console.print(f"Deleted at provider: {', '.join(result.deleted)}")
    if result.skipped:
        console.print(f"[yellow]Skipped: {', '.join(result.skipped)}[/yellow]")
    console.print(f"[green]Deployment {args.name} destroyed.[/green]")
    return 0


def handle_reset_command(args: argparse.Namespace, context: CLIContext) -> int:
    checkpoint = CheckpointName(args.checkpoint)
    state = context.workflow.reset(args.name, checkpoint)
    console.print(
        f"Reset {args.name} to before '{describe_checkpoint(checkpoint)}' "
        f"({len(state.checkpoints)} checkpoints kept, status {state.status.value})."
    )
    return 0


def handle_fork_command(args: argparse.Namespace, context: CLIContext) -> int:
    deployment = context.workflow.fork(args.source, args.new_name)
    console.print(f"[green]Forked {args.source} into {deployment.name}.[/green]")
    return 0


def handle_templates_command(args: argparse.Namespace, context: CLIContext) -> int:
    templates = context.workflow.templates
    if args.show:
        console.print_json(json.dumps(templates.get(args.show).to_dict()))
        return 0
    if args.delete:
        templates.delete(args.delete)
        console.print(f"Deleted template {args.delete}.")
        return 0
    if args.fork:
        source_id, name = args.fork
        template = templates.fork(
            source_id,
            name,
            provider=ProviderName(args.provider) if args.provider else None,
            size=args.size,
            ai_provider=args.ai_provider,
            model=args.model,
        )
        console.print(f"[green]Saved template [bold]{template.id}[/bold] ({template.description}).[/green]")
        return 0

    table = Table(title="Templates")
    for column in ("ID", "Name", "Provider", "Model", "Built-in"):
        table.add_column(column)
    for template in templates.list():
        table.add_row(
            template.id,
            template.name,
            PROVIDER_LABELS[template.provider],
            f"{template.ai_provider}/{template.model}",
            "yes" if template.built_in else "",
        )
    console.print(table)
    return 0


HANDLERS = {
    "new": handle_new_command,
    "deploy": handle_deploy_command,
    "status": handle_status_command,
    "logs": handle_logs_command,
    "ssh": handle_ssh_command,
    "restart": handle_restart_command,
    "destroy": handle_destroy_command,
    "reset": handle_reset_command,
    "fork": handle_fork_command,
    "templates": handle_templates_command,
}


def dispatch_command(args: argparse.Namespace) -> int:
    handler = HANDLERS[args.command]
    try:
        context = _build_context(args)
        return handler(args, context)
    except FileNotFoundError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return 1
    except (StorageError, TemplateError, CloudProviderError, DeploymentError, ValueError) as exc:
        console.print(f"[red]Error:[/red] {exc}")
        return 1


def run_cli(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    return dispatch_command(args)
