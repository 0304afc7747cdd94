"""CLI entry point for the drone hub reconciler.

Usage:
    dronehub watch
    dronehub create alpha beta --prompt "Set up the repo"
    dronehub send alpha "Run the tests" --wait 60
    dronehub rename alpha alpha-2
    dronehub delete alpha-2
"""
from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from logging.handlers import RotatingFileHandler
from pathlib import Path

from rich.console import Console
from rich.live import Live
from rich.table import Table

from dronehub.adapters.hub_client import HubClient
from dronehub.engine.config import ReconcilerConfig
from dronehub.engine.errors import DroneHubError
from dronehub.engine.models import CreateSpec, QueuedPrompt, QueuedPromptState
from dronehub.engine.reconciler import Reconciler
from dronehub.engine.yaml_config import load_yaml_config

logger = logging.getLogger(__name__)

console = Console()


def _configure_logging(level_name: str, log_file: str | None) -> None:
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s %(message)s", datefmt="%H:%M:%S",
    )
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(stream_handler)
    if log_file:
        path = Path(log_file).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)


def _build_config(args: argparse.Namespace) -> ReconcilerConfig:
    config = (
        load_yaml_config(args.config) if args.config else ReconcilerConfig.from_env()
    )
    if args.hub_url:
        config.hub_url = args.hub_url
    return config


def render_drones(reconciler: Reconciler) -> Table:
    """Rich table of the drones a dashboard would show right now."""
    table = Table(title=f"Drones @ {reconciler.config.hub_url}")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Phase")
    table.add_column("Busy", justify="center")
    table.add_column("Queued", justify="right")
    table.add_column("")

    listed = {r.id for r in reconciler.snapshot}
    for record in reconciler.display_drones():
        queued = sum(
            len(reconciler.queue.items(key))
            for key in reconciler.queue.keys()
            if key.drone_id == record.id
        )
        flags = []
        if record.id not in listed:
            flags.append("[dim]pending[/dim]")
        if record.id == reconciler.selected_drone:
            flags.append("[bold]selected[/bold]")
        phase_style = {"error": "red", "ready": "green"}.get(record.phase, "yellow")
        table.add_row(
            record.id,
            record.name,
            f"[{phase_style}]{record.phase}[/{phase_style}]",
            "•" if record.busy else "",
            str(queued) if queued else "",
            " ".join(flags),
        )
    if reconciler.last_poll_error:
        table.caption = f"[red]poll failed: {reconciler.last_poll_error}[/red]"
    return table


async def _watch(config: ReconcilerConfig, once: bool) -> int:
    async with HubClient(config.hub_url, timeout_seconds=config.request_timeout_seconds) as hub:
        reconciler = Reconciler(hub, hub, config)
        if once:
            await reconciler.poll_once()
            console.print(render_drones(reconciler))
            return 0 if reconciler.last_poll_error is None else 1
        try:
            with Live(render_drones(reconciler), console=console, auto_refresh=False) as live:
                while reconciler.alive:
                    await reconciler.poll_once()
                    live.update(render_drones(reconciler), refresh=True)
                    await asyncio.sleep(config.poll_interval_seconds)
        finally:
            reconciler.close()
    return 0


async def _create(config: ReconcilerConfig, args: argparse.Namespace) -> int:
    specs = [
        CreateSpec(
            name=name,
            group=args.group,
            repo_path=args.repo,
            seed_chat=config.default_chat,
            seed_agent=args.agent,
            seed_model=args.model,
            seed_prompt=args.prompt,
        )
        for name in args.names
    ]
    async with HubClient(config.hub_url, timeout_seconds=config.request_timeout_seconds) as hub:
        reconciler = Reconciler(hub, hub, config)
        outcome = await reconciler.create_drones(specs)
    for created in outcome.accepted:
        console.print(f"[green]queued[/green] {created.name} ({created.id})")
    for rejected in outcome.rejected:
        console.print(f"[red]rejected[/red] {rejected.name or '?'}: {rejected.error}")
    return 0 if not outcome.pending_names else 1


async def _send(config: ReconcilerConfig, args: argparse.Namespace) -> int:
    async with HubClient(config.hub_url, timeout_seconds=config.request_timeout_seconds) as hub:
        reconciler = Reconciler(hub, hub, config)
        try:
            await reconciler.poll_once()
            result = await reconciler.send_prompt(args.drone, args.chat, args.prompt)
            if not isinstance(result, QueuedPrompt):
                console.print(f"[green]accepted[/green] prompt {result.prompt_id}")
                return 0

            console.print(f"queued prompt {result.prompt_id}; waiting for {args.drone}")
            deadline = time.monotonic() + args.wait
            while time.monotonic() < deadline:
                await asyncio.sleep(config.poll_interval_seconds)
                await reconciler.poll_once()
                await reconciler.drain()
                item = reconciler.queue.get(
                    reconciler.queue_key(args.drone, args.chat), result.prompt_id,
                )
                if item is None:
                    console.print("[green]delivered[/green]")
                    return 0
                if item.state is QueuedPromptState.FAILED:
                    console.print(f"[red]failed[/red]: {item.error}")
                    return 1
            console.print(f"[yellow]still queued after {args.wait:.0f}s[/yellow]")
            return 1
        finally:
            reconciler.close()


async def _rename(config: ReconcilerConfig, args: argparse.Namespace) -> int:
    async with HubClient(config.hub_url, timeout_seconds=config.request_timeout_seconds) as hub:
        reconciler = Reconciler(hub, hub, config)
        await reconciler.poll_once()
        result = await reconciler.rename_drone(args.drone, args.new_name)
    console.print(f"renamed {result.old_name or result.id} -> {result.new_name}")
    return 0


async def _delete(config: ReconcilerConfig, args: argparse.Namespace) -> int:
    async with HubClient(config.hub_url, timeout_seconds=config.request_timeout_seconds) as hub:
        reconciler = Reconciler(hub, hub, config)
        await reconciler.delete_drone(args.drone)
    console.print(f"deleted {args.drone}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="dronehub",
        description="Optimistic client for a polled drone hub",
    )
    parser.add_argument("--hub-url", default=None, help="Hub API base URL")
    parser.add_argument("--config", default=None, help="YAML config file")
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Enable debug logging",
    )
    parser.add_argument("--log-file", default=None, help="Also log to this file")
    sub = parser.add_subparsers(dest="command", required=True)

    watch = sub.add_parser("watch", help="Poll the hub and show drones")
    watch.add_argument("--once", action="store_true", help="Poll once and exit")

    create = sub.add_parser("create", help="Create one or more drones")
    create.add_argument("names", nargs="+")
    create.add_argument("--prompt", default=None, help="Initial prompt")
    create.add_argument("--group", default=None)
    create.add_argument("--repo", default=None, help="Repository path to attach")
    create.add_argument("--agent", default=None)
    create.add_argument("--model", default=None)

    send = sub.add_parser("send", help="Send (or queue) a prompt")
    send.add_argument("drone")
    send.add_argument("prompt")
    send.add_argument("--chat", default=None)
    send.add_argument(
        "--wait", type=float, default=120.0,
        help="Seconds to wait for a queued prompt to be delivered",
    )

    rename = sub.add_parser("rename", help="Rename a drone")
    rename.add_argument("drone")
    rename.add_argument("new_name")

    delete = sub.add_parser("delete", help="Delete a drone")
    delete.add_argument("drone")
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    config = _build_config(args)
    _configure_logging("DEBUG" if args.verbose else config.log_level, args.log_file)

    handlers = {
        "watch": lambda: _watch(config, args.once),
        "create": lambda: _create(config, args),
        "send": lambda: _send(config, args),
        "rename": lambda: _rename(config, args),
        "delete": lambda: _delete(config, args),
    }
    try:
        code = asyncio.run(handlers[args.command]())
    except DroneHubError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        code = 1
    except KeyboardInterrupt:
        console.print("\nInterrupted.")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
