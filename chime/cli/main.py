"""
Chime CLI entry point.

Commands:
    chime run     — Run the schedulers; reads commands from stdin
    chime list    — Show stored alarms/reminders
    chime config  — Show current configuration
    chime logs    — Show recent logs
    chime version — Show version
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

app = typer.Typer(
    name="chime",
    help="Chime — time-triggered alarms and reminders.",
    add_completion=False,
)

console = Console()


def get_chime_home() -> Path:
    """Get the Chime home directory."""
    return Path.home() / ".chime"


def get_config_path() -> Path:
    """Get the config file path."""
    return get_chime_home() / "config.toml"


def _load_config():
    from chime.core.config import ChimeConfig
    from chime.core.errors import ConfigError

    try:
        return ChimeConfig.load()
    except ConfigError as e:
        console.print(f"[red]{e.message}[/red]")
        raise typer.Exit(1)


def _build_notifier(config):
    from chime.notifications.channels.file import FileNotifier
    from chime.notifications.channels.telegram import TelegramNotifier

    if config.notifier.kind == "telegram":
        if not config.telegram.configured:
            console.print("[red]notifier.kind is 'telegram' but telegram.token is not set[/red]")
            raise typer.Exit(1)
        return TelegramNotifier(config.telegram.token)
    return FileNotifier(Path(config.notifier.log_path).expanduser())


@app.command()
def run(
    kind: str = typer.Option("reminders", "--kind", "-k", help="Kind that stdin commands are added to"),
    destination: int = typer.Option(0, "--destination", "-d", help="Destination id for stdin commands"),
    requester: int = typer.Option(0, "--requester", "-u", help="Requester id for stdin commands"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug output"),
) -> None:
    """Run the schedulers. Each stdin line is parsed as a command."""
    config = _load_config()
    if kind not in config.scheduler.kinds:
        console.print(f"[red]Unknown kind {kind!r}; configured: {', '.join(config.scheduler.kinds)}[/red]")
        raise typer.Exit(1)
    try:
        code = asyncio.run(_run(config, kind, destination, requester, verbose or config.logging.verbose))
    except KeyboardInterrupt:
        console.print("[dim]Interrupted[/dim]")
        code = 130
    raise typer.Exit(code)


async def _run(config, kind: str, destination: int, requester: int, verbose: bool) -> int:
    """Run every configured scheduler until stdin closes or one of them fails."""
    from chime.core.errors import CorruptStateError, StorageError, ValidationError
    from chime.logging import setup_logging
    from chime.parsing.command import CommandParser, format_confirmation
    from chime.scheduler.engine import build_engine

    setup_logging(
        log_dir=config.get_log_dir(),
        console_level=logging.DEBUG if verbose else logging.WARNING,
    )
    logger = logging.getLogger("chime")

    notifier = _build_notifier(config)
    engines = {k: build_engine(config, notifier, k) for k in config.scheduler.kinds}
    started = []
    try:
        for engine in engines.values():
            await engine.start()
            started.append(engine)
    except CorruptStateError as e:
        console.print(f"[red]Refusing to start: {e.message}[/red]")
        for engine in started:
            await engine.stop()
        await notifier.close()
        return 1

    parser = CommandParser(config.parser.prefix)
    target = engines[kind]
    loop = asyncio.get_running_loop()
    stdin_closed = asyncio.Event()

    def _read_stdin() -> None:
        for line in sys.stdin:
            text = line.rstrip("\n")
            try:
                request = parser.parse(text, destination=destination, requester=requester)
                if request is None:
                    continue
                entry = target.add_sync(request)
                console.print(f"[green]{format_confirmation(entry)}[/green]")
            except ValidationError as e:
                console.print(f"[yellow]{e.message}[/yellow]")
            except StorageError as e:
                console.print(f"[red]Could not save: {e.message}[/red]")
        loop.call_soon_threadsafe(stdin_closed.set)

    reader = threading.Thread(target=_read_stdin, name="stdin-reader", daemon=True)
    reader.start()
    console.print(
        Panel(
            f"Scheduling [bold]{', '.join(engines)}[/bold] via [bold]{notifier.name}[/bold]\n"
            f"[dim]Commands start with {config.parser.prefix!r}; Ctrl-D to exit[/dim]",
            border_style="cyan",
        )
    )

    stdin_waiter = asyncio.create_task(stdin_closed.wait())
    try:
        waiters = [stdin_waiter] + [e.task for e in engines.values() if e.task is not None]
        await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
    finally:
        # Runs on Ctrl-C too; stop() releases each engine's blocked wait
        stdin_waiter.cancel()
        for engine in engines.values():
            await engine.stop()
        await notifier.close()

    failed = [e for e in engines.values() if e.failure is not None]
    for engine in failed:
        console.print(f"[red]{engine.kind} scheduler halted: {engine.failure}[/red]")
    logger.info("Chime stopped")
    return 1 if failed else 0


@app.command("list")
def list_entries(
    kind: str = typer.Option(None, "--kind", "-k", help="Only show this kind"),
) -> None:
    """Show stored alarms and reminders."""
    from chime.core.errors import CorruptStateError
    from chime.scheduler.persistence import make_gateway

    config = _load_config()
    kinds = [kind] if kind else config.scheduler.kinds
    for k in kinds:
        gateway = make_gateway(config.scheduler.backend, config.get_data_dir(), k)
        try:
            entries = sorted(gateway.load_all(), key=lambda e: (e.due_at, e.id))
        except CorruptStateError as e:
            console.print(f"[red]{e.message}[/red]")
            raise typer.Exit(1)

        table = Table(title=f"{k} ({gateway.location})", title_justify="left")
        table.add_column("ID", justify="right", style="cyan")
        table.add_column("Due (UTC)")
        table.add_column("Repeats")
        table.add_column("Every")
        table.add_column("Destination", justify="right")
        table.add_column("Requester", justify="right")
        table.add_column("Message", overflow="fold")
        for e in entries:
            repeats = "forever" if e.repeat_count == -1 else str(e.repeat_count)
            every = f"{e.interval_minutes}m" if e.repeat_count != 0 else "—"
            preview = e.payload_text[:60] + "..." if len(e.payload_text) > 60 else e.payload_text
            table.add_row(
                str(e.id),
                e.due_at.strftime("%Y-%m-%d %H:%M"),
                repeats,
                every,
                str(e.destination),
                str(e.requester) if e.requester else "—",
                preview,
            )
        if entries:
            console.print(table)
        else:
            console.print(f"[dim]No {k} scheduled.[/dim]")


@app.command()
def version() -> None:
    """Show Chime version."""
    from chime import __version__
    console.print(f"Chime v{__version__}")


@app.command()
def logs(
    lines: int = typer.Option(50, "--lines", "-n", help="Number of lines to show"),
) -> None:
    """Show recent logs."""
    from datetime import datetime

    log_dir = _load_config().get_log_dir()
    log_file = log_dir / f"chime_{datetime.now().strftime('%Y%m%d')}.log"
    if not log_file.exists():
        console.print(f"[dim]No log file for today: {log_file}[/dim]")
        raise typer.Exit(0)

    with open(log_file, "r", encoding="utf-8") as f:
        all_lines = f.readlines()
    for line in all_lines[-lines:]:
        console.print(line.rstrip(), markup=False)


@app.command()
def config() -> None:
    """Show current configuration."""
    config_path = get_config_path()
    cfg = _load_config()

    console.print(Panel("[bold]Chime Configuration[/bold]", border_style="cyan"))
    console.print(f"[bold]Config file:[/bold] {config_path}")
    if config_path.exists():
        console.print(Panel(config_path.read_text(), title="config.toml", border_style="dim"))
    else:
        console.print("[dim]Not found; using defaults and CHIME_* variables[/dim]")
    console.print()
    console.print(f"[bold]Backend:[/bold] {cfg.scheduler.backend} in {cfg.get_data_dir()}")
    console.print(f"[bold]Kinds:[/bold] {', '.join(cfg.scheduler.kinds)}")
    console.print(f"[bold]Leeway:[/bold] {cfg.scheduler.leeway_seconds}s")
    console.print(f"[bold]Prefix:[/bold] {cfg.parser.prefix}")
    console.print(f"[bold]Notifier:[/bold] {cfg.notifier.kind}")


if __name__ == "__main__":
    app()
