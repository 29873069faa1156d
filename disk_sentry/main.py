import typer
import sys
import json
import signal
from typing import Optional
from rich.console import Console
from rich.table import Table
from .core.config import config
from .core.logger import logger, log_file_path, set_verbose
from .core.engine import DiskEventEngine
from .core.errors import PreconditionViolation, ProviderUnavailable
from .core.events import EventType, ResolvedDiskRecord
from .core.monitor import DiskMonitor
from .platforms.windows import WindowsDiskProvider

app = typer.Typer(help="Watch for physical disk attach/detach events.")
console = Console()
engine_defaults = config["engine"]

def build_engine() -> DiskEventEngine:
    if sys.platform != 'win32':
        raise ProviderUnavailable(f"Unsupported platform: {sys.platform}")
    return DiskEventEngine(WindowsDiskProvider())

def render_record(record: ResolvedDiskRecord) -> Table:
    color = "green" if record.event_type == EventType.ATTACHED else "yellow"
    table = Table(title=f"[{color}]Disk {record.event_type.value}[/{color}]")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="white", overflow="fold")
    for key, value in record.to_dict().items():
        if isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        table.add_row(key, str(value))
    return table

def print_record(record: ResolvedDiskRecord, as_json: bool = False):
    if as_json:
        console.print_json(json.dumps(record.to_dict()))
    else:
        console.print(render_record(record))

@app.command("next")
def next_event(
    timeout_ms: Optional[int] = typer.Option(engine_defaults["timeout_ms"], "--timeout-ms", "-t", help="Milliseconds to wait; omit to wait forever"),
    poll_ceiling: Optional[float] = typer.Option(None, "--poll-ceiling", help="Seconds to wait for a drive letter on attach (default from config)"),
    poll_interval_ms: Optional[int] = typer.Option(None, "--poll-interval-ms", help="Delay between mount checks (default from config)"),
    first_only: Optional[bool] = typer.Option(None, "--first-only/--all-volumes", help="Stop at the first mounted volume (default from config)"),
    as_json: bool = typer.Option(False, "--json", help="Print the record as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")
):
    """Wait for a single disk attach/detach event and print it."""
    set_verbose(verbose)
    try:
        engine = build_engine()
        record = engine.next_event(
            timeout_ms=timeout_ms,
            poll_ceiling_s=poll_ceiling,
            poll_interval_ms=poll_interval_ms,
            first_only=first_only,
        )
    except PreconditionViolation as e:
        console.print(f"[red]Invalid argument: {e}[/red]")
        raise typer.Exit(code=2)
    except ProviderUnavailable as e:
        logger.error(f"Disk events unavailable: {e}")
        console.print(f"[bold red]Disk event provider unavailable: {e}[/bold red]")
        raise typer.Exit(code=2)

    if record is None:
        console.print(f"[yellow]No disk event within {timeout_ms} ms.[/yellow]")
        raise typer.Exit(code=1)

    print_record(record, as_json)

@app.command()
def watch(
    as_json: bool = typer.Option(False, "--json", help="Print records as JSON"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging")
):
    """Watch disk events until interrupted."""
    set_verbose(verbose)
    try:
        engine = build_engine()
    except ProviderUnavailable as e:
        console.print(f"[bold red]{e}[/bold red]")
        raise typer.Exit(code=2)

    console.print(f"[bold green]Starting Disk Sentry on {sys.platform}...[/bold green]")
    console.print(f"Logging to: {log_file_path}")

    def handle_disk_event(record: ResolvedDiskRecord):
        print_record(record, as_json)
        if record.event_type == EventType.ATTACHED and not record.mount_point:
            console.print(f"[yellow]No drive letter assigned to disk #{record.disk_number} yet.[/yellow]")

    monitor = DiskMonitor(engine, callback=handle_disk_event)

    # Handle Ctrl+C gracefully
    def signal_handler(sig, frame):
        console.print("\n[bold red]Stopping service...[/bold red]")
        monitor.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    monitor.start()

    console.print("\n[bold cyan]Watching for disks. Type 'q' to QUIT.[/bold cyan]")
    try:
        while True:
            cmd = input().strip().lower()
            if cmd in ('q', 'quit', 'exit'):
                break
    except (KeyboardInterrupt, EOFError):
        pass
    monitor.stop()

@app.command()
def report(limit: int = typer.Option(50, "--limit", "-n", help="Number of recent events to show")):
    """Summarize recent disk events from the log."""
    console.print("[bold]Recent Disk Events[/bold]")
    if not log_file_path.exists():
        console.print("[red]No logs found.[/red]")
        return

    table = Table(title="Disk Activity")
    table.add_column("Timestamp", style="cyan", no_wrap=True)
    table.add_column("Event", style="magenta")
    table.add_column("Disk", justify="right")
    table.add_column("Model", style="green")
    table.add_column("Serial", style="white")
    table.add_column("Mount", style="yellow")

    rows = []
    with open(log_file_path, 'r', encoding="utf-8") as f:
        for line in f:
            try:
                entry = json.loads(line)
            except json.JSONDecodeError:
                continue
            info = entry.get("device_info")
            if not isinstance(info, dict):
                continue
            rows.append((
                entry.get("timestamp", ""),
                str(info.get("eventType", "")),
                str(info.get("diskNumber", "")),
                str(info.get("model", "")),
                str(info.get("serialNumber", "")),
                ", ".join(info.get("mountPoints") or []) or str(info.get("mountPoint", "")),
            ))

    if not rows:
        console.print("[yellow]No disk events logged yet.[/yellow]")
        return

    for row in rows[-limit:]:
        table.add_row(*row)
    console.print(table)

if __name__ == "__main__":
    app()
