"""
CLI entry point for drivervisor: run a UI-automation driver under supervision.
"""

import asyncio
import sys
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

try:
    from importlib.metadata import version as pkg_version

    _version = pkg_version("drivervisor")
except Exception:
    _version = "0.3.0"

from drivervisor.core.launcher import DriverLauncher
from drivervisor.core.supervisor import StartError
from drivervisor.models.service_config import (
    LOG_FILE_NAME,
    DriverServiceConfig,
    ServiceConfigError,
    load_service_config,
    parse_service_config,
)

console = Console()
console_err = Console(stderr=True)


# =============================================================================
# Root CLI Group
# =============================================================================


@click.group()
@click.version_option(version=_version, prog_name="drivervisor")
@click.option("--debug", is_flag=True, hidden=True, help="Enable debug logging")
@click.pass_context
def cli(ctx: click.Context, debug: bool):
    """
    Drivervisor: start a driver, wait until it listens, stop it on exit.

    \b
        drivervisor run                         # Default WinAppDriver install
        drivervisor run --config driver.yaml    # Options from YAML
        drivervisor run -- 127.0.0.1 4723       # Pass arguments to the driver
        drivervisor check-config driver.yaml    # Validate a config file
    """
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug

    if debug:
        import logging

        logging.basicConfig(level=logging.DEBUG, format="[%(levelname)s] %(name)s: %(message)s")
        logging.getLogger("asyncio").setLevel(logging.WARNING)


# =============================================================================
# Helpers
# =============================================================================


def _load_options(config_file: str | None, overrides: dict) -> DriverServiceConfig:
    """Merge a YAML config (if any) with command-line overrides."""
    base = load_service_config(config_file) if config_file else DriverServiceConfig()
    data = base.model_dump()
    data.update({key: value for key, value in overrides.items() if value is not None})
    return parse_service_config(data, source=config_file or "command line")


def _print_settings(options: DriverServiceConfig) -> None:
    table = Table(show_header=True, header_style="bold", box=None, padding=(0, 2))
    table.add_column("Option", style="cyan")
    table.add_column("Value")

    table.add_row("command", options.command)
    table.add_row("args", " ".join(options.args) or "-")
    table.add_row("log_path", options.log_path or "-")
    table.add_row("stdin", options.stdin)
    table.add_row("encoding", options.encoding)
    table.add_row("ready_markers", ", ".join(options.ready_markers))
    table.add_row("failure_markers", ", ".join(options.failure_markers) or "-")
    table.add_row(
        "start_timeout",
        f"{options.start_timeout:g}s" if options.start_timeout else "none",
    )
    table.add_row("platforms", ", ".join(options.platforms))
    console.print(table)


async def _serve(launcher: DriverLauncher) -> int | None:
    """Start the driver and block until it exits; always stop it on the way out."""
    try:
        ready = await launcher.on_prepare()
    except StartError:
        # Reap the killed driver before the event loop goes away
        await launcher.supervisor.wait()
        raise
    if ready is None:
        return None

    try:
        console.print(
            f"[bold green]✓ Driver ready[/bold green] "
            f"(pid {ready.pid}, {ready.elapsed:.1f}s)"
        )
        if launcher.supervisor.log_file:
            console.print(f"[grey62]Logging to {launcher.supervisor.log_file}[/grey62]")
        elif launcher.log_error:
            console.print(f"[yellow]Warning:[/yellow] {launcher.log_error}")
        console.print("[grey62]Press Ctrl-C to stop.[/grey62]")

        return await launcher.supervisor.wait()
    finally:
        launcher.on_complete()


# =============================================================================
# Commands
# =============================================================================


@cli.command(context_settings={"ignore_unknown_options": True})
@click.option("--config", "-c", "config_file", type=click.Path(exists=True, dir_okay=False), default=None, help="YAML service config")
@click.option("--command", default=None, help="Driver executable")
@click.option("--log-dir", default=None, help=f"Directory for {LOG_FILE_NAME}")
@click.option("--timeout", type=float, default=None, help="Seconds to wait for readiness")
@click.option("--encoding", default=None, help="Output codec, or 'auto'")
@click.option("--stdin", type=click.Choice(["pipe", "ignore"]), default=None, help="How to wire the driver's stdin")
@click.option("--ready-marker", "ready_markers", multiple=True, help="Text that signals readiness (repeatable)")
@click.option("--failure-marker", "failure_markers", multiple=True, help="Text that signals failure (repeatable)")
@click.option("--any-platform", is_flag=True, help="Launch even where the driver is not supported")
@click.argument("driver_args", nargs=-1, type=click.UNPROCESSED)
def run(
    config_file: str | None,
    command: str | None,
    log_dir: str | None,
    timeout: float | None,
    encoding: str | None,
    stdin: str | None,
    ready_markers: tuple[str, ...],
    failure_markers: tuple[str, ...],
    any_platform: bool,
    driver_args: tuple[str, ...],
):
    """
    Start the driver and keep it running until it exits or Ctrl-C.

    \b
    Examples:
        drivervisor run
        drivervisor run --log-dir logs -- 127.0.0.1 4723
        drivervisor run --command ./driver --ready-marker "listening" --timeout 10
    """
    overrides = {
        "command": command,
        "log_path": log_dir,
        "start_timeout": timeout,
        "encoding": encoding,
        "stdin": stdin,
        "ready_markers": list(ready_markers) or None,
        "failure_markers": list(failure_markers) or None,
        "args": list(driver_args) or None,
    }
    if any_platform:
        overrides["platforms"] = [sys.platform]

    try:
        options = _load_options(config_file, overrides)
    except ServiceConfigError as e:
        console_err.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    launcher = DriverLauncher(options)
    if not launcher.supported:
        console.print(
            f"[yellow]Driver is not supported on {launcher.platform}; nothing to run.[/yellow] "
            "Use --any-platform to launch it anyway."
        )
        return

    try:
        exit_code = asyncio.run(_serve(launcher))
    except StartError as e:
        console_err.print(f"[red]Error:[/red] {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        console.print("[grey62]Driver stopped.[/grey62]")
        return

    console.print(f"[yellow]Driver exited[/yellow] (exit code: {exit_code})")
    if exit_code:
        sys.exit(1)


@cli.command("check-config")
@click.argument("config_file", type=click.Path(dir_okay=False))
def check_config(config_file: str):
    """
    Validate a YAML service config and show the resolved settings.
    """
    try:
        options = load_service_config(config_file)
    except FileNotFoundError:
        console_err.print(f"[red]Error:[/red] File not found: {config_file}")
        sys.exit(1)
    except ServiceConfigError as e:
        console_err.print(f"[red]Error:[/red] {e}")
        sys.exit(1)

    console.print(f"[bold green]✓ {Path(config_file).name} is valid[/bold green]")
    _print_settings(options)


if __name__ == "__main__":
    cli()
