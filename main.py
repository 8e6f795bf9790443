from __future__ import annotations

import asyncio
import signal
from contextlib import aclosing
from pathlib import Path
from typing import List, Optional

import typer
import yaml
from pydantic import ValidationError

from quickscan.async_scanner import Probe, probe_port
from quickscan.config import AppCfg, LoggingCfg, ScanCfg, load_config
from quickscan.log import setup_logging
from quickscan.models import PortOpen, ScanCompleted, ScanEvent, ScanStarted
from quickscan.orchestrator import ScanOrchestrator
from quickscan.targets import read_targets_file

app = typer.Typer(help="QuickScan: fast concurrent TCP connect port scanner")

BANNER = r"""
 ╔═╗ ┬ ┬┬┌─┐┬┌─  ╔═╗┌─┐┌─┐┌┐┌
 ║═╬╗│ │││  ├┴┐  ╚═╗│  ├─┤│││
 ╚═╝╚└─┘┴└─┘┴ ┴  ╚═╝└─┘┴ ┴┘└┘"""


def print_banner() -> None:
    typer.secho(BANNER, fg=typer.colors.BLUE, bold=True)
    typer.echo()


def print_event(event: ScanEvent) -> None:
    if isinstance(event, ScanStarted):
        typer.secho(f"[*] Scanning host: {event.address}", fg=typer.colors.CYAN, bold=True)
        typer.secho(f"[*] Port range: {event.ports}\n", fg=typer.colors.CYAN, bold=True)
    elif isinstance(event, PortOpen):
        typer.echo(f"{event.port}: " + typer.style("Open", fg=typer.colors.GREEN))
    elif isinstance(event, ScanCompleted):
        if event.cancelled:
            typer.secho("\n[!] Scan cancelled.\n", fg=typer.colors.RED, bold=True)
        else:
            typer.secho("\n[+] Scan completed.\n", fg=typer.colors.YELLOW, bold=True)


def config_or_exit(path: Optional[Path]) -> AppCfg:
    """Defaults when no --config was given; a named file must exist and be valid."""
    if path is not None and not path.is_file():
        typer.secho(f"[!] Config file not found: {path}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2)
    try:
        return load_config(path)
    except (yaml.YAMLError, ValidationError) as e:
        typer.secho(f"[!] Invalid config {path}: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2)


async def run_scan(cfg: ScanCfg, tokens: List[str], probe: Probe = probe_port) -> bool:
    """Prints events as they arrive. Returns True if the run was interrupted."""
    orchestrator = ScanOrchestrator(cfg, probe=probe)
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, orchestrator.cancel)
        installed = True
    except (NotImplementedError, RuntimeError):
        # no loop signal handlers on Windows or off the main thread
        installed = False

    try:
        async with aclosing(orchestrator.run(tokens)) as events:
            async for event in events:
                print_event(event)
    finally:
        if installed:
            loop.remove_signal_handler(signal.SIGINT)
    return orchestrator.cancelled


@app.command()
def scan(
    host: Optional[str] = typer.Option(None, "--host", "-H", help="IP/domain or CIDR (e.g. 192.168.1.0/24)"),
    port_range: Optional[str] = typer.Option(None, "--range", "-r", help="Port ranges: 80,443,1-65535,1000-2000,..."),
    threads: Optional[int] = typer.Option(None, "--threads", "-t", help="Number of concurrent probes"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Seconds per port"),
    file: Optional[Path] = typer.Option(None, "--file", "-f", help="File with one IP/domain/CIDR per line"),
    config: Optional[Path] = typer.Option(None, "--config", "-c"),
    no_banner: bool = typer.Option(False, "--no-banner"),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING or ERROR"),
) -> None:
    # 1. Settings: config file first, explicit flags on top
    cfg = config_or_exit(config)

    overrides = {"host": host, "range": port_range, "threads": threads, "timeout": timeout}
    try:
        scan_cfg = ScanCfg.model_validate(
            {**cfg.scan.model_dump(), **{k: v for k, v in overrides.items() if v is not None}}
        )
        log_cfg = cfg.logging
        if log_level is not None:
            log_cfg = LoggingCfg.model_validate({**log_cfg.model_dump(), "level": log_level.upper()})
    except ValidationError as e:
        typer.secho(f"[!] Invalid options: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(2)

    setup_logging(log_cfg, name="quickscan")

    # 2. Targets: a file aborts the run before any scan if it cannot be read
    if file is not None:
        try:
            tokens = read_targets_file(file)
        except (OSError, UnicodeDecodeError) as e:
            typer.secho(f"[!] Cannot read target file {file}: {e}", fg=typer.colors.RED, err=True)
            raise typer.Exit(1)
    else:
        tokens = [scan_cfg.host]

    if not no_banner:
        print_banner()

    # 3. Scan; Ctrl-C cancels it and the exit code is 130
    if asyncio.run(run_scan(scan_cfg, tokens)):
        raise typer.Exit(130)


@app.command()
def api(config: Optional[Path] = typer.Option(None, "--config", "-c")) -> None:
    from quickscan.api import create_app

    cfg = config_or_exit(config)
    setup_logging(cfg.logging, name="quickscan-api")
    create_app(cfg.scan).run(host=cfg.api.bind_host, port=cfg.api.bind_port)


if __name__ == "__main__":
    app()
