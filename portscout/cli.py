#!/usr/bin/env python3
"""
Portscout CLI - Command Line Interface
Single-host port scanner with connect, SYN and UDP probes
"""

import asyncio
import logging
import os
import signal
import sys
from datetime import datetime
from typing import Optional

import click
from rich.console import Console
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn
from rich.table import Table

from portscout.config import OUTPUT_FORMATS, Profile, Settings, load_settings
from portscout.core.errors import PortscoutError, PrivilegeError
from portscout.core.models import ScanKind
from portscout.core.ports import get_top_ports
from portscout.core.report import ScanReport
from portscout.core.scanner import ScanOptions, Scanner
from portscout.utils.output import OutputFormatter

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)

DEFAULT_PORTS = "1-1000"


def setup_logging(verbose: int):
    """Setup logging based on verbosity level"""
    if verbose == 0:
        level = logging.WARNING
    elif verbose == 1:
        level = logging.INFO
    else:
        level = logging.DEBUG

    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def create_scan_options(params: dict, settings: Settings,
                        profile: Optional[Profile] = None) -> ScanOptions:
    """Create ScanOptions from click parameters, then the profile, then settings"""
    if params.get('ports'):
        ports = params['ports']
    elif params.get('top_ports'):
        ports = get_top_ports(params['top_ports'])
    elif params.get('fast_scan'):
        ports = get_top_ports(100)
    elif profile is not None and profile.ports is not None:
        ports = profile.ports
    else:
        ports = DEFAULT_PORTS

    def pick(name, setting):
        value = params.get(name)
        if value is not None:
            return value
        preset = getattr(profile, setting) if profile is not None else None
        return preset if preset is not None else getattr(settings, setting)

    options = ScanOptions(
        scan_kind=ScanKind(pick('scan_type', 'scan_type')),
        ports=ports,
        concurrency=pick('concurrency', 'concurrency'),
        timeout=pick('timeout', 'timeout_ms') / 1000.0,
        rate_limit=pick('rate_limit', 'rate_limit'),
        grab_banners=bool(params.get('banner') or (profile is not None and profile.banner)),
        banner_timeout=settings.banner_timeout,
        interface=params.get('interface'),
        grace_period=settings.grace_period,
    )
    options.validate()
    return options


def print_profiles(settings: Settings):
    table = Table(title="Scan Profiles", show_header=True, header_style="bold cyan")
    table.add_column("Name", style="bold")
    table.add_column("Scan Type")
    table.add_column("Ports")
    table.add_column("Description")
    for name, profile in sorted(settings.all_profiles().items()):
        ports = profile.ports or DEFAULT_PORTS
        if len(ports) > 24:
            ports = ports[:21] + "..."
        table.add_row(name, profile.scan_type or settings.scan_type, ports, profile.description)
    console.print(table)


async def run_scan(target: str, options: ScanOptions, show_progress: bool) -> ScanReport:
    """Run one scan; SIGINT cancels it and yields a partial report"""
    loop = asyncio.get_running_loop()

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        BarColumn(),
        MofNCompleteColumn(),
        TextColumn("[progress.percentage]{task.percentage:>3.0f}%"),
        console=err_console,
        disable=not show_progress,
    ) as progress:
        task = progress.add_task("Scanning...", total=None)

        def on_progress(completed, total, outcome):
            progress.update(task, completed=completed, total=total)

        scanner = Scanner(options, progress=on_progress)
        try:
            loop.add_signal_handler(signal.SIGINT, scanner.cancel)
            handler_installed = True
        except (NotImplementedError, RuntimeError):
            handler_installed = False
        try:
            return await scanner.scan(target)
        finally:
            if handler_installed:
                loop.remove_signal_handler(signal.SIGINT)


def emit_report(report: ScanReport, fmt: str, show_closed: bool, output_file: Optional[str]):
    formatter = OutputFormatter(report, show_closed=show_closed)
    if fmt == 'json':
        click.echo(formatter.to_json())
    elif fmt == 'csv':
        click.echo(formatter.to_csv(), nl=False)
    else:
        formatter.render_plain(console)

    if output_file:
        formatter.save(output_file, fmt)
        err_console.print(f"Output saved to: {output_file}")


@click.command()
@click.argument('target', required=False)
# Port specification
@click.option('-p', '--ports', help='Ports to scan (e.g., 22, 1-1000, 22,80,443,8000-8100) [default: 1-1000]')
@click.option('--top-ports', type=click.IntRange(min=1), help='Scan <number> most common ports')
@click.option('-F', '--fast-scan', is_flag=True, help='Fast mode - Scan top 100 ports')
@click.option('-P', '--profile', help='Use a named scan profile (see --list-profiles)')
# Scan behaviour
@click.option('-s', '--scan-type', type=click.Choice([kind.value for kind in ScanKind]),
              help='Scan type: connect (default), syn or udp; syn and udp need root')
@click.option('-c', '--concurrency', type=click.IntRange(min=1), help='Maximum number of concurrent probes [default: 500]')
@click.option('-t', '--timeout', type=click.IntRange(min=1), help='Per-probe timeout in milliseconds [default: 3000]')
@click.option('--rate-limit', type=click.IntRange(min=0), help='Maximum probes per second (0 = unlimited)')
@click.option('-i', '--interface', help='Network interface for syn/udp scans')
@click.option('-b', '--banner', is_flag=True, help='Grab service banners from open ports (connect scan)')
# Output options
@click.option('-o', '--output', type=click.Choice(OUTPUT_FORMATS), help='Output format [default: plain]')
@click.option('--output-file', type=click.Path(dir_okay=False, writable=True), help='Also write output to this file')
@click.option('--show-closed', is_flag=True, help='Show closed ports in results')
@click.option('-v', '--verbose', count=True, help='Increase verbosity level')
@click.option('--config', 'config_path', type=click.Path(dir_okay=False), help='Settings file (JSON)')
@click.option('--list-profiles', is_flag=True, help='List available scan profiles and exit')
def main(target, **params):
    """
    Portscout - Async Port Scanner

    Examples:
      portscout 192.168.1.1
      portscout -p 22,80,443 -b example.com
      sudo portscout -s syn -p 1-65535 -c 1000 10.0.0.5
      sudo portscout -s udp --top-ports 50 10.0.0.5
      portscout -P web -t 8000 example.com
    """
    setup_logging(params.get('verbose', 0))

    try:
        settings = load_settings(params.get('config_path'))
        if params.get('list_profiles'):
            print_profiles(settings)
            return
        if target is None:
            raise click.UsageError("Missing argument 'TARGET'.")
        profile = settings.get_profile(params['profile']) if params.get('profile') else None
        options = create_scan_options(params, settings, profile)
    except PortscoutError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)

    fmt = params.get('output') or settings.output_format

    if options.scan_kind.requires_privileges and hasattr(os, "geteuid") and os.geteuid() != 0:
        logger.warning(f"{options.scan_kind.label} scans open raw sockets and normally need root")

    if fmt == 'plain':
        console.print(f"[bold]Starting Portscout[/bold] at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
        if profile is not None:
            console.print(f"Profile: [cyan]{profile.name}[/cyan]")
        console.print(f"Scan type: [cyan]{options.scan_kind.label}[/cyan]")
        console.print(f"Target: [cyan]{target}[/cyan]")
        console.print(f"Ports: [cyan]{options.ports}[/cyan]")
        console.print()

    try:
        report = asyncio.run(run_scan(target, options, show_progress=params.get('verbose', 0) > 0))
    except PrivilegeError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        err_console.print(f"[yellow]Hint:[/yellow] {e.hint}")
        sys.exit(1)
    except PortscoutError as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)
    except Exception as e:
        err_console.print(f"\n[bold red]Error:[/bold red] {str(e)}")
        logger.exception("Scan failed")
        sys.exit(1)

    if report.partial:
        err_console.print("[bold yellow]Scan interrupted, showing partial results[/bold yellow]")

    try:
        emit_report(report, fmt, params.get('show_closed', False), params.get('output_file'))
    except (OSError, PortscoutError) as e:
        err_console.print(f"[bold red]Error:[/bold red] {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
