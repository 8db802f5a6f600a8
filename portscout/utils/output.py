"""
Output formatting utilities for Portscout
Supports plain (rich), JSON and CSV output formats
"""

import csv
import io
import json
from typing import Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from portscout.core.errors import ConfigError
from portscout.core.models import PortState
from portscout.core.report import ScanReport

CSV_COLUMNS = ["port", "status", "service", "banner", "response_time_ms"]

STATE_STYLES = {
    PortState.OPEN: "green",
    PortState.CLOSED: "red",
    PortState.FILTERED: "yellow",
    PortState.OPEN_FILTERED: "yellow",
}


class OutputFormatter:
    """Format a scan report in various output formats"""

    def __init__(self, report: ScanReport, show_closed: bool = False):
        self.report = report
        self.show_closed = show_closed

    def to_dict(self) -> dict:
        report = self.report
        summary = report.summary
        results = []
        for outcome in report.visible(self.show_closed):
            entry = {'port': outcome.port, 'status': str(outcome.state)}
            if outcome.service:
                entry['service'] = outcome.service
            if outcome.banner:
                entry['banner'] = outcome.banner
            results.append(entry)

        return {
            'target': report.target.hostname or report.target.ip,
            'ip_address': report.target.ip,
            'scan_type': report.kind.value,
            'ports_scanned': summary.total,
            'open_ports': summary.open,
            'closed_ports': summary.closed,
            'filtered_ports': summary.filtered,
            'open_filtered_ports': summary.open_filtered,
            'partial': report.partial,
            'duration_ms': report.duration_ms,
            'results': results,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    def to_csv(self) -> str:
        buf = io.StringIO()
        writer = csv.writer(buf, lineterminator="\n")
        writer.writerow(CSV_COLUMNS)
        for outcome in self.report.visible(self.show_closed):
            rtt = outcome.response_time_ms
            writer.writerow([
                outcome.port,
                str(outcome.state),
                outcome.service or "unknown",
                outcome.banner or "",
                f"{rtt:.0f}" if rtt is not None else "",
            ])
        return buf.getvalue()

    def render_plain(self, console: Optional[Console] = None):
        """Display the report as a summary panel and a port table"""
        console = console or Console()
        report = self.report
        summary = report.summary

        lines = [
            f"Target: {report.target}",
            f"Scan type: {report.kind.label}",
            f"Ports: {summary.total}/{report.ports_requested} scanned, {summary.open} open, "
            f"{summary.closed} closed, {summary.filtered} filtered"
            + (f", {summary.open_filtered} open|filtered" if summary.open_filtered else ""),
        ]
        if summary.latency is not None:
            lat = summary.latency
            lines.append(f"Latency: mean {lat.mean_ms:.1f}ms, median {lat.median_ms:.1f}ms, "
                         f"p95 {lat.p95_ms:.1f}ms")
        lines.append(f"Time: {report.elapsed:.2f}s")
        if report.partial:
            title, style = "[bold]Scan Interrupted (partial results)[/bold]", "yellow"
        else:
            title, style = "[bold]Scan Complete[/bold]", "green"
        console.print(Panel("\n".join(lines), title=title, style=style))

        visible = report.visible(self.show_closed)
        if not visible:
            console.print("[dim]No open ports found[/dim]")
            return

        table = Table(title=f"[bold]{report.target.ip}[/bold] ({report.target.hostname or 'unknown'})")
        table.add_column("Port", style="cyan", no_wrap=True)
        table.add_column("State")
        table.add_column("Service", style="yellow")
        table.add_column("Banner", style="magenta")
        table.add_column("Reason", style="dim")
        for outcome in visible:
            state_style = STATE_STYLES[outcome.state]
            table.add_row(
                f"{outcome.port}/{outcome.protocol}",
                f"[{state_style}]{outcome.state}[/{state_style}]",
                outcome.service or "unknown",
                outcome.banner or "",
                outcome.reason,
            )
        console.print(table)

    def save(self, filename: str, fmt: str = "json"):
        """Save the report to a file in the given format"""
        if fmt == "json":
            content = self.to_json()
        elif fmt == "csv":
            content = self.to_csv()
        elif fmt == "plain":
            with open(filename, 'w') as f:
                self.render_plain(Console(file=f, width=120, no_color=True))
            return
        else:
            raise ConfigError(f"unknown output format: {fmt}")

        with open(filename, 'w') as f:
            f.write(content)
