import json
import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

from rich.box import HEAVY, ROUNDED, SIMPLE
from rich.console import Console
from rich.panel import Panel
from rich.progress import BarColumn, MofNCompleteColumn, Progress, SpinnerColumn, TextColumn, TimeElapsedColumn
from rich.table import Table
from rich.text import Text

from flaghealth.domain.interfaces.user_interface import ProgressSink, UserInterface
from flaghealth.domain.models.common import UNKNOWN, JSONValue
from flaghealth.domain.models.flags import STATUS_ACTIVE, STATUS_INACTIVE, STATUS_LAUNCHED, Project
from flaghealth.domain.models.quota import LEVEL_DANGER, LEVEL_WARNING, QuotaStatus
from flaghealth.domain.models.report import Classification, FlagReport, HealthReport

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    STATUS_LAUNCHED: "green",
    STATUS_ACTIVE: "yellow",
    STATUS_INACTIVE: "red",
}

CLASSIFICATION_STYLES = {
    Classification.MATCH: "green",
    Classification.MISMATCH: "bold red",
    Classification.INDETERMINATE: "dim",
}


def format_value(value: JSONValue) -> str:
    """Renders a flag value for a table cell."""
    if value is UNKNOWN:
        return "unknown"
    if value is None:
        return "null"
    if isinstance(value, str):
        return f'"{value}"'
    if isinstance(value, (dict, list)):
        return json.dumps(value, sort_keys=True)
    return json.dumps(value)


class ConsoleDisplay(UserInterface):
    """Concrete implementation of UserInterface using the rich library for console output."""

    def __init__(self, console: Optional[Console] = None):
        self._console = console or Console()

    @property
    def console(self) -> Console:
        """Get the Rich console instance for direct operations."""
        return self._console

    def display_error(self, error_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(error_message, style="white"),
            title="[bold red]Error[/bold red]",
            border_style="red",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_warning(self, warning_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(warning_message, style="white"),
            title="[bold yellow]Warning[/bold yellow]",
            border_style="yellow",
            box=HEAVY,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_info(self, info_message: str, **kwargs: Any) -> None:
        panel = Panel(
            Text(info_message, style="white"),
            title="[bold blue]Info[/bold blue]",
            border_style="blue",
            box=SIMPLE,
            padding=(0, 1)
        )
        self.console.print(panel)

    def display_projects(self, projects: List[Project]) -> None:
        """Displays projects and their environment keys as a table."""
        if not projects:
            self.display_info("No projects found for this API key.")
            return
        table = Table(title=f"Projects ({len(projects)})", box=ROUNDED, border_style="cyan")
        table.add_column("Project Key", style="bold")
        table.add_column("Name")
        table.add_column("Environments")
        for project in projects:
            envs = ", ".join(env.key for env in project.environments) or "-"
            table.add_row(project.key, project.name, envs)
        self.console.print(table)

    def display_quota_status(self, status: QuotaStatus) -> None:
        style = {LEVEL_DANGER: "bold red", LEVEL_WARNING: "yellow"}.get(status.level, "green")
        self.console.print(Text(f"Rate limit: {status.message}", style=style))

    @contextmanager
    def progress(self, description: str) -> Iterator[ProgressSink]:
        """Shows a progress bar while the block runs; yields the sink."""
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            MofNCompleteColumn(),
            TimeElapsedColumn(),
            console=self.console,
            transient=True,
        ) as progress:
            task_id = progress.add_task(description, total=None)

            def sink(processed: int, total: int) -> None:
                progress.update(task_id, completed=processed, total=total)

            yield sink

    def _summary_table(self, report: HealthReport) -> Table:
        summary = report.summary
        table = Table(
            show_header=False,
            box=ROUNDED,
            border_style="cyan",
        )
        table.add_column("Metric", style="bold")
        table.add_column("Count", justify="right")
        table.add_row("All flags", str(summary.total))
        table.add_row("[green]Launched[/green]", str(summary.launched))
        table.add_row("[yellow]Active[/yellow]", str(summary.active))
        table.add_row("[red]Inactive[/red]", str(summary.inactive))
        for name, count in sorted(summary.status_counts.items()):
            if name not in STATUS_STYLES:
                table.add_row(name or "(no status)", str(count))
        table.add_row("Matches", str(summary.matches))
        table.add_row("[bold red]Mismatches[/bold red]", str(summary.mismatches))
        table.add_row("Unable to determine", str(summary.indeterminate))
        if summary.failed:
            table.add_row("[red]Failed to load[/red]", str(summary.failed))
        return table

    def _flag_row(self, flag: FlagReport) -> List[Any]:
        status = Text(flag.status_name, style=STATUS_STYLES.get(flag.status_name, ""))
        if flag.needs_review:
            status.append(" (needs review)", style="dim yellow")
        name = Text(flag.flag_key, style="bold")
        if flag.flag_name and flag.flag_name != flag.flag_key:
            name.append(f"\n{flag.flag_name}", style="dim")
        for marker, present in (("deprecated", flag.deprecated), ("archived", flag.archived)):
            if present:
                name.append(f" [{marker}]", style="magenta")

        default = flag.environment_default
        if default.determinate:
            default_text = format_value(default.value)
            if default.variation_name:
                default_text = f"{default_text} ({default.variation_name})"
        else:
            default_text = "N/A"

        last_seen = flag.last_evaluated_at.strftime("%Y-%m-%d %H:%M") if flag.last_evaluated_at else "Never"
        return [
            name,
            status,
            format_value(flag.fallback_value),
            default_text,
            Text(flag.classification.label, style=CLASSIFICATION_STYLES[flag.classification]),
            last_seen,
            Text(flag.explanation, style="dim"),
        ]

    def display_report(self, report: HealthReport, only_mismatches: bool = False) -> None:
        """Displays the summary table followed by the per-flag table."""
        if report.partial_failure_message:
            self.display_warning(report.partial_failure_message)

        # Own line: a table title would wrap to the narrow summary table
        self.console.print(Text(f"Flag Health: {report.project_key} / {report.environment_key}", style="bold cyan"))
        self.console.print(self._summary_table(report))

        flags = [f for f in report.flags if f.has_mismatch] if only_mismatches else report.flags
        if not flags:
            self.display_info("No mismatches found." if only_mismatches else "No flags to display.")
        else:
            table = Table(box=ROUNDED, border_style="blue", show_lines=True)
            for column in ("Flag", "Status", "Fallback (code)", "Environment default", "Health", "Last evaluated", "Notes"):
                table.add_column(column)
            for flag in flags:
                table.add_row(*self._flag_row(flag))
            self.console.print(table)

        if report.quota_status:
            self.display_quota_status(report.quota_status)
