"""Rich-based console formatting utilities"""

from typing import Dict, Optional

from rich.console import Console
from rich.progress import BarColumn, Progress, TaskID, TextColumn, TimeRemainingColumn
from rich.table import Table
from rich.text import Text

from .progress import ProgressSample
from .report import AnalysisReport
from .utils import format_duration

console = Console()


def print_check(message: str) -> None:
    """Print a checkmark message in bold green."""
    console.print(Text("✓ ", style="bold green") + Text(message, style="bold"))


def print_warning(message: str) -> None:
    """Print a warning message in bold yellow."""
    console.print(Text("⚠ ", style="bold yellow") + Text(message, style="bold"))


def print_error(message: str) -> None:
    """Print an error message in bold red."""
    console.print(Text("✗ ", style="bold red") + Text(message, style="bold"))


def print_info(message: str) -> None:
    console.print(Text("ℹ ", style="bold blue") + Text(message, style="blue"))


def print_header(title: str, width: int = 80) -> None:
    """Print a decorative header."""
    separator = Text("=" * width, style="bold blue")
    padding = (width - len(title)) // 2
    console.print(separator)
    console.print(" " * padding + title, style="bold blue")
    console.print(separator)


def print_tool_versions(versions: Dict[str, str]) -> None:
    for name, version in versions.items():
        print_check(f"{name}: {version}")


def build_summary_table(report: AnalysisReport, model: Optional[str] = None) -> Table:
    """Pooled statistics of every metric in the report."""
    title = f"VMAF {report.overall_score:.3f} over {report.frame_count} frames"
    if model:
        title += f" ({model})"
    table = Table(title=title)
    table.add_column("Metric", style="bold")
    for column in ("Min", "Max", "Mean", "Harmonic mean"):
        table.add_column(column, justify="right")

    def fmt(value: Optional[float]) -> str:
        return "--" if value is None else f"{value:.3f}"

    for name in report.metric_names:
        aggregate = report.aggregates.get(name)
        if aggregate is None:
            continue
        table.add_row(name, fmt(aggregate.min), fmt(aggregate.max), fmt(aggregate.mean),
                      fmt(aggregate.harmonic_mean))
    return table


def print_summary(report: AnalysisReport, model: Optional[str] = None) -> None:
    console.print(build_summary_table(report, model))


class AnalysisProgressBar:
    """Progress bar driven by analyzer progress samples.

    The bar is indeterminate until the total frame count is known.
    """

    def __init__(self, description: str = "Analyzing") -> None:
        self.progress = Progress(
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.fields[total_label]} frames"),
            TextColumn("{task.fields[fps]}"),
            TimeRemainingColumn(),
            console=console,
            transient=True,
        )
        self._task: TaskID = self.progress.add_task(description, total=None, total_label="?", fps="")

    def __enter__(self) -> "AnalysisProgressBar":
        self.progress.start()
        return self

    def __exit__(self, *exc_info) -> None:
        self.progress.stop()

    def describe(self, description: str) -> None:
        self.progress.update(self._task, description=description)

    def update(self, sample: ProgressSample) -> None:
        fields = {
            "completed": sample.current_frame,
            "fps": f"{sample.fps:.1f} fps ETA {format_duration(sample.remaining_seconds)}",
        }
        if sample.total_frames:
            fields["total"] = sample.total_frames
            fields["total_label"] = str(sample.total_frames)
        self.progress.update(self._task, **fields)
