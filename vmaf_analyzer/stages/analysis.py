"""Quality-metric analysis of a converted pair

Responsibilities:
- Build the analyzer command from an AnalysisRequest
- Stream live progress from the analyzer's output while it runs
- Parse the final report once the analyzer exits successfully
"""

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..events import EventSink, EventType, LoggingEventSink
from ..exceptions import AnalysisError, PipelineCancelled
from ..models import OutputFormat, estimate_analysis_time, resolve_model
from ..process import CancelToken, SubprocessRunner
from ..progress import ProgressSample, ProgressStreamParser
from ..report import AnalysisReport, parse_report
from ..tools import ToolBinary, ToolKind, ToolLocator
from ..utils import format_duration
from ..y4m import count_frames, read_header


@dataclass(frozen=True)
class AnalysisRequest:
    """Inputs of one analyzer invocation."""
    reference_path: Path
    distorted_path: Path
    model: str
    output_format: OutputFormat
    output_path: Path

    def __post_init__(self) -> None:
        object.__setattr__(self, "output_format", OutputFormat.parse(self.output_format))


def build_analysis_command(analyzer: ToolBinary, request: AnalysisRequest,
                           threads: Optional[int] = None) -> List[str]:
    """Build the vmaf command for a request"""
    cmd = [
        str(analyzer.path),
        "--reference", str(request.reference_path),
        "--distorted", str(request.distorted_path),
        "--model", f"version={resolve_model(request.model)}",
        "--output", str(request.output_path),
        request.output_format.flag,
    ]
    if threads:
        cmd.extend(["--threads", str(threads)])
    return cmd


class AnalysisStage:
    """Run the analyzer with a progress parser attached."""

    def __init__(
        self,
        locator: ToolLocator,
        runner: SubprocessRunner,
        events: Optional[EventSink] = None,
        progress_stream: str = "stdout",
        smoothing: float = 0.3,
        threads: Optional[int] = None,
        stderr_excerpt_lines: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if progress_stream not in ("stdout", "stderr"):
            raise ValueError(f"Progress stream must be stdout or stderr: {progress_stream}")
        self.locator = locator
        self.runner = runner
        self.events = events or LoggingEventSink()
        self.progress_stream = progress_stream
        self.smoothing = smoothing
        self.threads = threads
        self.stderr_excerpt_lines = stderr_excerpt_lines
        self.clock = clock

    def analyze(
        self,
        request: AnalysisRequest,
        on_progress: Optional[Callable[[ProgressSample], None]] = None,
        cancel: Optional[CancelToken] = None,
        total_frames: Optional[int] = None,
    ) -> AnalysisReport:
        """Run the analyzer and parse its report.

        Args:
            request: Converted pair, model and report settings
            on_progress: Receives every progress sample, in frame order
            cancel: Cancellation token observed while the analyzer runs
            total_frames: Frame count if already known; otherwise read from
                the reference intermediate

        Raises:
            AnalysisError: If the analyzer exits unsuccessfully
            MalformedReportError: If the report is missing or unusable
            PipelineCancelled: If cancellation was requested
        """
        analyzer = self.locator.resolve(ToolKind.ANALYZER)
        if cancel is not None:
            cancel.raise_if_cancelled("Analysis cancelled", module="analysis")

        if total_frames is None:
            total_frames = count_frames(Path(request.reference_path))
        estimate = self._estimate(Path(request.reference_path), total_frames)
        parser = ProgressStreamParser(
            total_frames=total_frames,
            smoothing=self.smoothing,
            clock=self.clock,
            events=self.events,
        ).attach(on_progress)

        output_path = Path(request.output_path)
        # A report left over from an earlier run must not pass for this one
        output_path.unlink(missing_ok=True)

        cmd = build_analysis_command(analyzer, request, self.threads)
        message = (f"Starting VMAF analysis with model {resolve_model(request.model)}, "
                   f"{request.output_format.value.upper()} output")
        if estimate is not None:
            message += f", estimated time {format_duration(estimate)}"
        self.events.emit(EventType.STAGE_STARTED, "analysis", message,
                         total_frames=total_frames, estimated_seconds=estimate)

        consumer = {f"on_{self.progress_stream}": parser.feed}
        outcome = self.runner.run(cmd[0], cmd[1:], cancel=cancel, **consumer)
        if outcome.cancelled:
            raise PipelineCancelled("Analysis cancelled", module="analysis")
        parser.close()

        if not outcome.succeeded:
            excerpt = outcome.stderr_excerpt(self.stderr_excerpt_lines)
            self.events.emit(EventType.STAGE_FAILED, "analysis", "VMAF analysis failed", stderr=excerpt)
            raise AnalysisError(exit_code=outcome.exit_code, stderr_excerpt=excerpt)

        report = parse_report(output_path, request.output_format)
        self.events.emit(EventType.REPORT_PARSED, "analysis",
                         f"VMAF analysis completed: score {report.overall_score:.3f} over "
                         f"{report.frame_count} frames", skipped_units=parser.skipped_units)
        return report

    @staticmethod
    def _estimate(reference: Path, total_frames: Optional[int]) -> Optional[float]:
        """Rough analysis time from the intermediate's frame count, rate and size"""
        if not total_frames:
            return None
        try:
            header = read_header(reference)
        except (OSError, ValueError):
            return None
        if header.fps is None:
            return None
        return estimate_analysis_time(total_frames / header.fps, f"{header.width}x{header.height}")
