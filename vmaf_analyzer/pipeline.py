"""High-level orchestration of one quality analysis

Responsibilities:
  - Validate the run's preconditions (tools, model, report format, disk space).
  - Convert reference and distorted inputs concurrently into a private workspace.
  - Run the analyzer on the converted pair while forwarding progress.
  - Tear the workspace down on every exit path before reporting the outcome.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .config import Settings
from .events import EventSink, EventType, LoggingEventSink
from .exceptions import ConfigurationError, PipelineCancelled, ToolNotFoundError
from .models import OutputFormat, resolve_model
from .process import CancelToken, SubprocessRunner
from .progress import ProgressSample
from .report import AnalysisReport
from .stages.analysis import AnalysisRequest, AnalysisStage
from .stages.conversion import ConversionStage, ConversionTask, choose_pixel_format
from .tools import ToolKind, ToolLocator
from .workspace import Workspace, WorkspaceManager

logger = logging.getLogger(__name__)


class PipelineState(Enum):
    """States of one analysis run."""
    IDLE = "idle"
    VALIDATING_INPUTS = "validating_inputs"
    CONVERTING_REFERENCE = "converting_reference"
    CONVERTING_DISTORTED = "converting_distorted"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    CANCELLING = "cancelling"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (PipelineState.COMPLETED, PipelineState.CANCELLED, PipelineState.FAILED)


ROLES = ("reference", "distorted")
_CONVERTING = {
    "reference": PipelineState.CONVERTING_REFERENCE,
    "distorted": PipelineState.CONVERTING_DISTORTED,
}


@dataclass
class PipelineRun:
    """Bookkeeping for one run; the host reads it from state callbacks."""
    reference: Path
    distorted: Path
    model: str
    output_format: str
    state: PipelineState = PipelineState.IDLE
    history: List[PipelineState] = field(default_factory=list)
    converted: List[str] = field(default_factory=list)
    workspace: Optional[Workspace] = None
    latest_progress: Optional[ProgressSample] = None
    report: Optional[AnalysisReport] = None
    error: Optional[BaseException] = None
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: Optional[datetime] = None


StateObserver = Callable[[PipelineRun], None]
ProgressObserver = Callable[[ProgressSample], None]


class AnalysisPipeline:
    """Compose conversion and analysis into one cancellable run.

    Holds no per-run state of its own, so several pipelines (or several runs
    of one pipeline on different threads) can proceed side by side.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        locator: Optional[ToolLocator] = None,
        runner: Optional[SubprocessRunner] = None,
        workspaces: Optional[WorkspaceManager] = None,
        events: Optional[EventSink] = None,
    ) -> None:
        self.settings = settings or Settings()
        self.events = events or LoggingEventSink()
        self.locator = locator or ToolLocator(self.settings.tools, self.events)
        self.runner = runner or SubprocessRunner(self.settings.process, self.events)
        self.workspaces = workspaces or WorkspaceManager(self.settings.workspace, self.events)
        excerpt_lines = self.settings.process.stderr_excerpt_lines
        self.conversion = ConversionStage(self.locator, self.runner, self.events, excerpt_lines)
        self.analysis = AnalysisStage(
            self.locator,
            self.runner,
            self.events,
            progress_stream=self.settings.analysis.progress_stream,
            smoothing=self.settings.analysis.smoothing,
            threads=self.settings.analysis.threads,
            stderr_excerpt_lines=excerpt_lines,
        )

    def run(
        self,
        reference: Path,
        distorted: Path,
        model: Optional[str] = None,
        output_format=None,
        cancel: Optional[CancelToken] = None,
        on_progress: Optional[ProgressObserver] = None,
        on_state: Optional[StateObserver] = None,
        output_path: Optional[Path] = None,
        run: Optional[PipelineRun] = None,
    ) -> AnalysisReport:
        """Analyze a reference/distorted pair.

        Args:
            reference: Reference (source) video
            distorted: Distorted (encoded) video
            model: Model identifier or alias; defaults to the configured model
            output_format: json, xml or csv; defaults to the configured format
            cancel: Cancellation token observed at every suspension point
            on_progress: Receives analyzer progress samples
            on_state: Receives the run record on every state change and after
                each conversion finishes
            output_path: Where the analyzer writes its report; when omitted the
                report lives in the workspace and is removed with it
            run: Record to fill in, for callers that want it before completion

        Returns:
            The parsed AnalysisReport

        Raises:
            ToolNotFoundError, InsufficientSpaceError, ConfigurationError,
            ConversionError, AnalysisError, MalformedReportError,
            PipelineCancelled
        """
        reference, distorted = Path(reference), Path(distorted)
        model = model or self.settings.analysis.model
        output_format = output_format or self.settings.analysis.output_format
        if run is None:
            run = PipelineRun(reference, distorted, model, str(getattr(output_format, "value", output_format)))
        cancel = cancel or CancelToken()

        def forward_progress(sample: ProgressSample) -> None:
            run.latest_progress = sample
            if on_progress is not None:
                on_progress(sample)

        workspace = None
        terminal = PipelineState.FAILED
        try:
            self._transition(run, PipelineState.VALIDATING_INPUTS, on_state)
            cancel.raise_if_cancelled()
            fmt, model_id = self._validate(model, output_format)
            cancel.raise_if_cancelled()
            workspace = self.workspaces.create([reference, distorted])
            run.workspace = workspace

            cancel.raise_if_cancelled()
            pixel_format = self._pixel_format(reference, distorted)
            tasks = {
                "reference": ConversionTask("reference", reference, workspace.path("reference.y4m"), pixel_format),
                "distorted": ConversionTask("distorted", distorted, workspace.path("distorted.y4m"), pixel_format),
            }
            self._convert_all(run, tasks, workspace, cancel, on_state)

            cancel.raise_if_cancelled()
            self._transition(run, PipelineState.ANALYZING, on_state)
            if output_path is not None:
                Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            request = AnalysisRequest(
                reference_path=tasks["reference"].output_path,
                distorted_path=tasks["distorted"].output_path,
                model=model_id,
                output_format=fmt,
                output_path=Path(output_path) if output_path else workspace.path(f"report.{fmt.extension}"),
            )
            report = self.analysis.analyze(request, on_progress=forward_progress, cancel=cancel)
            run.report = report
            terminal = PipelineState.COMPLETED
            return report
        except PipelineCancelled as e:
            run.error = e
            terminal = PipelineState.CANCELLED
            self._transition(run, PipelineState.CANCELLING, on_state)
            raise
        except BaseException as e:
            run.error = e
            self.events.emit(EventType.STAGE_FAILED, "pipeline", f"Analysis failed: {e}")
            raise
        finally:
            if workspace is not None:
                self.workspaces.destroy(workspace)
            run.finished_at = datetime.now()
            self._transition(run, terminal, on_state)

    def _validate(self, model: str, output_format):
        try:
            fmt = OutputFormat.parse(output_format)
            model_id = resolve_model(model)
        except ValueError as e:
            raise ConfigurationError(str(e), module="pipeline") from e
        # Both tools must exist before any subprocess runs
        self.locator.resolve(ToolKind.CONVERTER)
        self.locator.resolve(ToolKind.ANALYZER)
        return fmt, model_id

    def _pixel_format(self, reference: Path, distorted: Path) -> str:
        configured = self.settings.analysis.pixel_format
        if configured != "auto":
            return configured
        try:
            prober = self.locator.resolve(ToolKind.PROBER)
        except ToolNotFoundError:
            prober = None
        return choose_pixel_format(reference, distorted, prober)

    def _convert_all(self, run: PipelineRun, tasks: Dict[str, ConversionTask], workspace: Workspace,
                     cancel: CancelToken, on_state: Optional[StateObserver]) -> None:
        """Convert both inputs concurrently; a failure in one cancels the other."""
        group = cancel.child()

        def convert(role: str) -> None:
            try:
                self.conversion.convert(tasks[role], group, workspace)
            except BaseException:
                group.cancel()
                raise

        with ThreadPoolExecutor(max_workers=len(ROLES), thread_name_prefix="convert") as executor:
            futures = {}
            for role in ROLES:
                self._transition(run, _CONVERTING[role], on_state)
                futures[role] = executor.submit(convert, role)

            errors: Dict[str, BaseException] = {}
            for role in ROLES:
                error = futures[role].exception()
                if error is not None:
                    errors[role] = error
                else:
                    run.converted.append(role)
                    self._notify(run, on_state)

        for role in ROLES:
            error = errors.get(role)
            if error is not None and not isinstance(error, PipelineCancelled):
                raise error
        for role in ROLES:
            if role in errors:
                raise errors[role]

    def _transition(self, run: PipelineRun, state: PipelineState, on_state: Optional[StateObserver]) -> None:
        run.state = state
        run.history.append(state)
        self.events.emit(EventType.STATE_CHANGED, "pipeline", f"Pipeline state: {state.value}",
                         state=state.value)
        self._notify(run, on_state)

    def _notify(self, run: PipelineRun, on_state: Optional[StateObserver]) -> None:
        if on_state is None:
            return
        try:
            on_state(run)
        except Exception:
            logger.exception("State observer failed in state %s", run.state.value)
