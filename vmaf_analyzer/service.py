"""Collaborator-facing entry point for submitting analyses

A host (GUI, CLI, web handler) submits a request with a subscription of
callbacks and gets a handle back immediately; the run proceeds on a worker
thread and can be cancelled through the service or the handle.
"""

import logging
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Callable, Dict, Optional

from .exceptions import PipelineCancelled
from .pipeline import AnalysisPipeline, PipelineRun, PipelineState
from .process import CancelToken
from .progress import ProgressSample
from .report import AnalysisReport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineRequest:
    """What the File Selector and Settings Store hand to the core."""
    reference: Path
    distorted: Path
    model: Optional[str] = None
    output_format: Optional[str] = None
    output_path: Optional[Path] = None


@dataclass
class Subscription:
    """Callbacks for one run. Cancellation is delivered through on_error."""
    on_progress: Optional[Callable[[ProgressSample], None]] = None
    on_complete: Optional[Callable[[AnalysisReport], None]] = None
    on_error: Optional[Callable[[BaseException], None]] = None
    on_state: Optional[Callable[[PipelineRun], None]] = None


class RunHandle:
    """Reference to a submitted run."""

    def __init__(self, run_id: str, request: PipelineRequest, run: PipelineRun,
                 token: CancelToken, future: Optional[Future] = None) -> None:
        self.run_id = run_id
        self.request = request
        self.run = run
        self._token = token
        self._future = future

    @property
    def state(self) -> PipelineState:
        return self.run.state

    def cancel(self) -> None:
        self._token.cancel()

    def done(self) -> bool:
        return self._future.done()

    def result(self, timeout: Optional[float] = None) -> AnalysisReport:
        """Block until the run ends; re-raise its error if it did not complete."""
        return self._future.result(timeout)

    def __repr__(self) -> str:
        return f"RunHandle({self.run_id}, {self.state.value})"


class AnalysisService:
    """Run pipelines on worker threads and report through subscriptions."""

    def __init__(self, pipeline: Optional[AnalysisPipeline] = None, max_concurrent_runs: int = 1) -> None:
        if max_concurrent_runs < 1:
            raise ValueError(f"max_concurrent_runs must be positive: {max_concurrent_runs}")
        self.pipeline = pipeline or AnalysisPipeline()
        self._executor = ThreadPoolExecutor(max_workers=max_concurrent_runs, thread_name_prefix="analysis")
        self._handles: Dict[str, RunHandle] = {}

    def submit_analysis(self, request: PipelineRequest,
                        subscription: Optional[Subscription] = None) -> RunHandle:
        subscription = subscription or Subscription()
        run_id = uuid.uuid4().hex[:8]
        token = CancelToken()
        run = PipelineRun(
            reference=Path(request.reference),
            distorted=Path(request.distorted),
            model=request.model or self.pipeline.settings.analysis.model,
            output_format=request.output_format or self.pipeline.settings.analysis.output_format,
        )
        handle = RunHandle(run_id, request, run, token)
        self._handles[run_id] = handle
        handle._future = self._executor.submit(self._execute, request, subscription, run, token)
        handle._future.add_done_callback(lambda _: self._handles.pop(run_id, None))
        logger.info("Submitted analysis %s: %s vs %s", run_id, run.reference.name, run.distorted.name)
        return handle

    def cancel(self, handle: RunHandle) -> None:
        logger.info("Cancelling analysis %s", handle.run_id)
        handle.cancel()

    def shutdown(self, cancel_running: bool = True) -> None:
        if cancel_running:
            for handle in list(self._handles.values()):
                handle.cancel()
        self._executor.shutdown(wait=True)

    def __enter__(self) -> "AnalysisService":
        return self

    def __exit__(self, *exc_info) -> None:
        self.shutdown()

    def _execute(self, request: PipelineRequest, subscription: Subscription,
                 run: PipelineRun, token: CancelToken) -> AnalysisReport:
        try:
            report = self.pipeline.run(
                request.reference,
                request.distorted,
                model=request.model,
                output_format=request.output_format,
                cancel=token,
                on_progress=self._guarded(subscription.on_progress),
                on_state=subscription.on_state,
                output_path=request.output_path,
                run=run,
            )
        except Exception as e:
            if not isinstance(e, PipelineCancelled):
                logger.error("Analysis failed: %s", e)
            self._deliver(subscription.on_error, e)
            raise
        self._deliver(subscription.on_complete, report)
        return report

    @staticmethod
    def _deliver(callback, value) -> None:
        if callback is None:
            return
        try:
            callback(value)
        except Exception:
            logger.exception("Subscriber callback failed")

    @classmethod
    def _guarded(cls, callback):
        """Wrap a streaming callback so subscriber errors never reach the runner."""
        if callback is None:
            return None
        return partial(cls._deliver, callback)
