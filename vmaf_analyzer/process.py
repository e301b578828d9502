"""Supervised execution of external tools

Responsibilities:
- Launch a single converter or analyzer process
- Drain stdout and stderr concurrently so neither pipe can fill and stall the child
- Hand output chunks to incremental consumers as they arrive
- Honor a cancellation token with terminate, grace period, then kill
- Release the child and its pipes on every exit path
"""

import logging
import queue
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Mapping, Optional, Sequence, Tuple, Union

from .config import ProcessConfig
from .events import EventSink, EventType, LoggingEventSink
from .exceptions import PipelineCancelled
from .utils import excerpt_lines

logger = logging.getLogger(__name__)

ChunkConsumer = Callable[[bytes], None]


class CancelToken:
    """Cooperative cancellation signal shared between a run and its stages.

    A child token reports cancelled when either it or any ancestor was
    cancelled, so cancelling one sibling leaves the others untouched.
    """

    def __init__(self, parent: Optional["CancelToken"] = None) -> None:
        self._event = threading.Event()
        self._parent = parent

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        return self._parent is not None and self._parent.cancelled

    def wait(self, timeout: float) -> bool:
        """Block up to timeout seconds; return True once cancelled."""
        deadline = time.monotonic() + timeout
        while not self.cancelled:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            self._event.wait(min(remaining, 0.05))
        return True

    def raise_if_cancelled(self, message: str = "Analysis cancelled", module: str = "pipeline") -> None:
        if self.cancelled:
            raise PipelineCancelled(message, module=module)

    def child(self) -> "CancelToken":
        return CancelToken(parent=self)


class OutcomeStatus(Enum):
    """How a supervised process ended."""
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    LAUNCH_FAILED = "launch_failed"


@dataclass(frozen=True)
class SubprocessOutcome:
    """Result of one process invocation."""
    argv: Tuple[str, ...]
    exit_code: Optional[int]
    stdout: bytes
    stderr: bytes
    duration: float
    status: OutcomeStatus = OutcomeStatus.COMPLETED

    @property
    def succeeded(self) -> bool:
        return self.status is OutcomeStatus.COMPLETED and self.exit_code == 0

    @property
    def cancelled(self) -> bool:
        return self.status is OutcomeStatus.CANCELLED

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")

    @property
    def stderr_text(self) -> str:
        return self.stderr.decode("utf-8", errors="replace")

    def stderr_excerpt(self, max_lines: int = 20) -> str:
        return excerpt_lines(self.stderr, max_lines)


class SubprocessRunner:
    """Run external commands under supervision.

    The runner holds no per-process state, so one instance can serve
    concurrent stages.
    """

    def __init__(self, config: Optional[ProcessConfig] = None,
                 events: Optional[EventSink] = None) -> None:
        self.config = config or ProcessConfig()
        self.events = events or LoggingEventSink()

    def run(
        self,
        executable: Union[str, Path],
        args: Sequence[Union[str, Path]] = (),
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        cancel: Optional[CancelToken] = None,
        on_stdout: Optional[ChunkConsumer] = None,
        on_stderr: Optional[ChunkConsumer] = None,
    ) -> SubprocessOutcome:
        """Run a command to completion or cancellation.

        Args:
            executable: Path to the executable
            args: Command line arguments
            cwd: Working directory for the process
            env: Environment variables (None inherits the current environment)
            cancel: Cancellation token observed while the process runs
            on_stdout: Receives each stdout chunk as it arrives
            on_stderr: Receives each stderr chunk as it arrives

        Returns:
            SubprocessOutcome with the full captured output. Consumer
            exceptions are re-raised after the child has been stopped.
        """
        argv = tuple([str(executable)] + [str(a) for a in args])
        name = Path(argv[0]).name
        start = time.monotonic()

        if cancel is not None and cancel.cancelled:
            self.events.emit(EventType.PROCESS_CANCELLED, "process",
                             f"Skipped launching {name}: already cancelled")
            return SubprocessOutcome(argv, None, b"", b"", 0.0, OutcomeStatus.CANCELLED)

        self.events.emit(EventType.PROCESS_STARTED, "process",
                         f"Running command: {' '.join(argv)}", argv=list(argv))
        try:
            process = subprocess.Popen(
                list(argv),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(cwd) if cwd is not None else None,
                env=dict(env) if env is not None else None,
            )
        except (OSError, ValueError) as e:
            message = f"Failed to start process: {e}"
            self.events.emit(EventType.PROCESS_LAUNCH_FAILED, "process",
                             f"Failed to start {name}: {e}")
            return SubprocessOutcome(argv, -1, b"", message.encode(), time.monotonic() - start,
                                     OutcomeStatus.LAUNCH_FAILED)

        buffers: Dict[str, bytearray] = {"stdout": bytearray(), "stderr": bytearray()}
        consumers = {"stdout": on_stdout, "stderr": on_stderr}
        cancelled = False

        with process:
            self.events.emit(EventType.PROCESS_STARTED, "process",
                             f"Process started successfully (PID: {process.pid})", pid=process.pid)
            chunks: "queue.Queue[Tuple[str, Optional[bytes]]]" = queue.Queue()
            readers = [
                threading.Thread(target=self._stream_reader, args=(process.stdout, chunks, "stdout"),
                                 name=f"{name}-stdout", daemon=True),
                threading.Thread(target=self._stream_reader, args=(process.stderr, chunks, "stderr"),
                                 name=f"{name}-stderr", daemon=True),
            ]
            for reader in readers:
                reader.start()

            try:
                open_streams = len(readers)
                while open_streams:
                    if cancel is not None and cancel.cancelled:
                        cancelled = True
                        break
                    try:
                        stream_name, chunk = chunks.get(timeout=self.config.poll_interval)
                    except queue.Empty:
                        continue
                    if chunk is None:
                        open_streams -= 1
                        continue
                    if stream_name == "error":
                        self.events.emit(EventType.PROCESS_FAILED, "process",
                                         chunk.decode(errors="replace"))
                        continue
                    buffers[stream_name] += chunk
                    consumer = consumers[stream_name]
                    if consumer is not None:
                        consumer(chunk)

                while not cancelled:
                    try:
                        process.wait(timeout=self.config.poll_interval)
                        break
                    except subprocess.TimeoutExpired:
                        if cancel is not None and cancel.cancelled:
                            cancelled = True

                if cancelled:
                    self._stop_process(process)
            except BaseException:
                self._stop_process(process)
                raise
            finally:
                for reader in readers:
                    reader.join(timeout=self.config.grace_period)
                self._drain(chunks, buffers)

        duration = time.monotonic() - start
        outcome = SubprocessOutcome(
            argv=argv,
            exit_code=process.returncode,
            stdout=bytes(buffers["stdout"]),
            stderr=bytes(buffers["stderr"]),
            duration=duration,
            status=OutcomeStatus.CANCELLED if cancelled else OutcomeStatus.COMPLETED,
        )
        self._report(name, outcome)
        return outcome

    def _stream_reader(self, stream, chunks: queue.Queue, stream_name: str) -> None:
        """Read raw chunks from a pipe into the shared queue until EOF."""
        read = getattr(stream, "read1", stream.read)
        try:
            while True:
                chunk = read(self.config.chunk_size)
                if not chunk:
                    break
                chunks.put((stream_name, chunk))
        except (OSError, ValueError) as e:
            chunks.put(("error", f"Error reading from {stream_name}: {e}".encode()))
        finally:
            stream.close()
            chunks.put((stream_name, None))  # Signal EOF

    def _drain(self, chunks: queue.Queue, buffers: Dict[str, bytearray]) -> None:
        """Collect output that arrived after the dispatch loop stopped."""
        while True:
            try:
                stream_name, chunk = chunks.get_nowait()
            except queue.Empty:
                return
            if chunk is None:
                continue
            if stream_name == "error":
                self.events.emit(EventType.PROCESS_FAILED, "process", chunk.decode(errors="replace"))
                continue
            buffers[stream_name] += chunk

    def _stop_process(self, process: subprocess.Popen) -> None:
        """Terminate the process, escalating to kill after the grace period."""
        if process.poll() is not None:
            return
        process.terminate()
        try:
            process.wait(timeout=self.config.grace_period)
        except subprocess.TimeoutExpired:
            process.kill()
            process.wait()

    def _report(self, name: str, outcome: SubprocessOutcome) -> None:
        if outcome.cancelled:
            self.events.emit(EventType.PROCESS_CANCELLED, "process",
                             f"{name} cancelled after {outcome.duration:.3f}s",
                             exit_code=outcome.exit_code)
        elif outcome.succeeded:
            self.events.emit(EventType.PROCESS_FINISHED, "process",
                             f"{name} completed in {outcome.duration:.3f}s",
                             duration=outcome.duration)
        else:
            self.events.emit(EventType.PROCESS_FAILED, "process",
                             f"{name} failed with exit code: {outcome.exit_code}",
                             exit_code=outcome.exit_code,
                             stderr=outcome.stderr_excerpt(self.config.stderr_excerpt_lines))
        if outcome.stdout:
            self.events.emit(EventType.PROCESS_FINISHED, "process",
                             f"{name} stdout: {outcome.stdout_text[:500]}")
        if outcome.stderr and not outcome.succeeded:
            logger.debug("%s stderr:\n%s", name, outcome.stderr_text)
