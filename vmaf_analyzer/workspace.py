"""Scratch workspace management for intermediate files

Responsibilities:
- Allocate one isolated directory per analysis run
- Refuse to start a run that would likely exhaust the disk mid-conversion
- Remove the directory on every exit path without masking the run's result
- Sweep directories left behind by runs that crashed
"""

import os
import shutil
import tempfile
import time
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Generator, Iterable, List, Optional

import psutil

from .config import WorkspaceConfig
from .events import EventSink, EventType, LoggingEventSink
from .exceptions import InsufficientSpaceError, WorkspaceError
from .utils import format_size

OWNER_MARKER = ".owner"
# A directory without an owner marker may still be in the middle of creation
UNMARKED_GRACE_SECONDS = 60.0


@dataclass(frozen=True)
class Workspace:
    """Scratch directory exclusively owned by one run."""
    root: Path
    created_at: datetime

    def path(self, name: str) -> Path:
        return self.root / name

    def contains(self, path: Path) -> bool:
        try:
            return Path(path).resolve().is_relative_to(self.root.resolve())
        except (OSError, RuntimeError):
            return False


def _input_size(path: Path) -> int:
    try:
        return Path(path).stat().st_size
    except OSError:
        return 0


class WorkspaceManager:
    """Create and destroy per-run workspaces under a base directory."""

    def __init__(
        self,
        config: Optional[WorkspaceConfig] = None,
        events: Optional[EventSink] = None,
        disk_usage: Callable = psutil.disk_usage,
        pid_exists: Callable[[int], bool] = psutil.pid_exists,
    ) -> None:
        self.config = config or WorkspaceConfig()
        self.events = events or LoggingEventSink()
        self._disk_usage = disk_usage
        self._pid_exists = pid_exists

    @property
    def base_dir(self) -> Path:
        return self.config.base_dir

    def required_space(self, input_paths: Iterable[Path]) -> int:
        """Bytes needed to hold the intermediates for the given inputs."""
        total = sum(_input_size(p) for p in input_paths)
        return int(total * self.config.expansion_factor) + self.config.reserve_bytes

    def check_space(self, input_paths: Iterable[Path]) -> None:
        """Fail fast when the base directory cannot hold the intermediates.

        Raises:
            InsufficientSpaceError: If free space is below the computed minimum
        """
        self._ensure_base_dir()
        required = self.required_space(input_paths)
        available = self._disk_usage(str(self.base_dir)).free
        if available < required:
            self.events.emit(EventType.STAGE_FAILED, "workspace",
                             f"Insufficient space in {self.base_dir}: need {format_size(required)}, "
                             f"have {format_size(available)}")
            raise InsufficientSpaceError(required, available, self.base_dir)

    def create(self, input_paths: Iterable[Path] = ()) -> Workspace:
        """Allocate a fresh workspace after the disk-space precondition.

        Raises:
            InsufficientSpaceError: If free space is below the computed minimum
            WorkspaceError: If the directory cannot be created
        """
        self.check_space(list(input_paths))
        try:
            root = Path(tempfile.mkdtemp(prefix=self.config.prefix, dir=str(self.base_dir)))
            (root / OWNER_MARKER).write_text(str(os.getpid()))
        except OSError as e:
            raise WorkspaceError(f"Failed to create workspace in {self.base_dir}: {e}",
                                 module="workspace") from e
        workspace = Workspace(root=root, created_at=datetime.now())
        self.events.emit(EventType.WORKSPACE_CREATED, "workspace",
                         f"Created temporary directory: {root}")
        return workspace

    def destroy(self, workspace: Workspace) -> bool:
        """Remove a workspace and everything in it.

        Safe to call repeatedly and on partially populated directories.
        Failures are reported as CLEANUP_FAILED events, never raised.

        Returns:
            True if the directory no longer exists
        """
        root = workspace.root
        if not root.exists():
            return True
        try:
            shutil.rmtree(root)
        except OSError as e:
            self.events.emit(EventType.CLEANUP_FAILED, "workspace",
                             f"Failed to clean up temporary directory {root}: {e}")
            return False
        self.events.emit(EventType.WORKSPACE_REMOVED, "workspace",
                         f"Cleaned up temporary directory: {root}")
        return True

    @contextmanager
    def workspace(self, input_paths: Iterable[Path] = ()) -> Generator[Workspace, None, None]:
        """Context manager yielding a workspace that is destroyed on exit."""
        workspace = self.create(input_paths)
        try:
            yield workspace
        finally:
            self.destroy(workspace)

    def sweep_stale(self) -> List[Path]:
        """Remove workspaces whose owning process is gone.

        Returns:
            The directories that were removed
        """
        if not self.base_dir.is_dir():
            return []
        removed = []
        for candidate in sorted(self.base_dir.iterdir()):
            if not candidate.is_dir() or not candidate.name.startswith(self.config.prefix):
                continue
            if not self._is_stale(candidate):
                continue
            if self.destroy(Workspace(root=candidate, created_at=datetime.now())):
                removed.append(candidate)
        if removed:
            self.events.emit(EventType.WORKSPACE_SWEPT, "workspace",
                             f"Removed {len(removed)} stale workspace(s) from {self.base_dir}")
        return removed

    def _is_stale(self, directory: Path) -> bool:
        marker = directory / OWNER_MARKER
        try:
            pid = int(marker.read_text().strip())
        except FileNotFoundError:
            try:
                age = time.time() - directory.stat().st_mtime
            except OSError:
                return False
            return age > UNMARKED_GRACE_SECONDS
        except (OSError, ValueError):
            return True
        if pid == os.getpid():
            return False
        return not self._pid_exists(pid)

    def _ensure_base_dir(self) -> None:
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise WorkspaceError(f"Cannot create workspace base directory '{self.base_dir}': {e}",
                                 module="workspace") from e
