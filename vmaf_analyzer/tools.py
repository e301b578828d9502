"""External tool discovery and verification

Responsibilities:
- Resolve converter, analyzer and prober executables through an ordered
  list of lookup strategies (bundled directory, system PATH, fallbacks)
- Cache resolved binaries for the lifetime of the locator
- Probe a binary's version to confirm it actually runs
"""

import os
import shutil
import threading
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import ToolConfig
from .events import EventSink, EventType, LoggingEventSink
from .exceptions import ToolNotFoundError, ToolVerificationError


class ToolKind(Enum):
    """External tools the pipeline drives."""
    CONVERTER = "converter"
    ANALYZER = "analyzer"
    PROBER = "prober"


class ToolOrigin(Enum):
    """Where a binary was found."""
    BUNDLED = "bundled"
    SYSTEM_PATH = "system_path"
    FALLBACK = "fallback"


@dataclass(frozen=True)
class ToolBinary:
    """A resolved executable."""
    kind: ToolKind
    path: Path
    origin: ToolOrigin


# A strategy maps a tool to a candidate path, or None when it has nothing to offer
Strategy = Callable[[ToolKind], Optional[Path]]

VERSION_FLAGS = {
    ToolKind.CONVERTER: "-version",
    ToolKind.ANALYZER: "--version",
    ToolKind.PROBER: "-version",
}


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


class ToolLocator:
    """Resolve tool binaries by first match over ordered strategies."""

    def __init__(self, config: Optional[ToolConfig] = None,
                 events: Optional[EventSink] = None,
                 strategies: Optional[Sequence[Tuple[ToolOrigin, Strategy]]] = None) -> None:
        self.config = config or ToolConfig()
        self.events = events or LoggingEventSink()
        self.strategies: List[Tuple[ToolOrigin, Strategy]] = list(strategies) if strategies is not None else [
            (ToolOrigin.BUNDLED, self._bundled),
            (ToolOrigin.SYSTEM_PATH, self._system_path),
            (ToolOrigin.FALLBACK, self._fallback),
        ]
        self._cache: Dict[ToolKind, ToolBinary] = {}
        self._lock = threading.Lock()

    def tool_name(self, kind: ToolKind) -> str:
        return {
            ToolKind.CONVERTER: self.config.converter_name,
            ToolKind.ANALYZER: self.config.analyzer_name,
            ToolKind.PROBER: self.config.prober_name,
        }[kind]

    def resolve(self, kind: ToolKind) -> ToolBinary:
        """Return the binary for kind, resolving it on first use.

        Raises:
            ToolNotFoundError: If no strategy yields an existing executable
        """
        cached = self._cache.get(kind)
        if cached is not None:
            return cached

        with self._lock:
            cached = self._cache.get(kind)
            if cached is not None:
                return cached

            searched = []
            for origin, strategy in self.strategies:
                candidate = strategy(kind)
                if candidate is None:
                    continue
                searched.append(candidate)
                if is_executable(candidate):
                    binary = ToolBinary(kind=kind, path=candidate, origin=origin)
                    self._cache[kind] = binary
                    self.events.emit(EventType.TOOL_RESOLVED, "tools",
                                     f"Located {origin.value} {kind.value} binary at: {candidate}")
                    return binary

            self.events.emit(EventType.TOOL_NOT_FOUND, "tools",
                             f"{self.tool_name(kind)} binary not found in bundle, system PATH, "
                             f"or fallback locations")
            raise ToolNotFoundError(kind, searched)

    def forget(self) -> None:
        """Drop cached resolutions so the next resolve searches again."""
        with self._lock:
            self._cache.clear()

    def _bundled(self, kind: ToolKind) -> Optional[Path]:
        if self.config.bundled_dir is None:
            return None
        return self.config.bundled_dir / self.tool_name(kind)

    def _system_path(self, kind: ToolKind) -> Optional[Path]:
        found = shutil.which(self.tool_name(kind))
        return Path(found) if found else None

    def _fallback(self, kind: ToolKind) -> Optional[Path]:
        fallbacks = {
            ToolKind.CONVERTER: self.config.converter_fallbacks,
            ToolKind.ANALYZER: self.config.analyzer_fallbacks,
        }.get(kind, ())
        for path in fallbacks:
            if is_executable(path):
                return path
        return fallbacks[0] if fallbacks else None


def probe_version(binary: ToolBinary, runner, cancel=None) -> str:
    """Run the tool's version flag and return the first line it prints.

    Raises:
        ToolVerificationError: If the binary does not exit successfully
    """
    outcome = runner.run(binary.path, [VERSION_FLAGS[binary.kind]], cancel=cancel)
    if not outcome.succeeded:
        raise ToolVerificationError(
            f"{binary.path} failed its version probe (exit code {outcome.exit_code}): "
            f"{outcome.stderr_excerpt(5)}",
            module="tools"
        )
    text = (outcome.stdout_text or outcome.stderr_text).strip()
    return text.splitlines()[0] if text else "unknown"


def verify_tools(locator: ToolLocator, runner) -> Dict[ToolKind, str]:
    """Verify that both converter and analyzer are available and executable.

    Returns:
        Mapping of tool kind to its reported version line
    """
    versions = {}
    for kind in (ToolKind.ANALYZER, ToolKind.CONVERTER):
        versions[kind] = probe_version(locator.resolve(kind), runner)
    return versions
