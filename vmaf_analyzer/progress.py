"""Incremental progress parsing for analyzer output

Responsibilities:
- Split raw output chunks into self-contained units on carriage returns and newlines
- Tell progress units apart from the analyzer's terminal summary payload
- Smooth the processing rate with an exponential moving average
- Deliver samples in non-decreasing frame order, skipping malformed units

The parser never touches a process. It is fed bytes by whoever owns the
pipe, which keeps it testable with plain byte strings.
"""

import re
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from .events import EventSink, EventType, LoggingEventSink

# Terminal control sequences and spinner glyphs libvmaf mixes into its counter
_ANSI = re.compile(r"\x1b\[[0-9;]*[A-Za-z]")
_SPINNER = re.compile(r"[⠀-⣿|/\\-]+(?=\s)")

# "240 frames ⠋ 31.52 FPS" as printed by the vmaf tool
_FRAME_COUNTER = re.compile(r"^(?P<frame>\d+)(?:\s*/\s*(?P<total>\d+))?\s+frames?\b(?P<rest>.*)$", re.I)
# "frame=240/1200 fps=31.5 vmaf=94.1"
_KEY_VALUE = re.compile(r"(?P<key>[A-Za-z_]+)\s*=\s*(?P<value>\S+)")
_FPS = re.compile(r"(?P<fps>\d+(?:\.\d+)?)\s*fps\b", re.I)
_SCORE = re.compile(r"\bvmaf\s*[=:]\s*(?P<score>-?\d+(?:\.\d+)?)", re.I)
# "vmaf_v0.6.1: 95.123456" printed once analysis finishes
_SUMMARY = re.compile(r"^(?P<model>vmaf[\w.\-]*)\s*:\s*(?P<score>-?\d+(?:\.\d+)?)\s*$", re.I)

_PROGRESS_KEYS = ("frame", "frames")

MAX_UNIT_BYTES = 64 * 1024


@dataclass(frozen=True)
class ProgressSample:
    """Snapshot of analyzer progress; each one supersedes the previous."""
    current_frame: int
    total_frames: Optional[int]
    fps: float
    running_score: Optional[float]
    elapsed: float

    @property
    def remaining_seconds(self) -> Optional[float]:
        """Estimated seconds left, or None when the total or rate is unknown."""
        if self.total_frames is None or self.fps <= 0:
            return None
        return max(self.total_frames - self.current_frame, 0) / self.fps

    @property
    def percent(self) -> Optional[float]:
        if not self.total_frames:
            return None
        return min(100.0, self.current_frame / self.total_frames * 100)


class MalformedUnit(ValueError):
    """A unit looked like progress but could not be parsed."""


class ProgressStreamParser:
    """Restartable state machine turning output chunks into ProgressSamples."""

    def __init__(
        self,
        on_sample: Optional[Callable[[ProgressSample], None]] = None,
        total_frames: Optional[int] = None,
        smoothing: float = 0.3,
        history: int = 32,
        clock: Callable[[], float] = time.monotonic,
        events: Optional[EventSink] = None,
    ) -> None:
        if not 0 < smoothing <= 1:
            raise ValueError(f"Smoothing must be in (0, 1]: {smoothing}")
        self._on_sample = on_sample
        self._initial_total = total_frames
        self.smoothing = smoothing
        self.clock = clock
        self.events = events or LoggingEventSink()
        self.history: Deque[ProgressSample] = deque(maxlen=history)
        self.reset()

    def attach(self, on_sample: Optional[Callable[[ProgressSample], None]]) -> "ProgressStreamParser":
        """Route subsequent samples to on_sample, replacing any earlier callback."""
        self._on_sample = on_sample
        return self

    def reset(self) -> None:
        """Forget all state so the parser can follow a new run."""
        self._buffer = b""
        self._started = self.clock()
        self._last_time: Optional[float] = None
        self._fps: Optional[float] = None
        self._score: Optional[float] = None
        self.total_frames = self._initial_total
        self.latest: Optional[ProgressSample] = None
        self.history.clear()
        self.payload_lines: List[str] = []
        self.summary_score: Optional[float] = None
        self.skipped_units = 0

    def feed(self, chunk: bytes) -> None:
        """Consume a chunk of raw output, emitting a sample per complete progress unit."""
        self._buffer += chunk
        units = re.split(rb"[\r\n]", self._buffer)
        self._buffer = units.pop()
        for unit in units:
            self._handle_unit(unit)
        if len(self._buffer) > MAX_UNIT_BYTES:
            self._skip(self._buffer[:80].decode("utf-8", errors="replace"), "unit exceeds buffer limit")
            self._buffer = b""

    def close(self) -> None:
        """Flush a trailing unit that was not terminated by a delimiter."""
        if self._buffer:
            unit, self._buffer = self._buffer, b""
            self._handle_unit(unit)

    def _handle_unit(self, raw: bytes) -> None:
        text = _ANSI.sub("", raw.decode("utf-8", errors="replace")).strip()
        if not text:
            return
        if text[0] in "{<[\"":
            self.payload_lines.append(text)
            return

        cleaned = _SPINNER.sub(" ", text)
        counter = _FRAME_COUNTER.match(cleaned)
        keyed = {m.group("key").lower(): m.group("value") for m in _KEY_VALUE.finditer(cleaned)}
        if counter or any(key in keyed for key in _PROGRESS_KEYS):
            try:
                self._handle_progress(cleaned, counter, keyed)
            except MalformedUnit as e:
                self._skip(text, str(e))
            return

        summary = _SUMMARY.match(text)
        if summary:
            self.payload_lines.append(text)
            self.summary_score = float(summary.group("score"))

    def _handle_progress(self, text: str, counter, keyed) -> None:
        if counter:
            frame = int(counter.group("frame"))
            total = int(counter.group("total")) if counter.group("total") else None
            fps_match = _FPS.search(counter.group("rest"))
            fps = float(fps_match.group("fps")) if fps_match else None
        else:
            frame, total = self._parse_frame(keyed.get("frame", keyed.get("frames")))
            fps = self._parse_float(keyed, "fps")

        score_match = _SCORE.search(text)
        score = float(score_match.group("score")) if score_match else None
        self._update(frame, total, fps, score)

    @staticmethod
    def _parse_frame(value: Optional[str]):
        if value is None:
            raise MalformedUnit("missing frame value")
        current, _, total = value.partition("/")
        try:
            return int(current), (int(total) if total else None)
        except ValueError:
            raise MalformedUnit(f"bad frame value {value!r}") from None

    @staticmethod
    def _parse_float(keyed, key: str) -> Optional[float]:
        if key not in keyed:
            return None
        try:
            return float(keyed[key])
        except ValueError:
            raise MalformedUnit(f"bad {key} value {keyed[key]!r}") from None

    def _update(self, frame: int, total: Optional[int], reported_fps: Optional[float],
                score: Optional[float]) -> None:
        previous = self.latest
        if previous is not None and frame < previous.current_frame:
            self._skip(str(frame), f"frame regressed below {previous.current_frame}")
            return

        now = self.clock()
        instantaneous = None
        if reported_fps is not None and reported_fps > 0:
            instantaneous = reported_fps
        elif previous is not None and self._last_time is not None:
            if now > self._last_time and frame > previous.current_frame:
                instantaneous = (frame - previous.current_frame) / (now - self._last_time)
        elif now > self._started and frame > 0:
            instantaneous = frame / (now - self._started)

        if instantaneous is not None:
            if self._fps is None:
                self._fps = instantaneous
            else:
                self._fps = self.smoothing * instantaneous + (1 - self.smoothing) * self._fps
        if total is not None:
            self.total_frames = total
        if score is not None:
            self._score = score

        self._last_time = now
        sample = ProgressSample(
            current_frame=frame,
            total_frames=self.total_frames,
            fps=self._fps or 0.0,
            running_score=self._score,
            elapsed=now - self._started,
        )
        self.latest = sample
        self.history.append(sample)
        if self._on_sample is not None:
            self._on_sample(sample)

    def _skip(self, text: str, reason: str) -> None:
        self.skipped_units += 1
        self.events.emit(EventType.PROGRESS_UNIT_SKIPPED, "progress",
                         f"Skipping progress unit {text!r}: {reason}")
