"""Conversion of source videos into analysis-ready Y4M

Responsibilities:
- Build the converter command for one input (forced pixel format and container)
- Run it under supervision and translate failures into ConversionError
- Pick a pixel format wide enough for both inputs when asked to choose
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import ffmpeg

from ..events import EventSink, EventType, LoggingEventSink
from ..exceptions import ConversionError, PipelineCancelled
from ..process import CancelToken, SubprocessRunner
from ..tools import ToolBinary, ToolKind, ToolLocator
from ..utils import format_size
from ..workspace import Workspace

logger = logging.getLogger(__name__)

Y4M_CONTAINER = "yuv4mpegpipe"
DEFAULT_PIXEL_FORMAT = "yuv420p"
HIGH_DEPTH_PIXEL_FORMAT = "yuv420p10le"

_HIGH_DEPTH = re.compile(r"(?:9|1[0-6])(?:le|be)$|^p[0-4]1[06]")


@dataclass(frozen=True)
class ConversionTask:
    """One input to convert into the run's workspace."""
    role: str
    input_path: Path
    output_path: Path
    pixel_format: str = DEFAULT_PIXEL_FORMAT
    container: str = Y4M_CONTAINER


def is_high_depth(pix_fmt: Optional[str]) -> bool:
    return bool(pix_fmt) and bool(_HIGH_DEPTH.search(pix_fmt))


def build_conversion_command(converter: ToolBinary, task: ConversionTask) -> List[str]:
    """Build the converter command for one task.

    Frame size and rate are left untouched; only the pixel layout and
    container are forced.
    """
    output_kwargs = {
        "format": task.container,
        "pix_fmt": task.pixel_format,
        "an": None,
        "sn": None,
    }
    if is_high_depth(task.pixel_format):
        # The Y4M muxer only writes >8-bit streams in non-strict mode
        output_kwargs["strict"] = "-1"
    stream = (
        ffmpeg
        .input(str(task.input_path))
        .output(str(task.output_path), **output_kwargs)
        .global_args("-hide_banner", "-nostdin", "-nostats", "-loglevel", "error")
        .overwrite_output()
    )
    return stream.compile(cmd=str(converter.path))


def choose_pixel_format(reference: Path, distorted: Path, prober: Optional[ToolBinary]) -> str:
    """Pick yuv420p10le when either source is deeper than 8 bits.

    Falls back to yuv420p whenever probing is unavailable or fails.
    """
    if prober is None:
        return DEFAULT_PIXEL_FORMAT
    for source in (reference, distorted):
        try:
            info = ffmpeg.probe(str(source), cmd=str(prober.path))
        except ffmpeg.Error as e:
            logger.warning("Could not probe %s, assuming 8-bit: %s", source,
                           (e.stderr or b"").decode(errors="replace").strip())
            continue
        except OSError as e:
            logger.warning("Could not run %s: %s", prober.path, e)
            return DEFAULT_PIXEL_FORMAT
        video = next((s for s in info.get("streams", []) if s.get("codec_type") == "video"), None)
        if video is None:
            continue
        raw_bits = str(video.get("bits_per_raw_sample") or "")
        if is_high_depth(video.get("pix_fmt")) or (raw_bits.isdigit() and int(raw_bits) > 8):
            return HIGH_DEPTH_PIXEL_FORMAT
    return DEFAULT_PIXEL_FORMAT


class ConversionStage:
    """Convert inputs to Y4M with the converter tool."""

    def __init__(self, locator: ToolLocator, runner: SubprocessRunner,
                 events: Optional[EventSink] = None, stderr_excerpt_lines: int = 20) -> None:
        self.locator = locator
        self.runner = runner
        self.events = events or LoggingEventSink()
        self.stderr_excerpt_lines = stderr_excerpt_lines

    def convert(self, task: ConversionTask, cancel: Optional[CancelToken] = None,
                workspace: Optional[Workspace] = None) -> None:
        """Convert one input, raising on any unsuccessful outcome.

        Raises:
            ConversionError: If the input is missing or the converter fails
            PipelineCancelled: If cancellation was requested
            ValueError: If the output path lies outside the run's workspace
        """
        if workspace is not None and not workspace.contains(task.output_path):
            raise ValueError(f"Conversion output {task.output_path} is outside workspace {workspace.root}")
        if cancel is not None:
            cancel.raise_if_cancelled(f"Conversion of {task.role} input cancelled", module="conversion")
        if not Path(task.input_path).is_file():
            raise ConversionError(task.role, reason=f"input file does not exist: {task.input_path}")

        converter = self.locator.resolve(ToolKind.CONVERTER)
        cmd = build_conversion_command(converter, task)
        self.events.emit(EventType.STAGE_STARTED, "conversion",
                         f"Converting {task.role} video to Y4M: {Path(task.input_path).name}",
                         input=str(task.input_path), output=str(task.output_path),
                         pixel_format=task.pixel_format)

        outcome = self.runner.run(cmd[0], cmd[1:], cancel=cancel)
        if outcome.cancelled:
            raise PipelineCancelled(f"Conversion of {task.role} input cancelled", module="conversion")
        if not outcome.succeeded:
            excerpt = outcome.stderr_excerpt(self.stderr_excerpt_lines)
            self.events.emit(EventType.STAGE_FAILED, "conversion",
                             f"Video conversion failed for {task.role} input", stderr=excerpt)
            raise ConversionError(task.role, exit_code=outcome.exit_code, stderr_excerpt=excerpt)

        output = Path(task.output_path)
        if not output.is_file():
            raise ConversionError(task.role, exit_code=outcome.exit_code,
                                  stderr_excerpt=outcome.stderr_excerpt(self.stderr_excerpt_lines),
                                  reason="converter exited successfully but wrote no output")
        self.events.emit(EventType.STAGE_COMPLETED, "conversion",
                         f"Converted {task.role} video in {outcome.duration:.1f}s "
                         f"({format_size(output.stat().st_size)})")
