"""Parsing of the analyzer's final report

Responsibilities:
- Read JSON, XML and CSV reports written by the vmaf tool
- Build an immutable AnalysisReport with per-frame metrics and pooled statistics
- Compute pooled statistics locally when the format does not carry them
- Reject reports without a usable overall score instead of defaulting it
"""

import csv
import io
import json
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from .exceptions import MalformedReportError
from .models import OutputFormat

OVERALL_METRIC = "vmaf"


@dataclass(frozen=True)
class MetricAggregate:
    """Pooled statistics of one metric over every analyzed frame."""
    min: float
    max: float
    mean: float
    harmonic_mean: Optional[float] = None

    @classmethod
    def from_values(cls, values: Iterable[float]) -> Optional["MetricAggregate"]:
        values = list(values)
        if not values:
            return None
        return cls(
            min=min(values),
            max=max(values),
            mean=sum(values) / len(values),
            harmonic_mean=harmonic_mean(values),
        )


@dataclass(frozen=True)
class FrameScores:
    """Metric values of a single frame."""
    index: int
    metrics: Mapping[str, float]

    def get(self, name: str) -> Optional[float]:
        return self.metrics.get(name)


@dataclass(frozen=True)
class AnalysisReport:
    """Structured outcome of one successful analysis."""
    overall_score: float
    frames: Tuple[FrameScores, ...]
    aggregates: Mapping[str, MetricAggregate]
    tool_version: Optional[str] = None
    fps: Optional[float] = None
    source: Optional[Path] = field(default=None, compare=False)

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def metric_names(self) -> List[str]:
        names = list(self.aggregates)
        for frame in self.frames:
            for name in frame.metrics:
                if name not in names:
                    names.append(name)
        return names

    def series(self, name: str) -> List[Tuple[int, float]]:
        """(frame index, value) pairs for one metric, skipping frames without it."""
        return [(f.index, f.metrics[name]) for f in self.frames if name in f.metrics]


def harmonic_mean(values: List[float]) -> Optional[float]:
    """Harmonic mean using the analyzer's convention, offset by one to tolerate zeros."""
    if not values or any(v <= -1.0 for v in values):
        return None
    return len(values) / sum(1.0 / (v + 1.0) for v in values) - 1.0


def _number(value, what: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise MalformedReportError(f"{what} is not numeric: {value!r}") from None
    return number


def _frame(index, metrics: Dict[str, float]) -> FrameScores:
    try:
        frame_index = int(float(index))
    except (TypeError, ValueError):
        raise MalformedReportError(f"frame index is not numeric: {index!r}") from None
    return FrameScores(index=frame_index, metrics=MappingProxyType(dict(metrics)))


def _aggregate(name: str, fields: Mapping) -> Optional[MetricAggregate]:
    if not all(key in fields for key in ("min", "max", "mean")):
        return None
    harmonic = fields.get("harmonic_mean")
    return MetricAggregate(
        min=_number(fields["min"], f"{name} min"),
        max=_number(fields["max"], f"{name} max"),
        mean=_number(fields["mean"], f"{name} mean"),
        harmonic_mean=_number(harmonic, f"{name} harmonic_mean") if harmonic is not None else None,
    )


def _build(frames: List[FrameScores], aggregates: Dict[str, MetricAggregate],
           overall: Optional[float], version=None, fps=None, source=None) -> AnalysisReport:
    # Fill in pooled statistics for metrics the report only carries per frame
    names = []
    for frame in frames:
        names.extend(n for n in frame.metrics if n not in names)
    for name in names:
        if name not in aggregates:
            computed = MetricAggregate.from_values(f.metrics[name] for f in frames if name in f.metrics)
            if computed is not None:
                aggregates[name] = computed

    if overall is None:
        raise MalformedReportError(f"missing overall '{OVERALL_METRIC}' score", path=source)
    if not math.isfinite(overall):
        raise MalformedReportError(f"overall score is not finite: {overall}", path=source)
    return AnalysisReport(
        overall_score=overall,
        frames=tuple(sorted(frames, key=lambda f: f.index)),
        aggregates=MappingProxyType(aggregates),
        tool_version=version,
        fps=fps,
        source=source,
    )


def parse_json(text: str, source: Optional[Path] = None) -> AnalysisReport:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedReportError(f"invalid JSON: {e}", path=source) from e
    if not isinstance(data, dict):
        raise MalformedReportError("JSON report is not an object", path=source)

    frames = []
    for entry in data.get("frames") or []:
        if not isinstance(entry, dict) or "frameNum" not in entry:
            raise MalformedReportError(f"frame entry without frameNum: {entry!r}", path=source)
        metrics = {name: _number(value, name) for name, value in (entry.get("metrics") or {}).items()}
        frames.append(_frame(entry["frameNum"], metrics))

    aggregates = {}
    for name, fields in (data.get("pooled_metrics") or {}).items():
        if isinstance(fields, dict):
            aggregate = _aggregate(name, fields)
            if aggregate is not None:
                aggregates[name] = aggregate

    pooled = (data.get("pooled_metrics") or {}).get(OVERALL_METRIC)
    overall = None
    if isinstance(pooled, dict) and pooled.get("mean") is not None:
        overall = _number(pooled["mean"], "overall score")

    fps = data.get("fps")
    return _build(frames, aggregates, overall, version=data.get("version"),
                  fps=float(fps) if isinstance(fps, (int, float)) else None, source=source)


def parse_xml(text: str, source: Optional[Path] = None) -> AnalysisReport:
    try:
        root = ET.fromstring(text)
    except ET.ParseError as e:
        raise MalformedReportError(f"invalid XML: {e}", path=source) from e

    frames = []
    for element in root.iter("frame"):
        attrs = dict(element.attrib)
        if "frameNum" not in attrs:
            raise MalformedReportError("frame element without frameNum", path=source)
        index = attrs.pop("frameNum")
        frames.append(_frame(index, {name: _number(value, name) for name, value in attrs.items()}))

    aggregates = {}
    overall = None
    pooled = root.find("pooled_metrics")
    if pooled is not None:
        for metric in pooled.iter("metric"):
            name = metric.get("name")
            if not name:
                continue
            aggregate = _aggregate(name, metric.attrib)
            if aggregate is not None:
                aggregates[name] = aggregate
            if name == OVERALL_METRIC and metric.get("mean") is not None:
                overall = _number(metric.get("mean"), "overall score")

    fps = None
    fyi = root.find("fyi")
    if fyi is not None and fyi.get("fps") is not None:
        fps = _number(fyi.get("fps"), "fps")
    return _build(frames, aggregates, overall, version=root.get("version"), fps=fps, source=source)


def parse_csv(text: str, source: Optional[Path] = None) -> AnalysisReport:
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        raise MalformedReportError("CSV report has no header", path=source)
    index_column = next((c for c in reader.fieldnames if c.strip().lower() in ("frame", "framenum")), None)
    if index_column is None:
        raise MalformedReportError("CSV report has no Frame column", path=source)

    frames = []
    for row in reader:
        metrics = {}
        for name, value in row.items():
            if name is None or name == index_column:
                continue
            name = name.strip()
            if not name or value is None or value.strip() == "":
                continue
            metrics[name] = _number(value, name)
        frames.append(_frame(row[index_column], metrics))

    values = [f.metrics[OVERALL_METRIC] for f in frames if OVERALL_METRIC in f.metrics]
    overall = sum(values) / len(values) if values else None
    return _build(frames, {}, overall, source=source)


_PARSERS = {
    OutputFormat.JSON: parse_json,
    OutputFormat.XML: parse_xml,
    OutputFormat.CSV: parse_csv,
}


def parse_report_text(text: str, output_format, source: Optional[Path] = None) -> AnalysisReport:
    """Parse report contents already read from disk."""
    fmt = OutputFormat.parse(output_format)
    if not text.strip():
        raise MalformedReportError("report is empty", path=source)
    return _PARSERS[fmt](text, source)


def parse_report(path: Path, output_format) -> AnalysisReport:
    """Read and parse the analyzer's report file.

    Raises:
        MalformedReportError: If the file is missing, empty, unparseable or
            lacks the overall score
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8", errors="replace")
    except FileNotFoundError:
        raise MalformedReportError("report file was not written", path=path) from None
    except OSError as e:
        raise MalformedReportError(f"report file unreadable: {e}", path=path) from e
    return parse_report_text(text, output_format, source=path)
