"""Tests for analyzer report parsing"""
import json

import pytest

from vmaf_analyzer.exceptions import MalformedReportError
from vmaf_analyzer.models import OutputFormat
from vmaf_analyzer.report import (
    MetricAggregate,
    harmonic_mean,
    parse_report,
    parse_report_text,
)

JSON_REPORT = {
    "version": "3.0.0",
    "fps": 31.5,
    "frames": [
        {"frameNum": 0, "metrics": {"integer_adm2": 0.98, "vmaf": 94.0}},
        {"frameNum": 1, "metrics": {"integer_adm2": 0.97, "vmaf": 96.0}},
    ],
    "pooled_metrics": {
        "vmaf": {"min": 94.0, "max": 96.0, "mean": 95.0, "harmonic_mean": 94.99},
        "integer_adm2": {"min": 0.97, "max": 0.98, "mean": 0.975, "harmonic_mean": 0.975},
    },
}

XML_REPORT = """<?xml version="1.0" encoding="UTF-8"?>
<VMAF version="3.0.0">
  <params qualityWidth="1920" qualityHeight="1080" />
  <fyi fps="28.4" />
  <frames>
    <frame frameNum="0" integer_adm2="0.98" vmaf="94.0" />
    <frame frameNum="1" integer_adm2="0.97" vmaf="96.0" />
  </frames>
  <pooled_metrics>
    <metric name="integer_adm2" min="0.97" max="0.98" mean="0.975" harmonic_mean="0.975" />
    <metric name="vmaf" min="94.0" max="96.0" mean="95.0" harmonic_mean="94.99" />
  </pooled_metrics>
</VMAF>
"""

CSV_REPORT = "Frame,integer_adm2,vmaf\n0,0.98,94.0\n1,0.97,96.0\n2,0.99,98.0\n"


def test_parse_json_report():
    report = parse_report_text(json.dumps(JSON_REPORT), "json")
    assert report.overall_score == 95.0
    assert report.frame_count == 2
    assert report.tool_version == "3.0.0"
    assert report.fps == 31.5
    assert report.aggregates["vmaf"].harmonic_mean == 94.99
    assert report.series("vmaf") == [(0, 94.0), (1, 96.0)]
    assert set(report.metric_names) == {"vmaf", "integer_adm2"}


def test_parse_xml_report():
    report = parse_report_text(XML_REPORT, OutputFormat.XML)
    assert report.overall_score == 95.0
    assert report.frame_count == 2
    assert report.fps == pytest.approx(28.4)
    assert report.frames[1].get("integer_adm2") == pytest.approx(0.97)
    assert report.aggregates["integer_adm2"].mean == pytest.approx(0.975)


def test_parse_csv_report_computes_pooled_metrics():
    report = parse_report_text(CSV_REPORT, "csv")
    assert report.overall_score == pytest.approx(96.0)
    assert report.frame_count == 3
    vmaf = report.aggregates["vmaf"]
    assert vmaf.min == 94.0
    assert vmaf.max == 98.0
    assert vmaf.harmonic_mean == pytest.approx(harmonic_mean([94.0, 96.0, 98.0]))


def test_frames_are_ordered_by_index():
    data = dict(JSON_REPORT, frames=list(reversed(JSON_REPORT["frames"])))
    report = parse_report_text(json.dumps(data), "json")
    assert [f.index for f in report.frames] == [0, 1]


def test_zero_frame_report_with_pooled_score():
    data = {"frames": [], "pooled_metrics": {"vmaf": {"min": 0, "max": 0, "mean": 0.0}}}
    report = parse_report_text(json.dumps(data), "json")
    assert report.frame_count == 0
    assert report.overall_score == 0.0


def test_missing_overall_score_is_rejected():
    data = {"frames": JSON_REPORT["frames"], "pooled_metrics": {}}
    with pytest.raises(MalformedReportError, match="missing overall"):
        parse_report_text(json.dumps(data), "json")


def test_non_numeric_score_is_rejected():
    data = {"frames": [], "pooled_metrics": {"vmaf": {"min": 0, "max": 0, "mean": "n/a"}}}
    with pytest.raises(MalformedReportError):
        parse_report_text(json.dumps(data), "json")


def test_nan_score_is_rejected():
    data = {"frames": [], "pooled_metrics": {"vmaf": {"min": 0, "max": 0, "mean": "nan"}}}
    with pytest.raises(MalformedReportError, match="not finite"):
        parse_report_text(json.dumps(data), "json")


def test_csv_without_vmaf_column_is_rejected():
    with pytest.raises(MalformedReportError):
        parse_report_text("Frame,psnr_y\n0,40.0\n", "csv")


def test_csv_without_frame_column_is_rejected():
    with pytest.raises(MalformedReportError, match="Frame column"):
        parse_report_text("vmaf\n90.0\n", "csv")


@pytest.mark.parametrize("fmt", ["json", "xml", "csv"])
def test_empty_report_is_rejected(fmt):
    with pytest.raises(MalformedReportError, match="empty"):
        parse_report_text("  \n", fmt)


@pytest.mark.parametrize("fmt,text", [("json", "{not json"), ("xml", "<VMAF><frames>")])
def test_unparseable_report_is_rejected(fmt, text):
    with pytest.raises(MalformedReportError):
        parse_report_text(text, fmt)


def test_parse_report_missing_file(tmp_path):
    path = tmp_path / "report.json"
    with pytest.raises(MalformedReportError, match="not written") as excinfo:
        parse_report(path, "json")
    assert excinfo.value.path == path


def test_parse_report_reads_file(tmp_path):
    path = tmp_path / "report.xml"
    path.write_text(XML_REPORT)
    report = parse_report(path, "xml")
    assert report.source == path
    assert report.overall_score == 95.0


def test_report_is_immutable():
    report = parse_report_text(json.dumps(JSON_REPORT), "json")
    with pytest.raises(Exception):
        report.overall_score = 1.0
    with pytest.raises(TypeError):
        report.aggregates["vmaf"] = None


def test_harmonic_mean_tolerates_zero():
    assert harmonic_mean([0.0, 0.0]) == pytest.approx(0.0)
    assert harmonic_mean([]) is None
    assert harmonic_mean([-1.0, 5.0]) is None


def test_metric_aggregate_from_values():
    aggregate = MetricAggregate.from_values([1.0, 2.0, 3.0])
    assert (aggregate.min, aggregate.max, aggregate.mean) == (1.0, 3.0, 2.0)
    assert MetricAggregate.from_values([]) is None
