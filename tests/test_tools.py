"""Tests for tool discovery and verification"""
import threading

import pytest

from conftest import write_script
from vmaf_analyzer.config import ToolConfig
from vmaf_analyzer.events import EventType
from vmaf_analyzer.exceptions import ToolNotFoundError, ToolVerificationError
from vmaf_analyzer.tools import ToolKind, ToolLocator, ToolOrigin, probe_version, verify_tools

VERSION_TOOL = '''
import sys
if sys.argv[1:] in (["-version"], ["--version"]):
    print(BANNER)
    sys.exit(0)
sys.exit(1)
'''


def make_tool(directory, name, banner="tool version 1.0"):
    directory.mkdir(parents=True, exist_ok=True)
    return write_script(directory / name, VERSION_TOOL, BANNER=banner)


@pytest.fixture
def isolated_path(monkeypatch, tmp_path):
    """Point PATH at an empty directory so real system tools are not found."""
    empty = tmp_path / "empty_path"
    empty.mkdir()
    monkeypatch.setenv("PATH", str(empty))
    return empty


def test_bundled_binary_wins(tmp_path, isolated_path, events):
    bundled = make_tool(tmp_path / "bundle", "vmaf")
    make_tool(isolated_path, "vmaf")
    locator = ToolLocator(ToolConfig(bundled_dir=tmp_path / "bundle"), events)
    binary = locator.resolve(ToolKind.ANALYZER)
    assert binary.path == bundled
    assert binary.origin == ToolOrigin.BUNDLED
    assert events.of_type(EventType.TOOL_RESOLVED)


def test_system_path_used_when_not_bundled(tmp_path, isolated_path, events):
    on_path = make_tool(isolated_path, "ffmpeg")
    locator = ToolLocator(ToolConfig(bundled_dir=tmp_path / "bundle"), events)
    binary = locator.resolve(ToolKind.CONVERTER)
    assert binary.path == on_path
    assert binary.origin == ToolOrigin.SYSTEM_PATH


def test_fallback_location(tmp_path, isolated_path, events):
    fallback = make_tool(tmp_path / "opt", "vmaf")
    config = ToolConfig(analyzer_fallbacks=(tmp_path / "missing" / "vmaf", fallback))
    binary = ToolLocator(config, events).resolve(ToolKind.ANALYZER)
    assert binary.path == fallback
    assert binary.origin == ToolOrigin.FALLBACK


def test_not_found_lists_searched_locations(tmp_path, isolated_path, events):
    config = ToolConfig(bundled_dir=tmp_path / "bundle", analyzer_fallbacks=(tmp_path / "vmaf",))
    locator = ToolLocator(config, events)
    with pytest.raises(ToolNotFoundError) as excinfo:
        locator.resolve(ToolKind.ANALYZER)
    assert excinfo.value.kind == ToolKind.ANALYZER
    assert tmp_path / "bundle" / "vmaf" in excinfo.value.searched
    assert events.of_type(EventType.TOOL_NOT_FOUND)


def test_non_executable_candidate_is_skipped(tmp_path, isolated_path, events):
    bundle = tmp_path / "bundle"
    bundle.mkdir()
    (bundle / "vmaf").write_text("not executable")
    config = ToolConfig(bundled_dir=bundle, analyzer_fallbacks=())
    with pytest.raises(ToolNotFoundError):
        ToolLocator(config, events).resolve(ToolKind.ANALYZER)


def test_resolution_is_cached(tmp_path, isolated_path, events):
    bundled = make_tool(tmp_path / "bundle", "vmaf")
    locator = ToolLocator(ToolConfig(bundled_dir=tmp_path / "bundle", analyzer_fallbacks=()), events)
    first = locator.resolve(ToolKind.ANALYZER)
    bundled.unlink()
    assert locator.resolve(ToolKind.ANALYZER) is first
    locator.forget()
    with pytest.raises(ToolNotFoundError):
        locator.resolve(ToolKind.ANALYZER)


def test_concurrent_resolution_calls_strategy_once(tmp_path, events):
    calls = []
    target = make_tool(tmp_path, "vmaf")

    def strategy(kind):
        calls.append(kind)
        return target

    locator = ToolLocator(events=events, strategies=[(ToolOrigin.BUNDLED, strategy)])
    results = []
    threads = [threading.Thread(target=lambda: results.append(locator.resolve(ToolKind.ANALYZER)))
               for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    assert len(calls) == 1
    assert len({id(r) for r in results}) == 1


def test_custom_strategy_order(tmp_path, events):
    first = make_tool(tmp_path / "one", "vmaf")
    second = make_tool(tmp_path / "two", "vmaf")
    locator = ToolLocator(events=events, strategies=[
        (ToolOrigin.FALLBACK, lambda kind: None),
        (ToolOrigin.SYSTEM_PATH, lambda kind: second),
        (ToolOrigin.BUNDLED, lambda kind: first),
    ])
    assert locator.resolve(ToolKind.ANALYZER).path == second


def test_probe_version(tmp_path, runner):
    make_tool(tmp_path, "vmaf", banner="libvmaf v3.0.0")
    locator = ToolLocator(ToolConfig(bundled_dir=tmp_path))
    assert probe_version(locator.resolve(ToolKind.ANALYZER), runner) == "libvmaf v3.0.0"


def test_probe_version_failure(tmp_path, runner):
    write_script(tmp_path / "vmaf", "import sys\nsys.stderr.write('bad build\\n')\nsys.exit(1)\n")
    locator = ToolLocator(ToolConfig(bundled_dir=tmp_path))
    with pytest.raises(ToolVerificationError, match="bad build"):
        probe_version(locator.resolve(ToolKind.ANALYZER), runner)


def test_verify_tools(tmp_path, runner):
    make_tool(tmp_path, "vmaf", banner="libvmaf v3.0.0")
    make_tool(tmp_path, "ffmpeg", banner="ffmpeg version 6.1")
    versions = verify_tools(ToolLocator(ToolConfig(bundled_dir=tmp_path)), runner)
    assert versions == {
        ToolKind.ANALYZER: "libvmaf v3.0.0",
        ToolKind.CONVERTER: "ffmpeg version 6.1",
    }


def test_tool_names_follow_config():
    locator = ToolLocator(ToolConfig(converter_name="ffmpeg7", analyzer_name="vmaf-3"))
    assert locator.tool_name(ToolKind.CONVERTER) == "ffmpeg7"
    assert locator.tool_name(ToolKind.ANALYZER) == "vmaf-3"
