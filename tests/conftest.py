import os
import stat
import sys
import textwrap
from pathlib import Path
from types import SimpleNamespace

import pytest

# Make the package importable without an editable install
project_root = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if project_root not in sys.path:
    sys.path.insert(0, project_root)

from vmaf_analyzer.config import AnalysisConfig, ProcessConfig, Settings, ToolConfig, WorkspaceConfig
from vmaf_analyzer.events import CapturingEventSink
from vmaf_analyzer.pipeline import AnalysisPipeline
from vmaf_analyzer.process import SubprocessRunner
from vmaf_analyzer.workspace import WorkspaceManager

# Stand-in for ffmpeg: writes a tiny 4x2 Y4M with the requested number of frames
FAKE_CONVERTER = '''
import os
import sys
import time

args = sys.argv[1:]
if args and args[0] == "-version":
    print("ffmpeg version 6.1-fake")
    sys.exit(0)

source = args[args.index("-i") + 1]
target = next(a for a in args if a.endswith(".y4m"))
if not os.path.exists(source):
    sys.stderr.write(source + ": No such file or directory\\n")
    sys.exit(1)
if FAIL_ON and FAIL_ON in os.path.basename(target):
    sys.stderr.write("Conversion failed!\\n")
    sys.exit(187)
time.sleep(DELAY)
with open(target, "wb") as f:
    f.write(b"YUV4MPEG2 W4 H2 F25:1 Ip A1:1 C420jpeg\\n")
    for _ in range(FRAMES):
        f.write(b"FRAME\\n" + bytes(12))
'''

# Stand-in for the vmaf CLI: prints a frame counter, then writes a report
FAKE_ANALYZER = '''
import json
import os
import sys
import time

args = sys.argv[1:]
if args and args[0] == "--version":
    print("libvmaf v3.0.0-fake")
    sys.exit(0)

if ARGV_LOG:
    with open(ARGV_LOG, "a") as log:
        log.write(json.dumps(args) + "\\n")

output = args[args.index("--output") + 1]
model = args[args.index("--model") + 1].split("=", 1)[1]
out = sys.stdout.buffer

for frame in range(1, FRAMES + 1):
    out.write(("%d frames \\u280b %.2f FPS\\r" % (frame, 25.0)).encode("utf-8"))
    out.flush()
    time.sleep(DELAY)

if MODE == "hang":
    time.sleep(60)
if MODE == "fail":
    sys.stderr.write("libvmaf ERROR could not read model\\n")
    sys.exit(2)
if MODE == "empty":
    sys.exit(0)

scores = [90.0 + i for i in range(FRAMES)]
mean = sum(scores) / len(scores)
if "--json" in args:
    report = {
        "version": "3.0.0-fake",
        "fps": 25.0,
        "frames": [{"frameNum": i, "metrics": {"vmaf": s, "psnr_y": 40.0}} for i, s in enumerate(scores)],
        "pooled_metrics": {"vmaf": {"min": min(scores), "max": max(scores), "mean": mean,
                                    "harmonic_mean": mean}},
    }
    with open(output, "w") as f:
        json.dump(report, f)
elif "--xml" in args:
    with open(output, "w") as f:
        f.write('<VMAF version="3.0.0-fake"><frames>')
        for i, s in enumerate(scores):
            f.write('<frame frameNum="%d" vmaf="%f" />' % (i, s))
        f.write('</frames><pooled_metrics><metric name="vmaf" min="%f" max="%f" mean="%f" />'
                '</pooled_metrics></VMAF>' % (min(scores), max(scores), mean))
else:
    with open(output, "w") as f:
        f.write("Frame,vmaf\\n")
        for i, s in enumerate(scores):
            f.write("%d,%f\\n" % (i, s))
out.write(("\\n%s: %f\\n" % (model, mean)).encode("utf-8"))
'''


def write_script(path: Path, body: str, **params) -> Path:
    """Write an executable Python script with params bound as module constants."""
    header = "".join(f"{name} = {value!r}\n" for name, value in params.items())
    path.write_text(f"#!{sys.executable}\n{header}{textwrap.dedent(body)}")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def events() -> CapturingEventSink:
    return CapturingEventSink()


@pytest.fixture
def process_config() -> ProcessConfig:
    return ProcessConfig(grace_period=2.0, poll_interval=0.02)


@pytest.fixture
def runner(process_config, events) -> SubprocessRunner:
    return SubprocessRunner(process_config, events)


@pytest.fixture
def bin_dir(tmp_path: Path) -> Path:
    path = tmp_path / "bin"
    path.mkdir()
    return path


@pytest.fixture
def install_tools(bin_dir: Path, tmp_path: Path):
    """Install fake ffmpeg and vmaf executables into bin_dir."""
    def install(vmaf_mode="ok", frames=3, analyzer_delay=0.0, converter_delay=0.0, fail_on=""):
        argv_log = tmp_path / "vmaf_argv.log"
        write_script(bin_dir / "ffmpeg", FAKE_CONVERTER, FRAMES=frames, DELAY=converter_delay,
                     FAIL_ON=fail_on)
        write_script(bin_dir / "vmaf", FAKE_ANALYZER, FRAMES=frames, DELAY=analyzer_delay,
                     MODE=vmaf_mode, ARGV_LOG=str(argv_log))
        return argv_log
    return install


@pytest.fixture
def videos(tmp_path: Path):
    """A reference/distorted pair of placeholder input files."""
    reference = tmp_path / "reference.mkv"
    distorted = tmp_path / "distorted.mp4"
    reference.write_bytes(os.urandom(2048))
    distorted.write_bytes(os.urandom(1024))
    return SimpleNamespace(reference=reference, distorted=distorted)


@pytest.fixture
def test_settings(tmp_path: Path, bin_dir: Path, process_config) -> Settings:
    return Settings(
        tools=ToolConfig(bundled_dir=bin_dir, converter_fallbacks=(), analyzer_fallbacks=()),
        workspace=WorkspaceConfig(base_dir=tmp_path / "work", reserve_bytes=0),
        process=process_config,
        analysis=AnalysisConfig(),
    )


@pytest.fixture
def make_pipeline(test_settings, events):
    """Build a pipeline whose disk-space check sees free_bytes available."""
    def factory(free_bytes: int = 10 ** 12, settings: Settings = None) -> AnalysisPipeline:
        settings = settings or test_settings
        workspaces = WorkspaceManager(settings.workspace, events,
                                      disk_usage=lambda path: SimpleNamespace(free=free_bytes))
        return AnalysisPipeline(settings, workspaces=workspaces, events=events)
    return factory
