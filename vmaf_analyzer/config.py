"""Configuration settings for the vmaf_analyzer pipeline

This module centralizes all configuration settings including:
- Tool discovery (bundled directory, binary names, fallback locations)
- Scratch workspace location and disk-space precondition
- Subprocess supervision timings
- Analysis defaults (model, report format, pixel format)

Values come from dataclass defaults, overridden by VMAF_ANALYZER_*
environment variables in Settings.from_environment().
"""

import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from .exceptions import ConfigurationError
from .models import DEFAULT_MODEL

ENV_PREFIX = "VMAF_ANALYZER_"

# LOG_DIR: user definable with default of "$HOME/vmaf_analyzer_logs"
LOG_DIR = Path(os.environ.get(f"{ENV_PREFIX}LOG_DIR", str(Path.home() / "vmaf_analyzer_logs")))

# Logging configuration
LOG_LEVEL = "INFO"  # Default logging level; valid values: DEBUG, INFO, WARNING, ERROR, CRITICAL
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

OUTPUT_FORMATS = ("json", "xml", "csv")
PIXEL_FORMATS = ("auto", "yuv420p", "yuv422p", "yuv444p",
                 "yuv420p10le", "yuv422p10le", "yuv444p10le")
PROGRESS_STREAMS = ("stdout", "stderr")

GIB = 1024 ** 3


@dataclass
class ToolConfig:
    """Where to look for the converter and analyzer binaries."""
    bundled_dir: Optional[Path] = None
    converter_name: str = "ffmpeg"
    analyzer_name: str = "vmaf"
    prober_name: str = "ffprobe"
    converter_fallbacks: Tuple[Path, ...] = (
        Path("/usr/local/bin/ffmpeg"),
        Path("/opt/homebrew/bin/ffmpeg"),
    )
    analyzer_fallbacks: Tuple[Path, ...] = (
        Path("/usr/local/bin/vmaf"),
        Path("/opt/homebrew/bin/vmaf"),
        Path.home() / "vmaf" / "libvmaf" / "build" / "tools" / "vmaf",
    )

    def __post_init__(self) -> None:
        """Convert string paths to Path objects."""
        if isinstance(self.bundled_dir, str):
            self.bundled_dir = Path(self.bundled_dir)
        self.converter_fallbacks = tuple(Path(p) for p in self.converter_fallbacks)
        self.analyzer_fallbacks = tuple(Path(p) for p in self.analyzer_fallbacks)


@dataclass
class WorkspaceConfig:
    """Scratch directory settings for the intermediate Y4M files."""
    base_dir: Path = field(default_factory=lambda: Path(tempfile.gettempdir()) / "vmaf_analyzer")
    prefix: str = "vmaf_analysis_"
    # Y4M is uncompressed; compressed sources grow by one to two orders of magnitude
    expansion_factor: float = 25.0
    reserve_bytes: int = 1 * GIB

    def __post_init__(self) -> None:
        if isinstance(self.base_dir, str):
            self.base_dir = Path(self.base_dir)


@dataclass
class ProcessConfig:
    """Configuration for process supervision."""
    grace_period: float = 5.0  # Seconds between terminate and kill
    poll_interval: float = 0.1  # Seconds
    chunk_size: int = 64 * 1024
    stderr_excerpt_lines: int = 20


@dataclass
class AnalysisConfig:
    """Defaults supplied to each analysis run."""
    model: str = DEFAULT_MODEL
    output_format: str = "json"
    pixel_format: str = "yuv420p"
    threads: Optional[int] = None
    progress_stream: str = "stdout"
    smoothing: float = 0.3


@dataclass
class Settings:
    """Main configuration class for vmaf_analyzer."""
    tools: ToolConfig = field(default_factory=ToolConfig)
    workspace: WorkspaceConfig = field(default_factory=WorkspaceConfig)
    process: ProcessConfig = field(default_factory=ProcessConfig)
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)

    @classmethod
    def from_environment(cls, environ=None, **overrides) -> "Settings":
        """Create settings from environment variables and optional overrides.

        Args:
            environ: Mapping to read instead of os.environ
            **overrides: Replacement sections (tools, workspace, process, analysis)

        Raises:
            ConfigurationError: If a value cannot be parsed or fails validation
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> Optional[str]:
            value = env.get(ENV_PREFIX + name)
            return value if value not in (None, "") else None

        tools = ToolConfig()
        if get("BUNDLE_DIR"):
            tools.bundled_dir = Path(get("BUNDLE_DIR"))
        if get("FFMPEG"):
            tools.converter_name = get("FFMPEG")
        if get("VMAF"):
            tools.analyzer_name = get("VMAF")
        if get("FFPROBE"):
            tools.prober_name = get("FFPROBE")

        workspace = WorkspaceConfig()
        if get("WORKDIR"):
            workspace.base_dir = Path(get("WORKDIR"))

        process = ProcessConfig()
        analysis = AnalysisConfig()
        try:
            if get("EXPANSION_FACTOR"):
                workspace.expansion_factor = float(get("EXPANSION_FACTOR"))
            if get("RESERVE_BYTES"):
                workspace.reserve_bytes = int(get("RESERVE_BYTES"))
            if get("GRACE_PERIOD"):
                process.grace_period = float(get("GRACE_PERIOD"))
            if get("THREADS"):
                analysis.threads = int(get("THREADS"))
        except ValueError as e:
            raise ConfigurationError(f"Invalid numeric setting: {e}", module="config") from e
        if get("MODEL"):
            analysis.model = get("MODEL")
        if get("OUTPUT_FORMAT"):
            analysis.output_format = get("OUTPUT_FORMAT").lower()
        if get("PIXEL_FORMAT"):
            analysis.pixel_format = get("PIXEL_FORMAT")
        if get("PROGRESS_STREAM"):
            analysis.progress_stream = get("PROGRESS_STREAM").lower()

        settings = cls(tools=tools, workspace=workspace, process=process, analysis=analysis)
        for name, value in overrides.items():
            if not hasattr(settings, name):
                raise ConfigurationError(f"Unknown settings section: {name}", module="config")
            setattr(settings, name, value)

        settings.validate()
        return settings

    def validate(self) -> None:
        """Validate all configuration settings."""
        validate_tool_config(self.tools)
        validate_workspace_config(self.workspace)
        validate_process_config(self.process)
        validate_analysis_config(self.analysis)


def validate_tool_config(config: ToolConfig) -> None:
    """Validate tool discovery configuration."""
    for name in (config.converter_name, config.analyzer_name, config.prober_name):
        if not isinstance(name, str) or not name:
            raise ConfigurationError(f"Invalid tool name: {name!r}", module="config")
    if config.bundled_dir is not None and not isinstance(config.bundled_dir, Path):
        raise ConfigurationError("bundled_dir must be a path", module="config")
    for path in config.converter_fallbacks + config.analyzer_fallbacks:
        if not path.is_absolute():
            raise ConfigurationError(f"Fallback path '{path}' must be absolute", module="config")


def validate_workspace_config(config: WorkspaceConfig) -> None:
    """Validate workspace configuration."""
    if not isinstance(config.base_dir, Path):
        raise ConfigurationError("Workspace base_dir must be a path", module="config")
    if not config.prefix or os.sep in config.prefix:
        raise ConfigurationError(f"Invalid workspace prefix: {config.prefix!r}", module="config")
    if config.expansion_factor <= 0:
        raise ConfigurationError(
            f"Expansion factor must be positive: {config.expansion_factor}", module="config")
    if config.reserve_bytes < 0:
        raise ConfigurationError(
            f"Reserve bytes must be non-negative: {config.reserve_bytes}", module="config")


def validate_process_config(config: ProcessConfig) -> None:
    """Validate process configuration."""
    if config.grace_period <= 0:
        raise ConfigurationError(f"Grace period must be positive: {config.grace_period}", module="config")
    if config.poll_interval <= 0:
        raise ConfigurationError(f"Poll interval must be positive: {config.poll_interval}", module="config")
    if config.chunk_size <= 0:
        raise ConfigurationError(f"Chunk size must be positive: {config.chunk_size}", module="config")
    if config.stderr_excerpt_lines <= 0:
        raise ConfigurationError(
            f"stderr excerpt lines must be positive: {config.stderr_excerpt_lines}", module="config")


def validate_analysis_config(config: AnalysisConfig) -> None:
    """Validate analysis defaults."""
    if not config.model:
        raise ConfigurationError("A model identifier is required", module="config")
    if config.output_format not in OUTPUT_FORMATS:
        raise ConfigurationError(
            f"Output format must be one of {', '.join(OUTPUT_FORMATS)}: {config.output_format}",
            module="config")
    if config.pixel_format not in PIXEL_FORMATS:
        raise ConfigurationError(f"Unsupported pixel format: {config.pixel_format}", module="config")
    if config.threads is not None and config.threads < 1:
        raise ConfigurationError(f"Thread count must be positive: {config.threads}", module="config")
    if config.progress_stream not in PROGRESS_STREAMS:
        raise ConfigurationError(
            f"Progress stream must be stdout or stderr: {config.progress_stream}", module="config")
    if not 0 < config.smoothing <= 1:
        raise ConfigurationError(f"Smoothing must be in (0, 1]: {config.smoothing}", module="config")
