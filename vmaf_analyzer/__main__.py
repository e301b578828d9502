"""
Command-line interface for the vmaf_analyzer pipeline
"""
import argparse
import dataclasses
import logging
import sys
from pathlib import Path

from . import __version__
from .config import LOG_LEVEL, LOG_LEVELS, OUTPUT_FORMATS, PIXEL_FORMATS, Settings
from .exceptions import (
    ConfigurationError,
    PipelineCancelled,
    ToolNotFoundError,
    ToolVerificationError,
    VmafAnalyzerError,
)
from .formatting import (
    AnalysisProgressBar,
    print_check,
    print_error,
    print_header,
    print_info,
    print_summary,
    print_tool_versions,
    print_warning,
)
from .logging import configure_logging
from .models import ALIASES
from .pipeline import AnalysisPipeline, PipelineRun, PipelineState
from .service import AnalysisService, PipelineRequest, Subscription
from .tools import verify_tools

log = logging.getLogger("vmaf_analyzer")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2
EXIT_INTERRUPTED = 130

_STAGE_LABELS = {
    PipelineState.VALIDATING_INPUTS: "Validating",
    PipelineState.CONVERTING_REFERENCE: "Converting",
    PipelineState.CONVERTING_DISTORTED: "Converting",
    PipelineState.ANALYZING: "Analyzing",
    PipelineState.CANCELLING: "Cancelling",
}


def parse_args(argv=None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        prog="vmaf-analyzer",
        description="Measure VMAF quality of a distorted video against its reference"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=LOG_LEVELS,
        default=None,
        help=f"Set logging level (default: {LOG_LEVEL})"
    )
    parser.add_argument(
        "--no-log-file",
        dest="file_logging",
        action="store_false",
        help="Log to the console only"
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Verify that the converter and analyzer are installed, then exit"
    )
    parser.add_argument(
        "--model",
        default=None,
        help=f"VMAF model version or alias ({', '.join(ALIASES)})"
    )
    parser.add_argument(
        "--format",
        dest="output_format",
        choices=OUTPUT_FORMATS,
        default=None,
        help="Report format written by the analyzer"
    )
    parser.add_argument(
        "--output",
        type=Path,
        default=None,
        help="Keep the analyzer report at this path"
    )
    parser.add_argument(
        "--pixel-format",
        dest="pixel_format",
        choices=PIXEL_FORMATS,
        default=None,
        help="Pixel format of the intermediate Y4M files ('auto' probes the inputs)"
    )
    parser.add_argument(
        "--threads",
        type=int,
        default=None,
        help="Analyzer thread count"
    )
    parser.add_argument(
        "--work-dir",
        dest="work_dir",
        type=Path,
        default=None,
        help="Directory for temporary intermediate files"
    )
    parser.add_argument("reference", type=Path, nargs="?", help="Reference (source) video")
    parser.add_argument("distorted", type=Path, nargs="?", help="Distorted (encoded) video")
    args = parser.parse_args(argv)
    if not args.check and (args.reference is None or args.distorted is None):
        parser.error("REFERENCE and DISTORTED are required unless --check is given")
    return args


def build_settings(args) -> Settings:
    """Environment settings with command line overrides applied.

    Raises:
        ConfigurationError: If the combined settings are invalid
    """
    settings = Settings.from_environment()
    analysis = {
        name: value for name, value in (
            ("model", args.model),
            ("output_format", args.output_format),
            ("pixel_format", args.pixel_format),
            ("threads", args.threads),
        ) if value is not None
    }
    if analysis:
        settings.analysis = dataclasses.replace(settings.analysis, **analysis)
    if args.work_dir is not None:
        settings.workspace = dataclasses.replace(settings.workspace, base_dir=args.work_dir)
    settings.validate()
    return settings


def check_tools(pipeline: AnalysisPipeline) -> int:
    try:
        versions = verify_tools(pipeline.locator, pipeline.runner)
    except (ToolNotFoundError, ToolVerificationError) as e:
        print_error(str(e))
        return EXIT_FAILED
    print_tool_versions({kind.value: version for kind, version in versions.items()})
    print_check("All required tools are available")
    return EXIT_OK


def run_analysis(pipeline: AnalysisPipeline, args) -> int:
    """Submit one analysis and render its progress until it ends"""
    request = PipelineRequest(
        reference=args.reference,
        distorted=args.distorted,
        output_path=args.output,
    )
    with AnalysisProgressBar() as bar, AnalysisService(pipeline) as service:

        def on_state(run: PipelineRun) -> None:
            label = _STAGE_LABELS.get(run.state)
            if label == "Converting" and run.converted:
                label = f"Converting ({len(run.converted)}/2 done)"
            if label:
                bar.describe(label)

        handle = service.submit_analysis(request, Subscription(on_progress=bar.update, on_state=on_state))
        try:
            report = handle.result()
        except KeyboardInterrupt:
            print_warning("Interrupted, stopping analysis")
            service.cancel(handle)
            try:
                handle.result()
            except VmafAnalyzerError:
                pass
            log.warning("Analysis interrupted by user")
            return EXIT_INTERRUPTED
        except PipelineCancelled:
            log.warning("Analysis cancelled")
            return EXIT_INTERRUPTED
        except VmafAnalyzerError as e:
            print_error(str(e))
            excerpt = getattr(e, "stderr_excerpt", "")
            if excerpt:
                print_info(excerpt)
            return EXIT_FAILED

    print_summary(report, pipeline.settings.analysis.model)
    if args.output is not None:
        print_check(f"Report written to {args.output}")
    return EXIT_OK


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    log_file = configure_logging(args.log_level or LOG_LEVEL, file_logging=args.file_logging)
    print_header(f"vmaf-analyzer v{__version__}")
    if log_file is not None:
        log.debug("Log file: %s", log_file)

    try:
        settings = build_settings(args)
    except ConfigurationError as e:
        print_error(str(e))
        return EXIT_USAGE

    pipeline = AnalysisPipeline(settings)
    swept = pipeline.workspaces.sweep_stale()
    if swept:
        print_info(f"Removed {len(swept)} stale workspace(s)")

    if args.check:
        return check_tools(pipeline)

    print_info(f"Reference: {args.reference}")
    print_info(f"Distorted: {args.distorted}")
    try:
        return run_analysis(pipeline, args)
    except KeyboardInterrupt:
        log.warning("Analysis interrupted by user")
        return EXIT_INTERRUPTED


if __name__ == "__main__":
    sys.exit(main())
