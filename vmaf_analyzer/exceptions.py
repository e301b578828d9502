"""Custom exceptions for the vmaf_analyzer pipeline

Every error a run can terminate with derives from VmafAnalyzerError so the
host can render one actionable message per failure. Cancellation is a
distinct terminal outcome, not a failure, but it is raised through the same
hierarchy so stages can unwind with plain exception handling.
"""

from typing import Optional


class VmafAnalyzerError(Exception):
    """Base exception for all vmaf_analyzer errors"""
    def __init__(self, message: str, module: str = None):
        self.message = message
        self.module = module or "unknown"
        super().__init__(f"[{self.module}] {self.message}")


class ConfigurationError(VmafAnalyzerError):
    """Error in configuration/setup"""


class ToolNotFoundError(VmafAnalyzerError):
    """No executable candidate exists for a required tool"""
    def __init__(self, kind, searched=None):
        self.kind = kind
        self.searched = list(searched or [])
        label = getattr(kind, "value", kind)
        message = f"{label} binary not found"
        if self.searched:
            message += f" (searched: {', '.join(str(p) for p in self.searched)})"
        super().__init__(message, module="tools")


class ToolVerificationError(VmafAnalyzerError):
    """A located binary did not answer its version probe"""


class InsufficientSpaceError(VmafAnalyzerError):
    """Not enough free disk space to hold the intermediate files"""
    def __init__(self, required: int, available: int, path=None):
        self.required = required
        self.available = available
        self.path = path
        super().__init__(
            f"Insufficient disk space in {path}: {required} bytes required, "
            f"{available} bytes available",
            module="workspace"
        )


class WorkspaceError(VmafAnalyzerError):
    """The scratch workspace could not be created"""


class StageError(VmafAnalyzerError):
    """Base class for failures of a subprocess-driven stage"""
    def __init__(self, message: str, exit_code: Optional[int] = None,
                 stderr_excerpt: str = "", module: str = None):
        self.exit_code = exit_code
        self.stderr_excerpt = stderr_excerpt
        super().__init__(message, module)


class ConversionError(StageError):
    """The converter failed for one of the two inputs"""
    def __init__(self, stage: str, exit_code: Optional[int] = None,
                 stderr_excerpt: str = "", reason: str = None):
        self.stage = stage
        message = f"Conversion of {stage} input failed"
        if reason:
            message += f": {reason}"
        elif exit_code is not None:
            message += f" with exit code {exit_code}"
        super().__init__(message, exit_code, stderr_excerpt, module="conversion")


class AnalysisError(StageError):
    """The analyzer exited unsuccessfully"""
    def __init__(self, exit_code: Optional[int] = None, stderr_excerpt: str = "",
                 reason: str = None):
        message = "VMAF analysis failed"
        if reason:
            message += f": {reason}"
        elif exit_code is not None:
            message += f" with exit code {exit_code}"
        super().__init__(message, exit_code, stderr_excerpt, module="analysis")


class MalformedReportError(VmafAnalyzerError):
    """The analyzer succeeded but its report is missing or unusable"""
    def __init__(self, message: str, path=None):
        self.path = path
        super().__init__(f"Malformed report: {message}", module="report")


class PipelineCancelled(VmafAnalyzerError):
    """The run was cancelled by the user"""
    def __init__(self, message: str = "Analysis cancelled", module: str = "pipeline"):
        super().__init__(message, module)
