"""Utility functions for the vmaf_analyzer pipeline"""

from datetime import datetime
from typing import Optional, Union


def get_timestamp() -> str:
    """Get current timestamp in YYYYMMDD_HHMMSS format"""
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def format_size(size: float) -> str:
    """Format file size for display"""
    for unit in ['B', 'KiB', 'MiB', 'GiB', 'TiB']:
        if size < 1024:
            return f"{size:.1f}{unit}"
        size /= 1024
    return f"{size:.1f}PiB"


def format_duration(seconds: Optional[float]) -> str:
    """Format a duration as HHh MMm SSs, or "--" when unknown"""
    if seconds is None:
        return "--"
    seconds = max(0, int(seconds))
    hours = seconds // 3600
    minutes = (seconds % 3600) // 60
    secs = seconds % 60
    return f"{hours:02d}h {minutes:02d}m {secs:02d}s"


def excerpt_lines(data: Union[bytes, str], max_lines: int) -> str:
    """Decode process output and keep its last max_lines non-empty lines"""
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    lines = [line for line in data.replace("\r", "\n").splitlines() if line.strip()]
    return "\n".join(lines[-max_lines:])
