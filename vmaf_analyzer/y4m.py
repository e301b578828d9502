"""YUV4MPEG2 stream header inspection

The converter writes Y4M intermediates with a fixed-size "FRAME\\n" marker
before every frame, so the frame count follows from the stream header and
the file size without reading the pixel data.
"""

import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

SIGNATURE = b"YUV4MPEG2"
FRAME_MARKER = b"FRAME\n"
MAX_HEADER_BYTES = 1024

# Horizontal and vertical chroma subsampling per layout; None means no chroma planes
_CHROMA_SUBSAMPLING = {
    "420": (2, 2),
    "411": (4, 1),
    "422": (2, 1),
    "444": (1, 1),
    "444alpha": (1, 1),
    "mono": None,
}
_DEPTH = re.compile(r"^(?P<layout>\d{3}|mono)(?:p(?P<depth>\d+))?")


@dataclass(frozen=True)
class Y4MHeader:
    width: int
    height: int
    colorspace: str
    frame_rate: Optional[str]
    header_length: int

    @property
    def bytes_per_sample(self) -> int:
        match = _DEPTH.match(self.colorspace)
        depth = int(match.group("depth")) if match and match.group("depth") else 8
        return 2 if depth > 8 else 1

    @property
    def fps(self) -> Optional[float]:
        """Frame rate from the F parameter, or None when absent or unusable."""
        if not self.frame_rate:
            return None
        numerator, _, denominator = self.frame_rate.partition(":")
        try:
            rate = float(numerator) / float(denominator or 1)
        except (ValueError, ZeroDivisionError):
            return None
        return rate if rate > 0 else None

    @property
    def frame_size(self) -> int:
        """Bytes of pixel data in one frame.

        Subsampled chroma planes round their dimensions up, so odd-sized
        frames carry the extra column or row of chroma samples.
        """
        layout = "444alpha" if self.colorspace.startswith("444alpha") else None
        if layout is None:
            match = _DEPTH.match(self.colorspace)
            layout = match.group("layout") if match else "420"
        luma = self.width * self.height
        samples = luma
        subsampling = _CHROMA_SUBSAMPLING.get(layout, (2, 2))
        if subsampling is not None:
            x, y = subsampling
            samples += 2 * math.ceil(self.width / x) * math.ceil(self.height / y)
        if layout == "444alpha":
            samples += luma
        return samples * self.bytes_per_sample


def read_header(path: Path) -> Y4MHeader:
    """Parse the stream header of a Y4M file.

    Raises:
        ValueError: If the file is not a Y4M stream
    """
    with open(path, "rb") as f:
        head = f.read(MAX_HEADER_BYTES)
    line, newline, _ = head.partition(b"\n")
    if not newline or not line.startswith(SIGNATURE):
        raise ValueError(f"Not a YUV4MPEG2 stream: {path}")

    params = {}
    for token in line.decode("ascii", errors="replace").split()[1:]:
        params.setdefault(token[0], token[1:])
    try:
        width, height = int(params["W"]), int(params["H"])
    except (KeyError, ValueError) as e:
        raise ValueError(f"Y4M header lacks frame dimensions: {path}") from e
    return Y4MHeader(
        width=width,
        height=height,
        colorspace=params.get("C", "420jpeg"),
        frame_rate=params.get("F"),
        header_length=len(line) + 1,
    )


def count_frames(path: Path) -> Optional[int]:
    """Number of frames in a Y4M file, or None when it cannot be determined."""
    try:
        header = read_header(path)
        size = path.stat().st_size
    except (OSError, ValueError):
        return None
    per_frame = len(FRAME_MARKER) + header.frame_size
    if per_frame <= len(FRAME_MARKER):
        return None
    return max(size - header.header_length, 0) // per_frame
