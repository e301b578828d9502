"""
vmaf_analyzer - A perceptual video quality analysis pipeline using VMAF

This package drives ffmpeg and the libvmaf command-line tool over a
reference/distorted pair of videos. It:
- Locates the converter and analyzer binaries
- Converts both inputs to Y4M in an isolated scratch workspace
- Runs the VMAF analyzer while streaming live progress
- Parses the JSON, XML or CSV report into structured results
- Removes every temporary artifact on success, failure and cancellation

The pipeline is designed for multi-gigabyte sources where conversion and
analysis take a long time and must stay cancellable.
"""

__version__ = "0.1.0"
