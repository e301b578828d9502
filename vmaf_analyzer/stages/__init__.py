"""Pipeline stages: input conversion and quality analysis"""

from .analysis import AnalysisRequest, AnalysisStage, build_analysis_command
from .conversion import ConversionStage, ConversionTask, build_conversion_command, choose_pixel_format

__all__ = [
    "AnalysisRequest",
    "AnalysisStage",
    "ConversionStage",
    "ConversionTask",
    "build_analysis_command",
    "build_conversion_command",
    "choose_pixel_format",
]
