"""
Output Formatting

Formatted console output and the plain-text report.
"""

from .base import BaseFormatter, OutputLevel
from .console import ConsoleFormatter
from .report import format_duration, render_report, report_header, report_subject

__all__ = [
    "BaseFormatter",
    "OutputLevel",
    "ConsoleFormatter",
    "format_duration",
    "render_report",
    "report_header",
    "report_subject",
]
