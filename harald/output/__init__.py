"""
Harald Output
==============

Modules:
    console  -- Rich-based console display
    report   -- JSON report generation
"""

from harald.output.console import HaraldConsoleOutput
from harald.output.report import HaraldReportGenerator

__all__ = [
    "HaraldConsoleOutput",
    "HaraldReportGenerator",
]
