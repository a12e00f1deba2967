"""
Report module: renders and persists session reports.
"""

from .generator import FORMATS, ReportGenerator, session_document
from .writer import ReportWriter

__all__ = [
    "FORMATS",
    "ReportGenerator",
    "ReportWriter",
    "session_document",
]
