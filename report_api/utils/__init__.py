"""Shared utilities for the reporting pipeline."""

from .report_errors import ReportError, ReportErrorCategory, ReportErrorCode

__all__ = ["ReportError", "ReportErrorCategory", "ReportErrorCode"]
