"""Report generation modules."""

from .render import ReportRenderer, format_duration

__all__ = ["ReportRenderer", "format_duration"]
