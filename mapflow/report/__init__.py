from mapflow.report.html import ReportSection, render_report

__all__ = ["ReportSection", "render_report"]
