from __future__ import annotations

from .aggregation import StatisticsReport, build_report, filter_period

__all__ = ["StatisticsReport", "build_report", "filter_period"]
