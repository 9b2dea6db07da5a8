"""Client-side statistics over stored classification records.

All aggregates are recomputed from the flat record list on every request.
Confidence values are expected in [0, 1]; nothing here validates them.
"""

from __future__ import annotations

import calendar
from dataclasses import asdict, dataclass, field
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Iterable, List, Protocol, Sequence


class ViabilityRecord(Protocol):
    viability: bool
    confidence: float
    analyzed_at: datetime


# (lower bound, label), checked top to bottom.
CONFIDENCE_BUCKETS: tuple[tuple[float, str], ...] = (
    (0.9, "90-100%"),
    (0.8, "80-89%"),
    (0.7, "70-79%"),
    (0.6, "60-69%"),
)
CONFIDENCE_FALLBACK_BUCKET = "<60%"

# Lower bounds are confidence percentages.
ERROR_TYPES: tuple[tuple[float, str], ...] = (
    (90.0, "likely false positive"),
    (80.0, "likely false negative"),
    (70.0, "blurry image"),
    (60.0, "poor lighting"),
)
ERROR_FALLBACK_TYPE = "unknown"

PERIODS: dict[str, timedelta | None] = {
    "7d": timedelta(days=7),
    "30d": timedelta(days=30),
    "90d": timedelta(days=90),
    "1y": timedelta(days=365),
    "all": None,
}


@dataclass
class DailyCount:
    date: str
    viable: int = 0
    no_viable: int = 0
    total: int = 0


@dataclass
class MonthlyTrend:
    month: str
    year: int
    processed: int = 0
    viable: int = 0
    no_viable: int = 0


@dataclass
class ConfidenceBucket:
    range: str
    count: int
    percentage: float


@dataclass
class ErrorBucket:
    type: str
    count: int
    percentage: float


@dataclass
class Summary:
    total: int = 0
    viable: int = 0
    no_viable: int = 0
    viability_rate: float = 0.0
    average_confidence: float = 0.0


@dataclass
class StatisticsReport:
    summary: Summary = field(default_factory=Summary)
    daily: List[DailyCount] = field(default_factory=list)
    monthly: List[MonthlyTrend] = field(default_factory=list)
    confidence: List[ConfidenceBucket] = field(default_factory=list)
    errors: List[ErrorBucket] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def percentage(count: int, total: int) -> float:
    """Share of ``count`` in ``total`` as a percent with one decimal; 0.0 for an empty total."""
    if total <= 0:
        return 0.0
    return round(count / total * 100, 1)


def confidence_bucket(confidence: float) -> str:
    for lower, label in CONFIDENCE_BUCKETS:
        if confidence >= lower:
            return label
    return CONFIDENCE_FALLBACK_BUCKET


def error_type(confidence: float) -> str:
    # Thresholds apply to the percent value rounded to one decimal, so 0.8996 counts as 90.0.
    percent = round(confidence * 100, 1)
    for lower, label in ERROR_TYPES:
        if percent >= lower:
            return label
    return ERROR_FALLBACK_TYPE


def _display_time(value: datetime, tz: tzinfo | None) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(tz)


def summarize(records: Sequence[ViabilityRecord]) -> Summary:
    total = len(records)
    viable = sum(1 for record in records if record.viability)
    average = sum(record.confidence for record in records) / total if total else 0.0
    return Summary(
        total=total,
        viable=viable,
        no_viable=total - viable,
        viability_rate=percentage(viable, total),
        average_confidence=round(average, 4),
    )


def daily_counts(records: Iterable[ViabilityRecord], tz: tzinfo | None = None) -> List[DailyCount]:
    """Per-day viable/non-viable counts, oldest day first.

    Aware timestamps are converted to ``tz`` (local time when ``None``) before
    truncation to a date; naive timestamps are taken as already local.
    """
    groups: dict[date, DailyCount] = {}
    for record in records:
        day = _display_time(record.analyzed_at, tz).date()
        entry = groups.get(day)
        if entry is None:
            entry = groups[day] = DailyCount(date=day.isoformat())
        if record.viability:
            entry.viable += 1
        else:
            entry.no_viable += 1
        entry.total += 1
    return [groups[key] for key in sorted(groups)]


def monthly_trends(records: Iterable[ViabilityRecord], tz: tzinfo | None = None) -> List[MonthlyTrend]:
    """Per-month counts in calendar order, labelled with the short month name."""
    groups: dict[tuple[int, int], MonthlyTrend] = {}
    for record in records:
        moment = _display_time(record.analyzed_at, tz)
        key = (moment.year, moment.month)
        entry = groups.get(key)
        if entry is None:
            entry = groups[key] = MonthlyTrend(
                month=calendar.month_abbr[moment.month], year=moment.year
            )
        entry.processed += 1
        if record.viability:
            entry.viable += 1
        else:
            entry.no_viable += 1
    return [groups[key] for key in sorted(groups)]


def confidence_distribution(records: Sequence[ViabilityRecord]) -> List[ConfidenceBucket]:
    counts: dict[str, int] = {}
    for record in records:
        label = confidence_bucket(record.confidence)
        counts[label] = counts.get(label, 0) + 1

    total = len(records)
    order = [label for _, label in CONFIDENCE_BUCKETS] + [CONFIDENCE_FALLBACK_BUCKET]
    return [
        ConfidenceBucket(range=label, count=counts[label], percentage=percentage(counts[label], total))
        for label in order
        if label in counts
    ]


def error_analysis(records: Iterable[ViabilityRecord]) -> List[ErrorBucket]:
    """Histogram of guessed error causes over non-viable records.

    The mapping from confidence to cause is a placeholder heuristic; the
    backend gives no signal beyond the scalar confidence.
    """
    failures = [record for record in records if not record.viability]
    counts: dict[str, int] = {}
    for record in failures:
        label = error_type(record.confidence)
        counts[label] = counts.get(label, 0) + 1

    order = [label for _, label in ERROR_TYPES] + [ERROR_FALLBACK_TYPE]
    return [
        ErrorBucket(type=label, count=counts[label], percentage=percentage(counts[label], len(failures)))
        for label in order
        if label in counts
    ]


def filter_period(
    records: Iterable[ViabilityRecord],
    period: str,
    now: datetime | None = None,
) -> list[ViabilityRecord]:
    """Keep records analysed within the trailing ``period`` window."""
    if period not in PERIODS:
        raise ValueError(f"Unknown period {period!r}; expected one of {', '.join(PERIODS)}")
    window = PERIODS[period]
    items = list(records)
    if window is None:
        return items

    reference = now or datetime.now(timezone.utc)
    if reference.tzinfo is None:
        reference = reference.astimezone()
    cutoff = reference - window
    kept: list[ViabilityRecord] = []
    for record in items:
        moment = record.analyzed_at
        if moment.tzinfo is None:
            moment = moment.astimezone()
        if moment >= cutoff:
            kept.append(record)
    return kept


def build_report(records: Sequence[ViabilityRecord], tz: tzinfo | None = None) -> StatisticsReport:
    records = list(records)
    return StatisticsReport(
        summary=summarize(records),
        daily=daily_counts(records, tz),
        monthly=monthly_trends(records, tz),
        confidence=confidence_distribution(records),
        errors=error_analysis(records),
    )


__all__ = [
    "CONFIDENCE_BUCKETS",
    "ERROR_TYPES",
    "PERIODS",
    "ConfidenceBucket",
    "DailyCount",
    "ErrorBucket",
    "MonthlyTrend",
    "StatisticsReport",
    "Summary",
    "build_report",
    "confidence_bucket",
    "confidence_distribution",
    "daily_counts",
    "error_analysis",
    "error_type",
    "filter_period",
    "monthly_trends",
    "percentage",
    "summarize",
]
