"""
Metric Evaluator
================
Pure functions that turn a MetricDefinition plus a window of daily log rows
into a number (metric cards) or a per-day series (chart cards).

Day grouping
------------
Records that share a date form one day; a record without a date is a day on
its own.  "Per-day sum" = Σ selected fields over that day's records, so a
team window (one record per member per day) and a single-user window follow
the same rules.

Each selected field counts once, even if a definition lists it twice.

  total / sum      Σ per-day sums
  total / average  mean of per-day sums
  total / max|min  max|min of per-day sums
  conversion       Σ numerator / Σ denominator

Empty windows and zero denominators return 0 so cards keep rendering for
users with no history.

Ordering
--------
Records must already be sorted ascending by date.  evaluate_series() never
re-sorts; pass strict=True to have it raise on out-of-order input instead.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence

from .definitions import Aggregation, DisplayMode, MetricDefinition, metric_title
from .fields import field_label, field_value, record_date, record_member, selected_fields


class SeriesMode:
    TOTAL = "total"
    BREAKDOWN = "breakdown"
    MEMBERS = "members"

    ALL = frozenset({TOTAL, BREAKDOWN, MEMBERS})


CONVERSION_SERIES_KEY = "conversionRate"
TOTAL_SERIES_KEY = "total"


@dataclass
class Series:
    key: str
    label: str
    values: list[float] = field(default_factory=list)   # one per SeriesResult.dates entry


@dataclass
class SeriesResult:
    """Chart payload.  no_data=True means "render the empty state"."""
    mode: str
    dates: list[str] = field(default_factory=list)
    series: list[Series] = field(default_factory=list)
    no_data: bool = False

    def to_dict(self) -> dict:
        return {
            "mode": self.mode,
            "no_data": self.no_data,
            "dates": list(self.dates),
            "series": [
                {"key": s.key, "label": s.label, "values": list(s.values)}
                for s in self.series
            ],
        }


def series_mode_for(display_mode: Optional[str]) -> str:
    if display_mode == DisplayMode.CHART_TEAM:
        return SeriesMode.MEMBERS
    if display_mode == DisplayMode.CHART_METRIC:
        return SeriesMode.BREAKDOWN
    return SeriesMode.TOTAL


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _group_by_day(records: Sequence[Any]) -> list[tuple[str, list[Any]]]:
    days: dict[str, list[Any]] = {}
    for i, rec in enumerate(records):
        key = record_date(rec)
        if key is None:
            key = f"#{i}"
        days.setdefault(key, []).append(rec)
    return list(days.items())


def _sum_fields(records: Sequence[Any], fields: Sequence[str]) -> int:
    return sum(field_value(r, f) for r in records for f in fields)


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / denominator if denominator else 0.0


def _check_sorted(records: Sequence[Any]) -> None:
    previous = None
    for rec in records:
        current = record_date(rec)
        if current is None:
            continue
        if previous is not None and current < previous:
            raise ValueError(
                f"records must be sorted ascending by date ({current} follows {previous})"
            )
        previous = current


# ---------------------------------------------------------------------------
# Scalar
# ---------------------------------------------------------------------------

def evaluate(defn: MetricDefinition, records: Sequence[Any]) -> float:
    """Compute the card value for `defn` over `records`."""
    if defn.is_conversion:
        totals_n = _sum_fields(records, [defn.numerator])
        totals_d = _sum_fields(records, [defn.denominator])
        return _ratio(totals_n, totals_d)

    fields = selected_fields(defn.metrics)
    per_day = [_sum_fields(recs, fields) for _, recs in _group_by_day(records)]
    if not per_day:
        return 0

    if defn.aggregation == Aggregation.AVERAGE:
        return sum(per_day) / len(per_day)
    if defn.aggregation == Aggregation.MAX:
        return max(per_day)
    if defn.aggregation == Aggregation.MIN:
        return min(per_day)
    return sum(per_day)


# ---------------------------------------------------------------------------
# Series
# ---------------------------------------------------------------------------

def evaluate_series(
    defn: MetricDefinition,
    records: Sequence[Any],
    mode: Optional[str] = None,
    member_names: Optional[Mapping[str, str]] = None,
    strict: bool = False,
) -> SeriesResult:
    """
    Per-day chart data for `defn`.

    mode defaults to the one implied by defn.display_mode.  Conversion metrics
    always chart a single daily-ratio line whatever the mode.
    """
    mode = mode or series_mode_for(defn.display_mode)
    if mode not in SeriesMode.ALL:
        raise ValueError(f"Unknown series mode '{mode}'")
    if strict:
        _check_sorted(records)

    if defn.is_conversion:
        if len(defn.metrics) != 2:
            return SeriesResult(mode=mode, no_data=True)
    elif not defn.metrics:
        return SeriesResult(mode=mode, no_data=True)

    days = _group_by_day(records)
    dates = [key for key, _ in days]

    if defn.is_conversion:
        values = [
            _ratio(_sum_fields(recs, [defn.numerator]), _sum_fields(recs, [defn.denominator]))
            for _, recs in days
        ]
        return SeriesResult(mode=mode, dates=dates,
                            series=[Series(CONVERSION_SERIES_KEY, metric_title(defn), values)])

    fields = selected_fields(defn.metrics)

    if mode == SeriesMode.BREAKDOWN:
        series = [
            Series(f, field_label(f), [_sum_fields(recs, [f]) for _, recs in days])
            for f in fields
        ]
        return SeriesResult(mode=mode, dates=dates, series=series)

    if mode == SeriesMode.MEMBERS:
        return SeriesResult(mode=mode, dates=dates,
                            series=_member_series(days, fields, member_names or {}))

    values = [_sum_fields(recs, fields) for _, recs in days]
    return SeriesResult(mode=mode, dates=dates,
                        series=[Series(TOTAL_SERIES_KEY, "Total", values)])


def _member_series(
    days: list[tuple[str, list[Any]]],
    fields: list[str],
    member_names: Mapping[str, str],
) -> list[Series]:
    members: dict[str, str] = {}
    for _, recs in days:
        for rec in recs:
            member = record_member(rec)
            if member and member not in members:
                members[member] = (
                    member_names.get(member)
                    or getattr(rec, "member_name", None)
                    or member
                )

    series = []
    for member, label in members.items():
        values = [
            _sum_fields([r for r in recs if record_member(r) == member], fields)
            for _, recs in days
        ]
        series.append(Series(member, label, values))
    return series
