"""
Metric Definitions
==================
A metric definition names a computation over activity fields:

  total       : aggregate (sum | average | max | min) of the per-day sum of
                one or more fields
  conversion  : Σ numerator / Σ denominator over exactly two fields

Shape rules are enforced once, by validate_definition(), when a definition
is built or edited.  The evaluator trusts what it is given.

Wire keys are camelCase (displayType, displayMode, rowId) because the same
JSON document is read by the web client.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional

from .fields import ActivityField, field_label


class MetricType:
    TOTAL = "total"
    CONVERSION = "conversion"

    ALL = frozenset({TOTAL, CONVERSION})


class DisplayType:
    NUMBER = "number"
    DOLLAR = "dollar"
    PERCENT = "percent"

    ALL = frozenset({NUMBER, DOLLAR, PERCENT})


class Aggregation:
    SUM = "sum"
    AVERAGE = "average"
    MAX = "max"
    MIN = "min"

    ALL = frozenset({SUM, AVERAGE, MAX, MIN})


class DisplayMode:
    NUMBER = "number"
    CHART_TOTAL = "chart_total"
    CHART_TEAM = "chart_team"
    CHART_METRIC = "chart_metric"

    ALL = frozenset({NUMBER, CHART_TOTAL, CHART_TEAM, CHART_METRIC})


DEFAULT_ROW_ID = "default"


class MetricDefinitionError(ValueError):
    """Definition violates a shape rule (wrong field count, unknown enum, ...)."""


@dataclass
class MetricDefinition:
    id: str
    type: str
    metrics: list[str]
    display_type: str = DisplayType.NUMBER
    aggregation: Optional[str] = Aggregation.SUM   # ignored for conversion
    name: Optional[str] = None
    description: Optional[str] = None
    display_mode: Optional[str] = None
    order: int = 0
    row_id: str = DEFAULT_ROW_ID

    @property
    def is_conversion(self) -> bool:
        return self.type == MetricType.CONVERSION

    @property
    def numerator(self) -> Optional[str]:
        return self.metrics[0] if self.is_conversion and self.metrics else None

    @property
    def denominator(self) -> Optional[str]:
        return self.metrics[1] if self.is_conversion and len(self.metrics) > 1 else None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type,
            "metrics": list(self.metrics),
            "displayType": self.display_type,
            "aggregation": self.aggregation,
            "name": self.name,
            "description": self.description,
            "displayMode": self.display_mode,
            "order": self.order,
            "rowId": self.row_id,
        }


@dataclass
class LayoutRow:
    id: str
    metrics: list[str]          # metric definition ids, left to right
    order: int = 0
    height: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "rowId": self.id,
            "metrics": list(self.metrics),
            "order": self.order,
            "height": self.height,
        }


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def _one_of(value: Any, choices: frozenset) -> bool:
    return isinstance(value, str) and value in choices


def validate_definition(defn: MetricDefinition, available_fields: Optional[Any] = None) -> MetricDefinition:
    """
    Raise MetricDefinitionError if `defn` breaks a shape rule.

    `available_fields` optionally narrows the allowed field names (a team's
    enabled activities); defaults to every known activity field.
    """
    allowed = set(available_fields) if available_fields is not None else set(ActivityField.ALL)

    if not _one_of(defn.type, MetricType.ALL):
        raise MetricDefinitionError(f"Unknown metric type '{defn.type}'")
    if not _one_of(defn.display_type, DisplayType.ALL):
        raise MetricDefinitionError(f"Unknown display type '{defn.display_type}'")
    if defn.display_mode is not None and not _one_of(defn.display_mode, DisplayMode.ALL):
        raise MetricDefinitionError(f"Unknown display mode '{defn.display_mode}'")
    if not isinstance(defn.metrics, list):
        raise MetricDefinitionError("'metrics' must be a list of field names")

    if defn.type == MetricType.TOTAL:
        if len(defn.metrics) < 1:
            raise MetricDefinitionError("A total metric needs at least one field")
        if not _one_of(defn.aggregation, Aggregation.ALL):
            raise MetricDefinitionError(f"Unknown aggregation '{defn.aggregation}'")
    else:
        if len(defn.metrics) != 2:
            raise MetricDefinitionError(
                "A conversion metric needs exactly two fields: numerator and denominator"
            )

    unknown = [m for m in defn.metrics if not isinstance(m, str) or m not in allowed]
    if unknown:
        raise MetricDefinitionError(f"Unknown activity field(s): {', '.join(map(str, unknown))}")
    return defn


# ---------------------------------------------------------------------------
# Presentation
# ---------------------------------------------------------------------------

def metric_title(defn: MetricDefinition) -> str:
    if defn.name:
        return defn.name
    if defn.is_conversion:
        return f"{field_label(defn.numerator or '')} / {field_label(defn.denominator or '')} Rate"
    return "Total " + " + ".join(field_label(m) for m in dict.fromkeys(defn.metrics))


def format_value(value: float, display_type: str, cents: bool = False) -> str:
    """
    Render a metric value the way the dashboard cards do.

    `cents` marks dollar values computed from deal_value (stored in cents).
    """
    if display_type == DisplayType.DOLLAR:
        amount = value / 100 if cents else value
        sign = "-" if amount < 0 else ""
        return f"{sign}${abs(amount):,.2f}"
    if display_type == DisplayType.PERCENT:
        return f"{value * 100:.1f}%"
    if float(value).is_integer():
        return f"{int(value):,}"
    return f"{value:,.3f}".rstrip("0").rstrip(".")
