"""
Dashboard layout editing.

DashboardEditor owns the in-progress definitions and rows for one dashboard.
Callers load it from a stored config, apply edits, and hand to_config() back
to the store; nothing here is shared between dashboards.
"""

from __future__ import annotations

import copy
import uuid
from typing import Any, Optional

from .dashboard_config import DashboardConfig, from_config, to_config
from .definitions import (
    DEFAULT_ROW_ID,
    Aggregation,
    DisplayType,
    LayoutRow,
    MetricDefinition,
    MetricType,
    validate_definition,
)


class LayoutError(ValueError):
    """Edit refers to a missing row/metric or would remove the default row."""


_EDITABLE_METRIC_FIELDS = frozenset({
    "type", "metrics", "display_type", "aggregation",
    "name", "description", "display_mode",
})


def _move(items: list, from_index: int, to_index: int) -> None:
    if not (0 <= from_index < len(items)) or not (0 <= to_index < len(items)):
        raise LayoutError(f"index out of range: {from_index} → {to_index} (size {len(items)})")
    items.insert(to_index, items.pop(from_index))


class DashboardEditor:
    def __init__(
        self,
        definitions: Optional[list[MetricDefinition]] = None,
        rows: Optional[list[LayoutRow]] = None,
        available_fields: Optional[Any] = None,
    ):
        self.definitions: list[MetricDefinition] = definitions or []
        self.rows: list[LayoutRow] = rows or [LayoutRow(DEFAULT_ROW_ID, [], 0)]
        self.available_fields = available_fields

    @classmethod
    def load(cls, config: Any, available_fields: Optional[Any] = None) -> "DashboardEditor":
        definitions, rows = from_config(copy.deepcopy(config))
        return cls(definitions, rows, available_fields)

    def to_config(self) -> DashboardConfig:
        return to_config(self.definitions, self.rows)

    # -- lookups ----------------------------------------------------------

    def get_metric(self, metric_id: str) -> MetricDefinition:
        for defn in self.definitions:
            if defn.id == metric_id:
                return defn
        raise LayoutError(f"Metric '{metric_id}' not found")

    def get_row(self, row_id: str) -> LayoutRow:
        for row in self.rows:
            if row.id == row_id:
                return row
        raise LayoutError(f"Row '{row_id}' not found")

    def ordered_rows(self) -> list[LayoutRow]:
        return sorted(self.rows, key=lambda r: r.order)

    def row_metrics(self, row_id: str) -> list[MetricDefinition]:
        return [self.get_metric(mid) for mid in self.get_row(row_id).metrics]

    # -- metrics ----------------------------------------------------------

    def add_metric(
        self,
        row_id: str,
        type: str,
        metrics: list[str],
        display_type: str = DisplayType.NUMBER,
        aggregation: Optional[str] = Aggregation.SUM,
        name: Optional[str] = None,
        description: Optional[str] = None,
        display_mode: Optional[str] = None,
    ) -> MetricDefinition:
        row = self.get_row(row_id)
        defn = MetricDefinition(
            id=str(uuid.uuid4()),
            type=type,
            metrics=list(metrics),
            display_type=display_type,
            aggregation=aggregation if type == MetricType.TOTAL else None,
            name=name,
            description=description,
            display_mode=display_mode,
            order=len(row.metrics),
            row_id=row_id,
        )
        validate_definition(defn, self.available_fields)
        self.definitions.append(defn)
        row.metrics.append(defn.id)
        return defn

    def update_metric(self, metric_id: str, **updates: Any) -> MetricDefinition:
        unknown = set(updates) - _EDITABLE_METRIC_FIELDS
        if unknown:
            raise LayoutError(f"Cannot edit {', '.join(sorted(unknown))}; use move_metric for placement")
        defn = self.get_metric(metric_id)
        candidate = copy.deepcopy(defn)
        for key, value in updates.items():
            setattr(candidate, key, value)
        if candidate.type == MetricType.CONVERSION:
            candidate.aggregation = None
        elif candidate.aggregation is None:
            candidate.aggregation = Aggregation.SUM
        validate_definition(candidate, self.available_fields)
        self.definitions[self.definitions.index(defn)] = candidate
        return candidate

    def remove_metric(self, metric_id: str) -> None:
        defn = self.get_metric(metric_id)
        row = self.get_row(defn.row_id)
        self.definitions.remove(defn)
        row.metrics = [m for m in row.metrics if m != metric_id]
        self._renumber_metrics(row)

    def reorder_metrics(self, row_id: str, from_index: int, to_index: int) -> None:
        row = self.get_row(row_id)
        _move(row.metrics, from_index, to_index)
        self._renumber_metrics(row)

    def move_metric(self, metric_id: str, target_row_id: str, index: Optional[int] = None) -> None:
        defn = self.get_metric(metric_id)
        target = self.get_row(target_row_id)
        source = self.get_row(defn.row_id)
        source.metrics = [m for m in source.metrics if m != metric_id]
        if index is None or index > len(target.metrics):
            index = len(target.metrics)
        target.metrics.insert(max(index, 0), metric_id)
        defn.row_id = target.id
        self._renumber_metrics(source)
        self._renumber_metrics(target)

    def _renumber_metrics(self, row: LayoutRow) -> None:
        positions = {mid: i for i, mid in enumerate(row.metrics)}
        for defn in self.definitions:
            if defn.id in positions:
                defn.order = positions[defn.id]

    # -- rows -------------------------------------------------------------

    def add_row(self, height: Optional[int] = None) -> LayoutRow:
        row = LayoutRow(id=str(uuid.uuid4()), metrics=[], order=len(self.rows), height=height)
        self.rows.append(row)
        return row

    def update_row(self, row_id: str, height: Optional[int] = None) -> LayoutRow:
        row = self.get_row(row_id)
        row.height = height
        return row

    def remove_row(self, row_id: str) -> None:
        """Drop a row together with the metrics placed in it."""
        if row_id == DEFAULT_ROW_ID:
            raise LayoutError("The default row cannot be removed")
        row = self.get_row(row_id)
        doomed = set(row.metrics)
        self.definitions = [
            d for d in self.definitions if d.id not in doomed and d.row_id != row_id
        ]
        self.rows = [r for r in self.ordered_rows() if r.id != row_id]
        for i, r in enumerate(self.rows):
            r.order = i

    def reorder_rows(self, from_index: int, to_index: int) -> None:
        rows = self.ordered_rows()
        _move(rows, from_index, to_index)
        for i, r in enumerate(rows):
            r.order = i
        self.rows = rows
