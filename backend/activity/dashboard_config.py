"""
Dashboard Config Round-Trip
===========================
A DashboardConfig is the JSON document stored in dashboards.config and
dashboard_templates.config:

    {
      "metrics": [{id, type, metrics, displayType, aggregation, name,
                   description, displayMode, order, rowId}, ...],
      "layout":  [{rowId, metrics, order, height}, ...]
    }

to_config()    editing state → document.  Never validates, never raises.
from_config()  document → editing state.  Inverse of to_config() for valid
               documents; repairs malformed ones instead of raising.
validate_config() is the explicit pre-save check.

Repair policy for from_config (dangling references are dropped)
---------------------------------------------------------------
  - row entry pointing at a missing definition      → entry dropped
  - row entry for a definition owned by another row → entry dropped
  - definition whose rowId has no row               → moved to "default"
  - definition missing from its row's id list       → appended to that row
  - no "default" row                                → empty one appended
  - duplicate ids                                   → first one wins
  - unknown enum values / non-dict entries          → defaulted / skipped
Every repair is logged at WARNING.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Optional, Sequence

from .definitions import (
    DEFAULT_ROW_ID,
    Aggregation,
    DisplayMode,
    DisplayType,
    LayoutRow,
    MetricDefinition,
    MetricDefinitionError,
    MetricType,
    validate_definition,
)

logger = logging.getLogger(__name__)

DashboardConfig = dict[str, list[dict]]


class DashboardConfigError(ValueError):
    """Structural problems found by validate_config()."""

    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


def empty_config() -> DashboardConfig:
    return {"metrics": [], "layout": [LayoutRow(DEFAULT_ROW_ID, [], 0).to_dict()]}


# ---------------------------------------------------------------------------
# to_config
# ---------------------------------------------------------------------------

def to_config(definitions: Sequence[Any], rows: Sequence[Any]) -> DashboardConfig:
    return {
        "metrics": [_definition_to_dict(d) for d in definitions],
        "layout": [_row_to_dict(r) for r in rows],
    }


def _definition_to_dict(defn: Any) -> dict:
    if isinstance(defn, MetricDefinition):
        return defn.to_dict()
    return _copy_entry(defn)


def _row_to_dict(row: Any) -> dict:
    if isinstance(row, LayoutRow):
        return row.to_dict()
    return _copy_entry(row)


def _copy_entry(entry: Any) -> dict:
    if not isinstance(entry, dict):
        return {}
    return {k: list(v) if isinstance(v, list) else v for k, v in entry.items()}


# ---------------------------------------------------------------------------
# from_config
# ---------------------------------------------------------------------------

def _new_id() -> str:
    return str(uuid.uuid4())


def _as_int(raw: Any, default: int) -> int:
    if isinstance(raw, bool) or not isinstance(raw, int):
        return default
    return raw


def _as_str(raw: Any) -> Optional[str]:
    return raw if isinstance(raw, str) else None


def _str_list(raw: Any) -> list[str]:
    if not isinstance(raw, list):
        return []
    return [x for x in raw if isinstance(x, str)]


def _definition_from_dict(entry: dict) -> MetricDefinition:
    mtype = _as_str(entry.get("type"))
    if mtype not in MetricType.ALL:
        mtype = MetricType.TOTAL
    aggregation = _as_str(entry.get("aggregation"))
    if aggregation not in Aggregation.ALL:
        aggregation = Aggregation.SUM if mtype == MetricType.TOTAL else None
    display_type = _as_str(entry.get("displayType"))
    display_mode = _as_str(entry.get("displayMode"))

    return MetricDefinition(
        id=_as_str(entry.get("id")) or _new_id(),
        type=mtype,
        metrics=_str_list(entry.get("metrics")),
        display_type=display_type if display_type in DisplayType.ALL else DisplayType.NUMBER,
        aggregation=aggregation,
        name=_as_str(entry.get("name")),
        description=_as_str(entry.get("description")),
        display_mode=display_mode if display_mode in DisplayMode.ALL else None,
        order=_as_int(entry.get("order"), 0),
        row_id=_as_str(entry.get("rowId")) or DEFAULT_ROW_ID,
    )


def _row_from_dict(entry: dict, index: int) -> LayoutRow:
    height = entry.get("height")
    if isinstance(height, bool) or not isinstance(height, (int, float)):
        height = None
    return LayoutRow(
        id=_as_str(entry.get("rowId")) or _as_str(entry.get("id")) or _new_id(),
        metrics=_str_list(entry.get("metrics")),
        order=_as_int(entry.get("order"), index),
        height=height,
    )


def from_config(config: Any) -> tuple[list[MetricDefinition], list[LayoutRow]]:
    if not isinstance(config, dict):
        if config is not None:
            logger.warning("from_config: config is %s, expected dict; loading empty", type(config).__name__)
        config = {}

    definitions: list[MetricDefinition] = []
    seen_defs: set[str] = set()
    raw_metrics = config.get("metrics")
    for entry in raw_metrics if isinstance(raw_metrics, list) else []:
        if not isinstance(entry, dict):
            logger.warning("from_config: skipping non-object metric entry %r", entry)
            continue
        defn = _definition_from_dict(entry)
        if defn.id in seen_defs:
            logger.warning("from_config: duplicate metric id %s dropped", defn.id)
            continue
        seen_defs.add(defn.id)
        definitions.append(defn)

    rows: list[LayoutRow] = []
    seen_rows: set[str] = set()
    raw_layout = config.get("layout")
    for index, entry in enumerate(raw_layout if isinstance(raw_layout, list) else []):
        if not isinstance(entry, dict):
            logger.warning("from_config: skipping non-object layout entry %r", entry)
            continue
        row = _row_from_dict(entry, index)
        if row.id in seen_rows:
            logger.warning("from_config: duplicate row id %s dropped", row.id)
            continue
        seen_rows.add(row.id)
        rows.append(row)

    if DEFAULT_ROW_ID not in seen_rows:
        rows.append(LayoutRow(DEFAULT_ROW_ID, [], order=len(rows)))
        seen_rows.add(DEFAULT_ROW_ID)

    _repair_references(definitions, rows, seen_rows)
    return definitions, rows


def _repair_references(
    definitions: list[MetricDefinition],
    rows: list[LayoutRow],
    row_ids: set[str],
) -> None:
    by_id = {d.id: d for d in definitions}

    for defn in definitions:
        if defn.row_id not in row_ids:
            logger.warning("from_config: metric %s references missing row %s; moved to default",
                           defn.id, defn.row_id)
            defn.row_id = DEFAULT_ROW_ID

    placed: set[str] = set()
    for row in rows:
        kept = []
        for metric_id in row.metrics:
            defn = by_id.get(metric_id)
            if defn is None:
                logger.warning("from_config: row %s references missing metric %s; dropped",
                               row.id, metric_id)
                continue
            if defn.row_id != row.id or metric_id in placed:
                logger.warning("from_config: row %s lists metric %s owned elsewhere; dropped",
                               row.id, metric_id)
                continue
            placed.add(metric_id)
            kept.append(metric_id)
        row.metrics = kept

    rows_by_id = {r.id: r for r in rows}
    for defn in definitions:
        if defn.id not in placed:
            row = rows_by_id[defn.row_id]
            logger.warning("from_config: metric %s missing from row %s; appended", defn.id, row.id)
            defn.order = len(row.metrics)
            row.metrics.append(defn.id)
            placed.add(defn.id)


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def find_config_issues(config: Any) -> list[str]:
    """Every structural problem in `config`; empty list means it is safe to persist."""
    if not isinstance(config, dict):
        return ["config must be an object with 'metrics' and 'layout'"]
    metrics = config.get("metrics")
    layout = config.get("layout")
    problems = []
    if not isinstance(metrics, list):
        problems.append("'metrics' must be a list")
        metrics = []
    if not isinstance(layout, list):
        problems.append("'layout' must be a list")
        layout = []

    def_rows: dict[str, Any] = {}
    for entry in metrics:
        if not isinstance(entry, dict) or not isinstance(entry.get("id"), str):
            problems.append("every metric needs a string 'id'")
            continue
        metric_id = entry["id"]
        if metric_id in def_rows:
            problems.append(f"duplicate metric id '{metric_id}'")
            continue
        def_rows[metric_id] = entry.get("rowId")
        try:
            validate_definition(_definition_from_entry_strict(entry))
        except MetricDefinitionError as e:
            problems.append(f"metric '{metric_id}': {e}")

    row_ids: set[str] = set()
    placements: dict[str, str] = {}
    for entry in layout:
        row_id = entry.get("rowId") if isinstance(entry, dict) else None
        if not isinstance(row_id, str):
            problems.append("every layout row needs a string 'rowId'")
            continue
        if row_id in row_ids:
            problems.append(f"duplicate row id '{row_id}'")
            continue
        row_ids.add(row_id)
        row_metrics = entry.get("metrics", [])
        if not isinstance(row_metrics, list):
            problems.append(f"row '{row_id}' 'metrics' must be a list of metric ids")
            continue
        for metric_id in row_metrics:
            if not isinstance(metric_id, str):
                problems.append(f"row '{row_id}' has a non-string metric id {metric_id!r}")
            elif metric_id not in def_rows:
                problems.append(f"row '{row_id}' references missing metric '{metric_id}'")
            elif metric_id in placements:
                problems.append(f"metric '{metric_id}' appears in more than one row")
            else:
                placements[metric_id] = row_id

    if DEFAULT_ROW_ID not in row_ids:
        problems.append(f"layout is missing the '{DEFAULT_ROW_ID}' row")

    for metric_id, row_id in def_rows.items():
        if not isinstance(row_id, str) or row_id not in row_ids:
            problems.append(f"metric '{metric_id}' references missing row '{row_id}'")
        elif placements.get(metric_id) != row_id:
            problems.append(f"metric '{metric_id}' is not listed in its row '{row_id}'")

    return problems


def _definition_from_entry_strict(entry: dict) -> MetricDefinition:
    # Absent displayType/aggregation take their defaults; everything else is checked as stored.
    return MetricDefinition(
        id=entry["id"],
        type=entry.get("type"),
        metrics=entry.get("metrics"),
        display_type=entry.get("displayType", DisplayType.NUMBER),
        aggregation=entry.get("aggregation", Aggregation.SUM),
        display_mode=entry.get("displayMode"),
    )


def validate_config(config: Any) -> DashboardConfig:
    problems = find_config_issues(config)
    if problems:
        raise DashboardConfigError(problems)
    return config
