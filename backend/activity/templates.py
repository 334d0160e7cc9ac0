"""
Dashboards & Templates
======================
Row types for the dashboards / dashboard_templates tables plus the two pure
template operations:

  check_compatibility()  which activity fields a template needs that the
                         target team does not track
  clone_template()       a fresh Dashboard holding a deep copy of the
                         template config

Cloning copies configuration only; no activity data travels with a template.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional

from .dashboard_config import DashboardConfig, empty_config


class Visibility:
    PRIVATE = "private"
    PUBLIC = "public"

    ALL = frozenset({PRIVATE, PUBLIC})


TEMPLATE_CATEGORIES = [
    "Sales",
    "Marketing",
    "Customer Success",
    "Operations",
    "Finance",
    "HR",
    "Other",
]


class OwnershipError(ValueError):
    """A dashboard must belong to exactly one of a user or a team."""


def check_owner(user_id: Optional[str], team_id: Optional[str]) -> None:
    if bool(user_id) == bool(team_id):
        raise OwnershipError("Dashboard needs exactly one owner: user_id or team_id")


@dataclass
class Dashboard:
    title: str
    config: DashboardConfig = field(default_factory=empty_config)
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    description: Optional[str] = None
    is_home: bool = False
    version: int = 1
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    def __post_init__(self):
        check_owner(self.user_id, self.team_id)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Dashboard":
        return cls(
            id=row.get("id"),
            title=row.get("title") or "",
            description=row.get("description"),
            config=row.get("config") or empty_config(),
            user_id=row.get("user_id"),
            team_id=row.get("team_id"),
            is_home=bool(row.get("is_home")),
            version=row.get("version") or 1,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )

    def to_insert(self) -> dict:
        """Columns sent on insert; id and timestamps are database defaults."""
        row = {
            "title": self.title,
            "description": self.description,
            "config": self.config,
            "is_home": self.is_home,
            "version": self.version,
        }
        if self.team_id:
            row["team_id"] = self.team_id
        else:
            row["user_id"] = self.user_id
        return row


@dataclass
class Template:
    name: str
    owner_id: str
    config: DashboardConfig = field(default_factory=empty_config)
    description: Optional[str] = None
    category: Optional[str] = None
    visibility: str = Visibility.PRIVATE
    downloads_count: int = 0
    id: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Template":
        return cls(
            id=row.get("id"),
            name=row.get("name") or "",
            description=row.get("description"),
            config=row.get("config") or empty_config(),
            category=row.get("category"),
            visibility=row.get("visibility") or Visibility.PRIVATE,
            owner_id=row.get("owner_id") or "",
            downloads_count=row.get("downloads_count") or 0,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


# ---------------------------------------------------------------------------
# Compatibility
# ---------------------------------------------------------------------------

@dataclass
class CompatibilityResult:
    compatible: bool
    missing_fields: list[str] = field(default_factory=list)


def referenced_fields(config: Any) -> list[str]:
    """Activity fields used by any metric in `config`, first-seen order, no repeats."""
    seen: dict[str, None] = {}
    metrics = config.get("metrics") if isinstance(config, dict) else None
    for entry in metrics if isinstance(metrics, list) else []:
        names = entry.get("metrics") if isinstance(entry, dict) else None
        for name in names if isinstance(names, list) else []:
            if isinstance(name, str):
                seen.setdefault(name, None)
    return list(seen)


def check_compatibility(template: Any, available_fields: Iterable[str]) -> CompatibilityResult:
    config = template.config if isinstance(template, Template) else template
    available = set(available_fields)
    missing = [name for name in referenced_fields(config) if name not in available]
    return CompatibilityResult(compatible=not missing, missing_fields=missing)


# ---------------------------------------------------------------------------
# Cloning
# ---------------------------------------------------------------------------

@dataclass
class CloneOverrides:
    title: Optional[str] = None
    description: Optional[str] = None
    user_id: Optional[str] = None
    team_id: Optional[str] = None


def clone_template(template: Template, overrides: CloneOverrides) -> Dashboard:
    """
    Build a new, unsaved Dashboard from `template` and count the download.

    The download is counted once the dashboard is built (ownership checked),
    before the caller persists it, and is not undone if persisting fails.
    """
    dashboard = Dashboard(
        title=overrides.title or template.name,
        description=overrides.description if overrides.description is not None else template.description,
        config=copy.deepcopy(template.config),
        user_id=None if overrides.team_id else overrides.user_id,
        team_id=overrides.team_id,
    )
    template.downloads_count += 1
    return dashboard
