"""
Activity Fields & Daily Log Records
===================================
The fixed set of counters a rep logs each day, plus the typed accessor every
other module uses to read them.

Absent fields read as 0.  Older rows predate some counters (quotes, booked
calls, ...) and the team RPC only returns a subset, so a missing key is normal
data, never an error.

The deal pair (deals_won, deal_value) moves together: zeroing either one
zeroes the other.  enforce_deal_invariant() is the single place that rule
lives; daily_logs.py calls it before every write.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional


class ActivityField:
    COLD_CALLS = "cold_calls"
    TEXT_MESSAGES = "text_messages"
    FACEBOOK_DMS = "facebook_dms"
    LINKEDIN_DMS = "linkedin_dms"
    INSTAGRAM_DMS = "instagram_dms"
    COLD_EMAILS = "cold_emails"
    QUOTES = "quotes"
    BOOKED_CALLS = "booked_calls"
    COMPLETED_CALLS = "completed_calls"
    BOOKED_PRESENTATIONS = "booked_presentations"
    COMPLETED_PRESENTATIONS = "completed_presentations"
    SUBMITTED_APPLICATIONS = "submitted_applications"
    DEALS_WON = "deals_won"
    DEAL_VALUE = "deal_value"   # cents

    ALL = (
        COLD_CALLS, TEXT_MESSAGES, FACEBOOK_DMS, LINKEDIN_DMS, INSTAGRAM_DMS,
        COLD_EMAILS, QUOTES, BOOKED_CALLS, COMPLETED_CALLS,
        BOOKED_PRESENTATIONS, COMPLETED_PRESENTATIONS, SUBMITTED_APPLICATIONS,
        DEALS_WON, DEAL_VALUE,
    )

    @classmethod
    def is_valid(cls, name: str) -> bool:
        return name in cls.ALL


FIELD_LABELS: dict[str, str] = {
    ActivityField.COLD_CALLS: "Cold Calls",
    ActivityField.TEXT_MESSAGES: "Text Messages",
    ActivityField.FACEBOOK_DMS: "Facebook DMs",
    ActivityField.LINKEDIN_DMS: "LinkedIn DMs",
    ActivityField.INSTAGRAM_DMS: "Instagram DMs",
    ActivityField.COLD_EMAILS: "Cold Emails",
    ActivityField.QUOTES: "Quotes",
    ActivityField.BOOKED_CALLS: "Booked Calls",
    ActivityField.COMPLETED_CALLS: "Completed Calls",
    ActivityField.BOOKED_PRESENTATIONS: "Booked Presentations",
    ActivityField.COMPLETED_PRESENTATIONS: "Completed Presentations",
    ActivityField.SUBMITTED_APPLICATIONS: "Submitted Applications",
    ActivityField.DEALS_WON: "Deals Won",
    ActivityField.DEAL_VALUE: "Deal Value",
}


def field_label(name: str) -> str:
    return FIELD_LABELS.get(name, name.replace("_", " ").title())


class DailyLogError(ValueError):
    """Rejected write to a daily log (negative counter, bad deal value, ...)."""


# ---------------------------------------------------------------------------
# Record
# ---------------------------------------------------------------------------

@dataclass
class DailyLogRecord:
    """One user's counters for one team on one calendar day."""
    user_id: str
    team_id: str
    date: str                                   # ISO yyyy-mm-dd
    values: dict[str, int] = field(default_factory=dict)
    id: Optional[str] = None
    member_name: Optional[str] = None           # display name, team views only

    def get(self, name: str) -> int:
        return _coerce_count(self.values.get(name))

    def to_row(self) -> dict:
        """Supabase row shape: every counter present, absent ones as 0."""
        row = {name: self.get(name) for name in ActivityField.ALL}
        row.update(user_id=self.user_id, team_id=self.team_id, date=self.date)
        return row

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "DailyLogRecord":
        values = {
            name: _coerce_count(row.get(name))
            for name in ActivityField.ALL
            if row.get(name) is not None
        }
        return cls(
            user_id=str(row.get("user_id") or ""),
            team_id=str(row.get("team_id") or ""),
            date=str(row.get("date") or "")[:10],
            values=values,
            id=row.get("id"),
        )

    @classmethod
    def empty(cls, user_id: str, team_id: str, date: str) -> "DailyLogRecord":
        return cls(user_id=user_id, team_id=team_id, date=date,
                   values={name: 0 for name in ActivityField.ALL})


def _coerce_count(raw: Any) -> int:
    # RPC aggregates arrive as numeric strings or floats
    if raw is None or raw == "":
        return 0
    try:
        return int(float(raw))
    except (TypeError, ValueError):
        return 0


def field_value(record: Any, name: str) -> int:
    """Read one counter from a DailyLogRecord or a plain row dict (0 if absent)."""
    if isinstance(record, DailyLogRecord):
        return record.get(name)
    if isinstance(record, Mapping):
        return _coerce_count(record.get(name))
    return _coerce_count(getattr(record, name, None))


def record_date(record: Any) -> Optional[str]:
    if isinstance(record, DailyLogRecord):
        return record.date or None
    if isinstance(record, Mapping):
        raw = record.get("date") or record.get("log_date")
    else:
        raw = getattr(record, "date", None)
    return str(raw)[:10] if raw else None


def record_member(record: Any) -> Optional[str]:
    if isinstance(record, DailyLogRecord):
        return record.user_id or None
    if isinstance(record, Mapping):
        raw = record.get("user_id")
    else:
        raw = getattr(record, "user_id", None)
    return str(raw) if raw else None


# ---------------------------------------------------------------------------
# Write boundary
# ---------------------------------------------------------------------------

DEAL_FIELDS = (ActivityField.DEALS_WON, ActivityField.DEAL_VALUE)


def enforce_deal_invariant(values: dict[str, int], changed: Optional[Iterable[str]] = None) -> dict[str, int]:
    """
    Zero both deal fields when one of them is set to zero.  Returns a new dict.

    `changed` names the fields the caller is writing; only those can trigger
    the coupling, so a stored 0/0 pair does not swallow a new deal count.
    Without it every deal field in `values` counts as written.
    """
    out = dict(values)
    written = set(DEAL_FIELDS if changed is None else changed)
    zeroed = [f for f in DEAL_FIELDS if f in written and f in out and _coerce_count(out[f]) == 0]
    if zeroed:
        out[ActivityField.DEALS_WON] = 0
        out[ActivityField.DEAL_VALUE] = 0
    return out


def validate_counters(values: Mapping[str, Any]) -> dict[str, int]:
    """Reject unknown fields and negative / non-integer counts."""
    clean: dict[str, int] = {}
    for name, raw in values.items():
        if not ActivityField.is_valid(name):
            raise DailyLogError(f"Unknown activity field '{name}'")
        if isinstance(raw, bool) or not isinstance(raw, int):
            raise DailyLogError(f"'{name}' must be a whole number")
        if raw < 0:
            raise DailyLogError(f"'{name}' cannot be negative")
        clean[name] = raw
    return clean


def merge_log(existing: Optional[Mapping[str, Any]], updates: Mapping[str, int]) -> dict[str, int]:
    """
    Merge-on-write: counters named in `updates` win, every other counter keeps
    its stored value (or 0 for a new row).  The deal invariant fires only
    for deal fields named in `updates`.
    """
    merged = {}
    for name in ActivityField.ALL:
        if name in updates:
            merged[name] = updates[name]
        elif existing is not None:
            merged[name] = field_value(existing, name)
        else:
            merged[name] = 0
    return enforce_deal_invariant(merged, changed=updates.keys())


def selected_fields(names: Iterable[str]) -> list[str]:
    """De-duplicate while keeping order."""
    return list(dict.fromkeys(names))
