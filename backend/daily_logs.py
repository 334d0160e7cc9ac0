"""
Daily log persistence.

All writes to daily_logs go through DailyLogService so the merge-on-write
rule and the deal invariant are applied in one place.  Team windows come
from the get_team_member_logs RPC and are expanded into one DailyLogRecord
per member per day for the evaluator.
"""

import logging
from datetime import date as date_type
from typing import Any, Dict, List, Optional

from activity.fields import (
    ActivityField,
    DailyLogError,
    DailyLogRecord,
    merge_log,
    validate_counters,
)
from supabase_client import execute
from teams import verify_team_access

logger = logging.getLogger(__name__)


def _iso_day(value: Any) -> str:
    if isinstance(value, date_type):
        return value.isoformat()[:10]
    return str(value)[:10]


class DailyLogService:
    """Reads and writes daily_logs for one Supabase client."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    async def _fetch_row(self, user_id: str, team_id: str, day: str) -> Optional[Dict]:
        result = execute(
            self.supabase.table('daily_logs').select('*').eq(
                'user_id', user_id
            ).eq('team_id', team_id).eq('date', day).limit(1),
            f"load daily log {user_id}/{day}",
        )
        return result.data[0] if result.data else None

    async def get_daily_log(self, user_id: str, team_id: str, day: Any) -> DailyLogRecord:
        """Stored log for the key, or an all-zero record if nothing was logged yet."""
        day = _iso_day(day)
        row = await self._fetch_row(user_id, team_id, day)
        if row is None:
            return DailyLogRecord.empty(user_id, team_id, day)
        return DailyLogRecord.from_row(row)

    async def create_or_update_daily_log(self, user, team_id: str, day: Any, updates: Dict[str, Any]) -> DailyLogRecord:
        """
        Upsert the caller's log for (team, day).  Counters missing from
        `updates` keep their stored values.
        """
        clean = validate_counters(updates)
        await verify_team_access(self.supabase, user, team_id)
        day = _iso_day(day)

        existing = await self._fetch_row(user.user_id, team_id, day)
        payload = merge_log(existing, clean)
        payload.update(user_id=user.user_id, team_id=team_id, date=day)

        if existing:
            result = execute(
                self.supabase.table('daily_logs').update(payload).eq('id', existing['id']),
                f"update daily log {existing['id']}",
            )
        else:
            result = execute(
                self.supabase.table('daily_logs').insert(payload),
                f"insert daily log {user.user_id}/{day}",
            )
        logger.info(f"Daily log saved for user {user.user_id} team {team_id} on {day}")
        return DailyLogRecord.from_row(result.data[0] if result.data else payload)

    async def add_deal(self, user, team_id: str, day: Any, value_cents: int) -> DailyLogRecord:
        """Record one won deal worth `value_cents` on top of the day's totals."""
        if isinstance(value_cents, bool) or not isinstance(value_cents, int) or value_cents <= 0:
            raise DailyLogError("Deal value must be a whole number greater than 0")
        current = await self.get_daily_log(user.user_id, team_id, day)
        return await self.create_or_update_daily_log(user, team_id, day, {
            ActivityField.DEALS_WON: current.get(ActivityField.DEALS_WON) + 1,
            ActivityField.DEAL_VALUE: current.get(ActivityField.DEAL_VALUE) + value_cents,
        })

    async def get_team_daily_logs(self, user, team_id: str, start_date: Any, end_date: Any) -> List[DailyLogRecord]:
        """One record per member per day in [start_date, end_date], sorted by date."""
        await verify_team_access(self.supabase, user, team_id)
        result = execute(
            self.supabase.rpc('get_team_member_logs', {
                'p_team_id': team_id,
                'p_start_date': _iso_day(start_date),
                'p_end_date': _iso_day(end_date),
            }),
            f"get_team_member_logs {team_id}",
        )

        records: List[DailyLogRecord] = []
        for day in result.data or []:
            day_key = _iso_day(day.get('date'))
            members = day.get('member_data') or []
            if not members:
                # Older RPC versions return only team totals for the day
                totals = DailyLogRecord.from_row({**day, 'team_id': team_id, 'user_id': ''})
                records.append(totals)
                continue
            for member in members:
                rec = DailyLogRecord.from_row({
                    **member,
                    'user_id': member.get('id') or member.get('email'),
                    'team_id': team_id,
                    'date': day_key,
                })
                rec.member_name = member.get('name') or member.get('email')
                records.append(rec)

        records.sort(key=lambda r: r.date)
        return records
