"""
Teams: membership lookups shared by the log, dashboard and template stores,
plus the owner-only management calls (name, roster, enabled activities).

A team row carries the owner's user_id and a team_members text[] of member
emails.  Anyone in either may read team data; only the owner may change it.
"""

import logging
from typing import Any, Dict, Iterable, List

from activity.fields import DEAL_FIELDS, ActivityField, field_label
from supabase_client import ForbiddenError, NotFoundError, TeamAccessError, execute, now_iso

logger = logging.getLogger(__name__)


class TeamError(ValueError):
    """Rejected team change (empty name, bad email, unknown activity)."""


def _membership_filter(user) -> str:
    # Owner by id, or member by email in the team_members text[] column
    return f"user_id.eq.{user.user_id},team_members.cs.{{{user.email}}}"


async def verify_team_access(supabase, user, team_id: str) -> Dict:
    """Return the team row if `user` owns it or is listed as a member."""
    result = execute(
        supabase.table('teams').select('*').eq('id', team_id).or_(_membership_filter(user)).limit(1),
        f"verify team {team_id}",
    )
    if not result.data:
        logger.warning(f"User {user.user_id} denied access to team {team_id}")
        raise TeamAccessError(f"No access to team {team_id}")
    return result.data[0]


async def team_ids_for_user(supabase, user) -> List[str]:
    result = execute(
        supabase.table('teams').select('id').or_(_membership_filter(user)),
        f"list teams for {user.user_id}",
    )
    return [row['id'] for row in result.data or []]


def activity_fields(team: Dict) -> List[str]:
    """Activity fields a team row tracks; every field when none are configured."""
    fields = []
    for activity in team.get('default_activities') or []:
        name = activity.get('id') if isinstance(activity, dict) else activity
        if ActivityField.is_valid(name) and name not in fields:
            fields.append(name)
    if not fields:
        return list(ActivityField.ALL)
    # Deals are logged from the opportunities page, not the activity list
    return fields + [f for f in DEAL_FIELDS if f not in fields]


async def available_fields_for_team(supabase, user, team_id: str) -> List[str]:
    team = await verify_team_access(supabase, user, team_id)
    return activity_fields(team)


# ---------------------------------------------------------------------------
# Management
# ---------------------------------------------------------------------------

async def list_teams(supabase, user) -> List[Dict]:
    result = execute(
        supabase.table('teams').select('*').or_(_membership_filter(user)),
        f"list teams for {user.user_id}",
    )
    return list(result.data or [])


async def _get_owned_team(supabase, user, team_id: str) -> Dict:
    result = execute(
        supabase.table('teams').select('*').eq('id', team_id).limit(1),
        f"load team {team_id}",
    )
    if not result.data:
        raise NotFoundError(f"Team {team_id} not found")
    team = result.data[0]
    if team.get('user_id') != user.user_id:
        raise ForbiddenError(f"Only the team owner can change team {team_id}")
    return team


async def _update_team(supabase, team: Dict, updates: Dict[str, Any]) -> Dict:
    result = execute(
        supabase.table('teams').update(updates).eq('id', team['id']),
        f"update team {team['id']}",
    )
    if result.data:
        return result.data[0]
    return {**team, **updates}


def _clean_name(name: Any) -> str:
    if not isinstance(name, str) or not name.strip():
        raise TeamError("Team name is required")
    return name.strip()


def _clean_email(email: Any) -> str:
    if not isinstance(email, str) or "@" not in email.strip():
        raise TeamError(f"'{email}' is not a valid email address")
    return email.strip().lower()


async def create_team(supabase, user, name: str) -> Dict:
    """New team owned by `user`, who is also its first listed member."""
    payload = {
        'name': _clean_name(name),
        'user_id': user.user_id,
        'team_members': [user.email.lower()],
        'default_activities': [],
        'created_at': now_iso(),
    }
    result = execute(supabase.table('teams').insert(payload), f"create team '{payload['name']}'")
    team = result.data[0] if result.data else payload
    logger.info(f"Team {team.get('id')} created by {user.user_id}")
    return team


async def update_team_name(supabase, user, team_id: str, name: str) -> Dict:
    team = await _get_owned_team(supabase, user, team_id)
    return await _update_team(supabase, team, {'name': _clean_name(name)})


async def update_team_activities(supabase, user, team_id: str, activities: Iterable[str]) -> Dict:
    """
    Replace the activities the team logs.  Deal fields are always tracked and
    are not stored in the list.
    """
    names = list(dict.fromkeys(activities))
    unknown = [n for n in names if not ActivityField.is_valid(n) or n in DEAL_FIELDS]
    if unknown:
        raise TeamError(f"Unknown activity field(s): {', '.join(map(str, unknown))}")
    team = await _get_owned_team(supabase, user, team_id)
    return await _update_team(supabase, team, {
        'default_activities': [{'id': n, 'label': field_label(n)} for n in names],
    })


async def add_team_member(supabase, user, team_id: str, email: str) -> Dict:
    email = _clean_email(email)
    team = await _get_owned_team(supabase, user, team_id)
    members = list(team.get('team_members') or [])
    if email in members:
        return team
    logger.info(f"Adding {email} to team {team_id}")
    return await _update_team(supabase, team, {'team_members': members + [email]})


async def remove_team_member(supabase, user, team_id: str, email: str) -> Dict:
    email = _clean_email(email)
    team = await _get_owned_team(supabase, user, team_id)
    members = list(team.get('team_members') or [])
    if email not in members:
        raise NotFoundError(f"{email} is not a member of team {team_id}")
    logger.info(f"Removing {email} from team {team_id}")
    return await _update_team(supabase, team, {'team_members': [m for m in members if m != email]})
