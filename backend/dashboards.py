"""
Dashboard and template persistence.

DashboardStore  : dashboards table (user- or team-owned, whole-config writes)
TemplateStore   : dashboard_templates table, cloning, compatibility checks

Configs are validated with validate_config() before every write; loaded
configs are returned as stored and repaired only when rehydrated into a
DashboardEditor.
"""

import copy
import logging
from typing import Any, Dict, Iterable, List, Optional

from activity.dashboard_config import empty_config, validate_config
from activity.templates import (
    CloneOverrides,
    CompatibilityResult,
    Dashboard,
    Template,
    Visibility,
    check_compatibility,
    clone_template,
)
from supabase_client import ForbiddenError, NotFoundError, execute, now_iso
from teams import team_ids_for_user, verify_team_access

logger = logging.getLogger(__name__)


class TemplateError(ValueError):
    """Template fields failed validation (unknown visibility, empty name)."""


class DashboardStore:
    """CRUD for dashboards visible to the calling user."""

    def __init__(self, supabase_client):
        self.supabase = supabase_client

    async def _ensure_access(self, user, dashboard: Dashboard) -> None:
        if dashboard.team_id:
            await verify_team_access(self.supabase, user, dashboard.team_id)
        elif dashboard.user_id != user.user_id:
            raise ForbiddenError(f"Dashboard {dashboard.id} belongs to another user")

    async def list_dashboards(self, user) -> List[Dashboard]:
        """The user's own dashboards followed by those of every team they belong to."""
        own = execute(
            self.supabase.table('dashboards').select('*').eq('user_id', user.user_id),
            f"list dashboards for {user.user_id}",
        )
        rows = list(own.data or [])

        team_ids = await team_ids_for_user(self.supabase, user)
        if team_ids:
            team = execute(
                self.supabase.table('dashboards').select('*').in_('team_id', team_ids),
                f"list team dashboards for {user.user_id}",
            )
            rows.extend(team.data or [])
        return [Dashboard.from_row(r) for r in rows]

    async def get_dashboard(self, user, dashboard_id: str) -> Dashboard:
        result = execute(
            self.supabase.table('dashboards').select('*').eq('id', dashboard_id).limit(1),
            f"load dashboard {dashboard_id}",
        )
        if not result.data:
            raise NotFoundError(f"Dashboard {dashboard_id} not found")
        dashboard = Dashboard.from_row(result.data[0])
        await self._ensure_access(user, dashboard)
        return dashboard

    async def get_home_dashboard(self, user) -> Optional[Dashboard]:
        for dashboard in await self.list_dashboards(user):
            if dashboard.is_home:
                return dashboard
        return None

    async def check_insert(self, user, dashboard: Dashboard) -> None:
        """Raise if `dashboard` could not be inserted by `user`; writes nothing."""
        validate_config(dashboard.config)
        if dashboard.team_id:
            await verify_team_access(self.supabase, user, dashboard.team_id)

    async def insert_dashboard(self, user, dashboard: Dashboard) -> Dashboard:
        await self.check_insert(user, dashboard)
        return await self.save_dashboard(dashboard)

    async def save_dashboard(self, dashboard: Dashboard) -> Dashboard:
        result = execute(
            self.supabase.table('dashboards').insert(dashboard.to_insert()),
            f"insert dashboard '{dashboard.title}'",
        )
        created = Dashboard.from_row(result.data[0]) if result.data else dashboard
        logger.info(f"Dashboard {created.id} created for "
                    f"{'team ' + created.team_id if created.team_id else 'user ' + str(created.user_id)}")
        return created

    async def create_dashboard(
        self,
        user,
        title: str,
        config: Optional[Dict] = None,
        description: Optional[str] = None,
        team_id: Optional[str] = None,
        is_home: bool = False,
    ) -> Dashboard:
        """New dashboard owned by `team_id` when given, otherwise by the user."""
        dashboard = Dashboard(
            title=title,
            description=description,
            config=config if config is not None else empty_config(),
            user_id=None if team_id else user.user_id,
            team_id=team_id,
            is_home=is_home,
        )
        return await self.insert_dashboard(user, dashboard)

    async def update_dashboard(
        self,
        user,
        dashboard_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        config: Optional[Dict] = None,
    ) -> Dashboard:
        """Replace title/description/config; the config is overwritten whole."""
        current = await self.get_dashboard(user, dashboard_id)
        updates: Dict[str, Any] = {}
        if title is not None:
            updates['title'] = title
        if description is not None:
            updates['description'] = description
        if config is not None:
            updates['config'] = validate_config(config)
        if not updates:
            return current
        updates['version'] = current.version + 1
        updates['updated_at'] = now_iso()

        result = execute(
            self.supabase.table('dashboards').update(updates).eq('id', dashboard_id),
            f"update dashboard {dashboard_id}",
        )
        if result.data:
            return Dashboard.from_row(result.data[0])
        for key, value in updates.items():
            setattr(current, key, value)
        return current

    async def set_home_dashboard(self, user, dashboard_id: str) -> Dashboard:
        """Mark one dashboard as home, clearing the flag on the owner's others."""
        dashboard = await self.get_dashboard(user, dashboard_id)
        owner_col, owner_id = (
            ('team_id', dashboard.team_id) if dashboard.team_id else ('user_id', dashboard.user_id)
        )
        execute(
            self.supabase.table('dashboards').update({'is_home': False}).eq(
                owner_col, owner_id
            ).eq('is_home', True),
            f"clear home dashboard for {owner_id}",
        )
        execute(
            self.supabase.table('dashboards').update({'is_home': True}).eq('id', dashboard_id),
            f"set home dashboard {dashboard_id}",
        )
        dashboard.is_home = True
        return dashboard

    async def delete_dashboard(self, user, dashboard_id: str) -> None:
        await self.get_dashboard(user, dashboard_id)
        execute(
            self.supabase.table('dashboards').delete().eq('id', dashboard_id),
            f"delete dashboard {dashboard_id}",
        )
        logger.info(f"Dashboard {dashboard_id} deleted by {user.user_id}")


class TemplateStore:
    """dashboard_templates access; cloning goes through DashboardStore."""

    def __init__(self, supabase_client, dashboards: Optional[DashboardStore] = None):
        self.supabase = supabase_client
        self.dashboards = dashboards or DashboardStore(supabase_client)

    async def list_templates(self, user) -> List[Template]:
        """Public templates plus the user's private ones."""
        result = execute(
            self.supabase.table('dashboard_templates').select('*').or_(
                f"visibility.eq.{Visibility.PUBLIC},owner_id.eq.{user.user_id}"
            ),
            f"list templates for {user.user_id}",
        )
        return [Template.from_row(r) for r in result.data or []]

    async def list_public_templates(self) -> List[Template]:
        result = execute(
            self.supabase.table('dashboard_templates').select('*').eq(
                'visibility', Visibility.PUBLIC
            ).order('downloads_count', desc=True),
            "list public templates",
        )
        return [Template.from_row(r) for r in result.data or []]

    async def get_suggested_templates(
        self, user, template_ids: Iterable[str], fallback_limit: int = 3,
    ) -> List[Template]:
        """
        The given templates the user may see (public or their own), or the
        first few public ones if none of them qualify.
        """
        ids = list(template_ids)
        if ids:
            result = execute(
                self.supabase.table('dashboard_templates').select('*').in_('id', ids).or_(
                    f"visibility.eq.{Visibility.PUBLIC},owner_id.eq.{user.user_id}"
                ),
                "load suggested templates",
            )
            visible = [
                t for t in (Template.from_row(r) for r in result.data or [])
                if t.visibility == Visibility.PUBLIC or t.owner_id == user.user_id
            ]
            if visible:
                return visible
        logger.info("No suggested templates found; falling back to public templates")
        result = execute(
            self.supabase.table('dashboard_templates').select('*').eq(
                'visibility', Visibility.PUBLIC
            ).limit(fallback_limit),
            "load fallback templates",
        )
        return [Template.from_row(r) for r in result.data or []]

    async def get_template(self, user, template_id: str) -> Template:
        result = execute(
            self.supabase.table('dashboard_templates').select('*').eq('id', template_id).limit(1),
            f"load template {template_id}",
        )
        if not result.data:
            raise NotFoundError(f"Template {template_id} not found")
        template = Template.from_row(result.data[0])
        if template.visibility != Visibility.PUBLIC and template.owner_id != user.user_id:
            raise NotFoundError(f"Template {template_id} not found")
        return template

    async def _get_owned(self, user, template_id: str) -> Template:
        template = await self.get_template(user, template_id)
        if template.owner_id != user.user_id:
            raise ForbiddenError(f"Template {template_id} belongs to another user")
        return template

    async def create_template(
        self,
        user,
        name: str,
        config: Optional[Dict] = None,
        description: Optional[str] = None,
        category: Optional[str] = None,
        visibility: str = Visibility.PRIVATE,
        dashboard_id: Optional[str] = None,
    ) -> Template:
        """
        Save a template from an explicit config, or snapshot an existing
        dashboard's config when `dashboard_id` is given.
        """
        if not name or not name.strip():
            raise TemplateError("Template name is required")
        if visibility not in Visibility.ALL:
            raise TemplateError(f"Unknown visibility '{visibility}'")
        if dashboard_id:
            dashboard = await self.dashboards.get_dashboard(user, dashboard_id)
            config = copy.deepcopy(dashboard.config)
        config = validate_config(config if config is not None else empty_config())

        result = execute(
            self.supabase.table('dashboard_templates').insert({
                'name': name.strip(),
                'description': description,
                'config': config,
                'category': category,
                'visibility': visibility,
                'owner_id': user.user_id,
            }),
            f"insert template '{name}'",
        )
        if result.data:
            return Template.from_row(result.data[0])
        return Template(name=name.strip(), owner_id=user.user_id, config=config,
                        description=description, category=category, visibility=visibility)

    async def update_template(self, user, template_id: str, **fields: Any) -> Template:
        """
        Apply the given fields.  A None description or category clears it;
        name, visibility and config may not be cleared.
        """
        allowed = {'name', 'description', 'config', 'category', 'visibility'}
        updates = {k: v for k, v in fields.items() if k in allowed}
        template = await self._get_owned(user, template_id)
        if 'name' in updates:
            if not isinstance(updates['name'], str) or not updates['name'].strip():
                raise TemplateError("Template name is required")
            updates['name'] = updates['name'].strip()
        if 'visibility' in updates and updates['visibility'] not in Visibility.ALL:
            raise TemplateError(f"Unknown visibility '{updates['visibility']}'")
        if 'config' in updates:
            validate_config(updates['config'])
        if not updates:
            return template
        updates['updated_at'] = now_iso()

        result = execute(
            self.supabase.table('dashboard_templates').update(updates).eq('id', template_id),
            f"update template {template_id}",
        )
        if result.data:
            return Template.from_row(result.data[0])
        for key, value in updates.items():
            setattr(template, key, value)
        return template

    async def delete_template(self, user, template_id: str) -> None:
        await self._get_owned(user, template_id)
        execute(
            self.supabase.table('dashboard_templates').delete().eq('id', template_id),
            f"delete template {template_id}",
        )

    async def _increment_downloads(self, template_id: str) -> None:
        try:
            self.supabase.rpc('increment_template_downloads', {'template_id': template_id}).execute()
        except Exception as e:
            logger.warning(f"Failed to increment downloads for template {template_id}: {e}")

    async def clone_template(
        self,
        user,
        template_id: str,
        title: Optional[str] = None,
        description: Optional[str] = None,
        team_id: Optional[str] = None,
    ) -> Dashboard:
        """
        Create a dashboard from a template.  The download counter is bumped
        only after the clone passes config and team-access checks, and stays
        bumped if the insert itself then fails.
        """
        template = await self.get_template(user, template_id)
        dashboard = clone_template(template, CloneOverrides(
            title=title,
            description=description,
            user_id=user.user_id,
            team_id=team_id,
        ))
        await self.dashboards.check_insert(user, dashboard)
        await self._increment_downloads(template_id)

        created = await self.dashboards.save_dashboard(dashboard)
        logger.info(f"Template {template_id} cloned into dashboard {created.id}")
        return created

    async def check_template_compatibility(self, user, template_id: str, available_fields: Iterable[str]) -> CompatibilityResult:
        template = await self.get_template(user, template_id)
        return check_compatibility(template, available_fields)
