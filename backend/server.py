"""Sales Activity Dashboard - API Server"""
from fastapi import FastAPI, APIRouter, HTTPException, Depends, Header, Query, Request
from fastapi.responses import JSONResponse
from dotenv import load_dotenv
from starlette.middleware.cors import CORSMiddleware
import os
import logging
from dataclasses import asdict
from pathlib import Path
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional, Dict, Any, Literal
from datetime import date, datetime, timezone

from activity.dashboard_config import DashboardConfigError
from activity.definitions import (
    Aggregation, DisplayType, MetricDefinition, MetricDefinitionError,
    format_value, metric_title, validate_definition,
)
from activity.evaluator import SeriesMode, evaluate, evaluate_series
from activity.fields import ActivityField, DailyLogError
from activity.layout import LayoutError
from activity.templates import OwnershipError, TEMPLATE_CATEGORIES
from auth_service import verify_token, TokenData
from daily_logs import DailyLogService
from dashboards import DashboardStore, TemplateError, TemplateStore
from supabase_client import ForbiddenError, NotFoundError, StoreError, get_supabase
import teams

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Sales Activity Dashboard")
api_router = APIRouter(prefix="/api")


# ============ Pydantic Models ============

class DailyLogUpdate(BaseModel):
    team_id: str
    date: date
    cold_calls: Optional[int] = None
    text_messages: Optional[int] = None
    facebook_dms: Optional[int] = None
    linkedin_dms: Optional[int] = None
    instagram_dms: Optional[int] = None
    cold_emails: Optional[int] = None
    quotes: Optional[int] = None
    booked_calls: Optional[int] = None
    completed_calls: Optional[int] = None
    booked_presentations: Optional[int] = None
    completed_presentations: Optional[int] = None
    submitted_applications: Optional[int] = None
    deals_won: Optional[int] = None
    deal_value: Optional[int] = None

    def counters(self) -> Dict[str, int]:
        return {
            name: value for name, value in self.model_dump(exclude_none=True).items()
            if ActivityField.is_valid(name)
        }

class DealCreate(BaseModel):
    team_id: str
    date: date
    value_cents: int

class MetricDefinitionIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = "preview"
    type: Literal["total", "conversion"]
    metrics: List[str]
    display_type: str = Field(DisplayType.NUMBER, alias="displayType")
    aggregation: Optional[str] = Aggregation.SUM
    name: Optional[str] = None
    description: Optional[str] = None
    display_mode: Optional[str] = Field(None, alias="displayMode")

    def to_definition(self) -> MetricDefinition:
        return MetricDefinition(
            id=self.id,
            type=self.type,
            metrics=list(self.metrics),
            display_type=self.display_type,
            aggregation=self.aggregation if self.type == "total" else None,
            name=self.name,
            description=self.description,
            display_mode=self.display_mode,
        )

class EvaluateRequest(BaseModel):
    definition: MetricDefinitionIn
    team_id: str
    start_date: date
    end_date: date
    include_series: bool = False
    series_mode: Optional[Literal["total", "breakdown", "members"]] = None

class EvaluateResponse(BaseModel):
    title: str
    value: float
    formatted: str
    series: Optional[Dict[str, Any]] = None

class DashboardCreate(BaseModel):
    title: str
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    team_id: Optional[str] = None
    is_home: bool = False

class DashboardUpdate(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None

class TemplateCreate(BaseModel):
    name: str
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    category: Optional[str] = None
    visibility: Literal["private", "public"] = "private"
    dashboard_id: Optional[str] = None

class TemplateUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    config: Optional[Dict[str, Any]] = None
    category: Optional[str] = None
    visibility: Optional[Literal["private", "public"]] = None

class CloneRequest(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    team_id: Optional[str] = None

class CompatibilityResponse(BaseModel):
    compatible: bool
    missing_fields: List[str]

class TeamName(BaseModel):
    name: str

class TeamActivities(BaseModel):
    activities: List[str]

class TeamMemberAdd(BaseModel):
    email: str


# ============ Dependencies ============

async def get_current_user(authorization: Optional[str] = Header(None)) -> TokenData:
    """Verify the Supabase access token and return current user data"""
    if not authorization:
        raise HTTPException(status_code=401, detail="Authorization header required")

    try:
        scheme, token = authorization.split()
        if scheme.lower() != "bearer":
            raise HTTPException(status_code=401, detail="Invalid authentication scheme")
    except ValueError:
        raise HTTPException(status_code=401, detail="Invalid authorization header")

    token_data = verify_token(token)
    if not token_data:
        raise HTTPException(status_code=401, detail="Invalid or expired token")

    return token_data


def get_db():
    return get_supabase()


def get_log_service(db=Depends(get_db)) -> DailyLogService:
    return DailyLogService(db)


def get_dashboard_store(db=Depends(get_db)) -> DashboardStore:
    return DashboardStore(db)


def get_template_store(db=Depends(get_db)) -> TemplateStore:
    return TemplateStore(db)


# ============ Error Mapping ============

@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ForbiddenError)
async def forbidden_handler(request: Request, exc: ForbiddenError):
    return JSONResponse(status_code=403, content={"detail": str(exc)})


@app.exception_handler(StoreError)
async def store_error_handler(request: Request, exc: StoreError):
    logger.error(f"Persistence failure on {request.url.path}: {exc}")
    return JSONResponse(status_code=502, content={"detail": "Database request failed"})


@app.exception_handler(DashboardConfigError)
async def config_error_handler(request: Request, exc: DashboardConfigError):
    return JSONResponse(status_code=422, content={"detail": exc.problems})


async def validation_error_handler(request: Request, exc: ValueError):
    return JSONResponse(status_code=422, content={"detail": str(exc)})


for _exc in (MetricDefinitionError, DailyLogError, OwnershipError, LayoutError, TemplateError, teams.TeamError):
    app.add_exception_handler(_exc, validation_error_handler)


def _dashboard_out(dashboard) -> Dict[str, Any]:
    return asdict(dashboard)


def _template_out(template) -> Dict[str, Any]:
    return asdict(template)


# ============ Team Endpoints ============

@api_router.get("/teams")
async def list_my_teams(
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    """Teams the caller owns or is a member of"""
    return await teams.list_teams(db, current_user)


@api_router.post("/teams", status_code=201)
async def create_team(
    body: TeamName,
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    return await teams.create_team(db, current_user, body.name)


@api_router.get("/teams/{team_id}")
async def get_team(
    team_id: str,
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    return await teams.verify_team_access(db, current_user, team_id)


@api_router.patch("/teams/{team_id}")
async def rename_team(
    team_id: str,
    body: TeamName,
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    return await teams.update_team_name(db, current_user, team_id, body.name)


@api_router.put("/teams/{team_id}/activities")
async def set_team_activities(
    team_id: str,
    body: TeamActivities,
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    """Owner-only: replace the activities the team logs"""
    return await teams.update_team_activities(db, current_user, team_id, body.activities)


@api_router.post("/teams/{team_id}/members")
async def add_team_member(
    team_id: str,
    body: TeamMemberAdd,
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    return await teams.add_team_member(db, current_user, team_id, body.email)


@api_router.delete("/teams/{team_id}/members/{email}")
async def remove_team_member(
    team_id: str,
    email: str,
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    return await teams.remove_team_member(db, current_user, team_id, email)


# ============ Daily Log Endpoints ============

@api_router.get("/daily-logs")
async def get_daily_log(
    team_id: str,
    log_date: Optional[date] = Query(None, alias="date"),
    current_user: TokenData = Depends(get_current_user),
    logs: DailyLogService = Depends(get_log_service),
):
    """Caller's log for a day (today by default); zeros when nothing is logged"""
    day = log_date or datetime.now(timezone.utc).date()
    record = await logs.get_daily_log(current_user.user_id, team_id, day)
    return record.to_row()


@api_router.put("/daily-logs")
async def put_daily_log(
    body: DailyLogUpdate,
    current_user: TokenData = Depends(get_current_user),
    logs: DailyLogService = Depends(get_log_service),
):
    record = await logs.create_or_update_daily_log(current_user, body.team_id, body.date, body.counters())
    return record.to_row()


@api_router.post("/daily-logs/deals")
async def add_deal(
    body: DealCreate,
    current_user: TokenData = Depends(get_current_user),
    logs: DailyLogService = Depends(get_log_service),
):
    record = await logs.add_deal(current_user, body.team_id, body.date, body.value_cents)
    return record.to_row()


@api_router.get("/teams/{team_id}/daily-logs")
async def get_team_daily_logs(
    team_id: str,
    start_date: date,
    end_date: date,
    current_user: TokenData = Depends(get_current_user),
    logs: DailyLogService = Depends(get_log_service),
):
    records = await logs.get_team_daily_logs(current_user, team_id, start_date, end_date)
    return [{**r.to_row(), "member_name": r.member_name} for r in records]


# ============ Metric Endpoints ============

@api_router.get("/metrics/fields")
async def list_fields(
    team_id: Optional[str] = None,
    current_user: TokenData = Depends(get_current_user),
    db=Depends(get_db),
):
    """Activity fields available to metric builders (team-specific if team_id given)"""
    if team_id:
        return {"fields": await teams.available_fields_for_team(db, current_user, team_id)}
    return {"fields": list(ActivityField.ALL)}


@api_router.post("/metrics/evaluate", response_model=EvaluateResponse)
async def evaluate_metric(
    body: EvaluateRequest,
    current_user: TokenData = Depends(get_current_user),
    logs: DailyLogService = Depends(get_log_service),
):
    """Compute a metric card (and optionally its chart series) over a team window"""
    if body.end_date < body.start_date:
        raise HTTPException(status_code=422, detail="end_date must not be before start_date")
    defn = validate_definition(body.definition.to_definition())
    records = await logs.get_team_daily_logs(current_user, body.team_id, body.start_date, body.end_date)

    value = evaluate(defn, records)
    cents = (not defn.is_conversion) and ActivityField.DEAL_VALUE in defn.metrics
    series = None
    if body.include_series:
        mode = body.series_mode or None
        series = evaluate_series(defn, records, mode).to_dict()

    return EvaluateResponse(
        title=metric_title(defn),
        value=value,
        formatted=format_value(value, defn.display_type, cents=cents),
        series=series,
    )


@api_router.get("/metrics/series-modes")
async def list_series_modes():
    return {"modes": sorted(SeriesMode.ALL)}


# ============ Dashboard Endpoints ============

@api_router.get("/dashboards")
async def list_dashboards(
    current_user: TokenData = Depends(get_current_user),
    store: DashboardStore = Depends(get_dashboard_store),
):
    return [_dashboard_out(d) for d in await store.list_dashboards(current_user)]


@api_router.get("/dashboards/home")
async def get_home_dashboard(
    current_user: TokenData = Depends(get_current_user),
    store: DashboardStore = Depends(get_dashboard_store),
):
    dashboard = await store.get_home_dashboard(current_user)
    return _dashboard_out(dashboard) if dashboard else None


@api_router.post("/dashboards", status_code=201)
async def create_dashboard(
    body: DashboardCreate,
    current_user: TokenData = Depends(get_current_user),
    store: DashboardStore = Depends(get_dashboard_store),
):
    dashboard = await store.create_dashboard(
        current_user, body.title, config=body.config, description=body.description,
        team_id=body.team_id, is_home=body.is_home,
    )
    return _dashboard_out(dashboard)


@api_router.get("/dashboards/{dashboard_id}")
async def get_dashboard(
    dashboard_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: DashboardStore = Depends(get_dashboard_store),
):
    return _dashboard_out(await store.get_dashboard(current_user, dashboard_id))


@api_router.patch("/dashboards/{dashboard_id}")
async def update_dashboard(
    dashboard_id: str,
    body: DashboardUpdate,
    current_user: TokenData = Depends(get_current_user),
    store: DashboardStore = Depends(get_dashboard_store),
):
    dashboard = await store.update_dashboard(
        current_user, dashboard_id, title=body.title, description=body.description, config=body.config,
    )
    return _dashboard_out(dashboard)


@api_router.post("/dashboards/{dashboard_id}/home")
async def set_home_dashboard(
    dashboard_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: DashboardStore = Depends(get_dashboard_store),
):
    return _dashboard_out(await store.set_home_dashboard(current_user, dashboard_id))


@api_router.delete("/dashboards/{dashboard_id}")
async def delete_dashboard(
    dashboard_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: DashboardStore = Depends(get_dashboard_store),
):
    await store.delete_dashboard(current_user, dashboard_id)
    return {"success": True}


# ============ Template Endpoints ============

@api_router.get("/templates")
async def list_templates(
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    return [_template_out(t) for t in await store.list_templates(current_user)]


@api_router.get("/templates/public")
async def list_public_templates(
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    return [_template_out(t) for t in await store.list_public_templates()]


@api_router.get("/templates/categories")
async def list_template_categories():
    return {"categories": TEMPLATE_CATEGORIES}


@api_router.get("/templates/suggested")
async def suggested_templates(
    ids: List[str] = Query([]),
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    return [_template_out(t) for t in await store.get_suggested_templates(current_user, ids)]


@api_router.post("/templates", status_code=201)
async def create_template(
    body: TemplateCreate,
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    template = await store.create_template(
        current_user, body.name, config=body.config, description=body.description,
        category=body.category, visibility=body.visibility, dashboard_id=body.dashboard_id,
    )
    return _template_out(template)


@api_router.get("/templates/{template_id}")
async def get_template(
    template_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    return _template_out(await store.get_template(current_user, template_id))


@api_router.patch("/templates/{template_id}")
async def update_template(
    template_id: str,
    body: TemplateUpdate,
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    template = await store.update_template(current_user, template_id, **body.model_dump(exclude_unset=True))
    return _template_out(template)


@api_router.delete("/templates/{template_id}")
async def delete_template(
    template_id: str,
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    await store.delete_template(current_user, template_id)
    return {"success": True}


@api_router.get("/templates/{template_id}/compatibility", response_model=CompatibilityResponse)
async def template_compatibility(
    template_id: str,
    team_id: Optional[str] = None,
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
    db=Depends(get_db),
):
    """Which of the template's fields the target team does not track"""
    fields = await teams.available_fields_for_team(db, current_user, team_id) if team_id else list(ActivityField.ALL)
    result = await store.check_template_compatibility(current_user, template_id, fields)
    return CompatibilityResponse(compatible=result.compatible, missing_fields=result.missing_fields)


@api_router.post("/templates/{template_id}/clone", status_code=201)
async def clone_template(
    template_id: str,
    body: CloneRequest,
    current_user: TokenData = Depends(get_current_user),
    store: TemplateStore = Depends(get_template_store),
):
    dashboard = await store.clone_template(
        current_user, template_id, title=body.title, description=body.description, team_id=body.team_id,
    )
    return _dashboard_out(dashboard)


# ============ Health Check ============

@api_router.get("/")
async def root():
    return {"message": "Sales Activity Dashboard API"}


@api_router.get("/health")
async def health_check():
    return {"status": "healthy", "timestamp": datetime.now(timezone.utc).isoformat()}


# Include router and add middleware
app.include_router(api_router)

app.add_middleware(
    CORSMiddleware,
    allow_credentials=True,
    allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
    allow_methods=["*"],
    allow_headers=["*"],
)
