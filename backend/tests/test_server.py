"""
API tests for backend/server.py
===============================
Runs the FastAPI app through TestClient with the Supabase dependency
replaced by an in-memory mock.  Tokens are signed with the same secret the
auth service verifies against.
"""

from __future__ import annotations

import pytest
import sys
import os
import time
from unittest.mock import MagicMock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
os.environ.setdefault("SUPABASE_JWT_SECRET", "test-jwt-secret-for-api-tests")

import jwt
from fastapi.testclient import TestClient

import auth_service
from server import app, get_db

USER_ID = "user-1"
TEAM = {"id": "team-1", "user_id": USER_ID, "team_members": [],
        "default_activities": [{"id": "quotes"}, {"id": "booked_calls"}]}


class _TableMock:
    """Fluent mock for supabase.table(name)...execute()."""

    def __init__(self, name, data, error=None):
        self._name = name
        self._data = data
        self._error = error
        self._payload = None

    def select(self, *a, **kw): return self
    def eq(self, *a, **kw):     return self
    def or_(self, *a, **kw):    return self
    def in_(self, *a, **kw):    return self
    def order(self, *a, **kw):  return self
    def limit(self, *a, **kw):  return self
    def delete(self):           return self

    def insert(self, payload):
        self._payload = {**payload, "id": f"{self._name}-new"}
        return self

    def update(self, payload):
        self._payload = {**(self._data[0] if self._data else {}), **payload}
        return self

    def execute(self):
        if self._error is not None:
            raise self._error
        r = MagicMock()
        r.data = [self._payload] if self._payload is not None else self._data
        return r


def _mk_supabase(tables, rpcs=None, failing=None):
    sb = MagicMock()
    failing = failing or {}
    sb.table = lambda name: _TableMock(name, tables.get(name, []), failing.get(name))
    sb.rpc = lambda name, params: _TableMock(name, (rpcs or {}).get(name, []))
    return sb


def _token(user_id=USER_ID, email="rep@example.com", **claims):
    payload = {"sub": user_id, "email": email, "aud": "authenticated", "exp": int(time.time()) + 3600}
    payload.update(claims)
    return jwt.encode(payload, auth_service.JWT_SECRET, algorithm="HS256")


AUTH = {"Authorization": f"Bearer {_token()}"}


@pytest.fixture
def client():
    yield TestClient(app)
    app.dependency_overrides.clear()


def _use_db(sb):
    app.dependency_overrides[get_db] = lambda: sb
    return sb


TEMPLATE_ROW = {
    "id": "tpl-1", "name": "Cold Outreach", "description": None, "visibility": "public",
    "owner_id": "user-2", "downloads_count": 0, "category": "Sales",
    "config": {
        "metrics": [{"id": "m1", "type": "conversion", "metrics": ["booked_calls", "cold_calls"],
                     "displayType": "percent", "rowId": "default"}],
        "layout": [{"rowId": "default", "metrics": ["m1"], "order": 0}],
    },
}

TEAM_WINDOW = [
    {"date": "2026-03-01", "member_data": [
        {"id": "user-1", "name": "Alice", "deals_won": 1, "deal_value": 250000, "quotes": 4},
        {"id": "user-2", "name": "Bob", "quotes": 6},
    ]},
    {"date": "2026-03-02", "member_data": [
        {"id": "user-1", "name": "Alice", "deals_won": 1, "deal_value": 100000, "quotes": 5},
    ]},
]


# ---------------------------------------------------------------------------
# Auth & health
# ---------------------------------------------------------------------------

class TestAuth:

    def test_health_needs_no_auth(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"

    def test_missing_header_is_401(self, client):
        _use_db(_mk_supabase({}))
        assert client.get("/api/dashboards").status_code == 401

    def test_wrong_scheme_is_401(self, client):
        _use_db(_mk_supabase({}))
        resp = client.get("/api/dashboards", headers={"Authorization": f"Basic {_token()}"})
        assert resp.status_code == 401

    def test_expired_token_is_401(self, client):
        _use_db(_mk_supabase({}))
        headers = {"Authorization": f"Bearer {_token(exp=int(time.time()) - 10)}"}
        assert client.get("/api/dashboards", headers=headers).status_code == 401

    def test_token_without_email_is_401(self, client):
        _use_db(_mk_supabase({}))
        headers = {"Authorization": f"Bearer {_token(email=None)}"}
        assert client.get("/api/dashboards", headers=headers).status_code == 401


# ---------------------------------------------------------------------------
# Daily logs
# ---------------------------------------------------------------------------

class TestDailyLogRoutes:

    def test_get_unlogged_day_returns_zeros(self, client):
        _use_db(_mk_supabase({}))
        resp = client.get("/api/daily-logs", params={"team_id": "team-1", "date": "2026-03-01"}, headers=AUTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["date"] == "2026-03-01"
        assert body["cold_calls"] == 0

    def test_put_merges_counters(self, client):
        stored = {"id": "log-1", "user_id": USER_ID, "team_id": "team-1", "date": "2026-03-01", "cold_calls": 8}
        _use_db(_mk_supabase({"daily_logs": [stored], "teams": [TEAM]}))
        resp = client.put("/api/daily-logs", json={"team_id": "team-1", "date": "2026-03-01", "quotes": 2},
                          headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["cold_calls"] == 8
        assert resp.json()["quotes"] == 2

    def test_negative_counter_is_422(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}))
        resp = client.put("/api/daily-logs", json={"team_id": "team-1", "date": "2026-03-01", "quotes": -1},
                          headers=AUTH)
        assert resp.status_code == 422

    def test_non_member_is_403(self, client):
        _use_db(_mk_supabase({"teams": []}))
        resp = client.put("/api/daily-logs", json={"team_id": "team-9", "date": "2026-03-01", "quotes": 1},
                          headers=AUTH)
        assert resp.status_code == 403

    def test_add_deal(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}))
        resp = client.post("/api/daily-logs/deals",
                           json={"team_id": "team-1", "date": "2026-03-01", "value_cents": 4200}, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["deals_won"] == 1
        assert resp.json()["deal_value"] == 4200

    def test_team_window(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}, rpcs={"get_team_member_logs": TEAM_WINDOW}))
        resp = client.get("/api/teams/team-1/daily-logs",
                          params={"start_date": "2026-03-01", "end_date": "2026-03-02"}, headers=AUTH)
        assert resp.status_code == 200
        assert [r["member_name"] for r in resp.json()] == ["Alice", "Bob", "Alice"]


# ---------------------------------------------------------------------------
# Metrics
# ---------------------------------------------------------------------------

class TestEvaluateRoute:

    def _evaluate(self, client, definition, **extra):
        _use_db(_mk_supabase({"teams": [TEAM]}, rpcs={"get_team_member_logs": TEAM_WINDOW}))
        body = {"definition": definition, "team_id": "team-1",
                "start_date": "2026-03-01", "end_date": "2026-03-02", **extra}
        return client.post("/api/metrics/evaluate", json=body, headers=AUTH)

    def test_dollar_total_formats_cents(self, client):
        resp = self._evaluate(client, {"type": "total", "metrics": ["deal_value"], "displayType": "dollar"})
        assert resp.status_code == 200
        assert resp.json()["value"] == 350000
        assert resp.json()["formatted"] == "$3,500.00"
        assert resp.json()["title"] == "Total Deal Value"

    def test_conversion_percent(self, client):
        resp = self._evaluate(client, {"type": "conversion", "metrics": ["deals_won", "quotes"],
                                       "displayType": "percent", "name": "Close Rate"})
        assert resp.json()["value"] == pytest.approx(2 / 15)
        assert resp.json()["formatted"] == "13.3%"
        assert resp.json()["title"] == "Close Rate"

    def test_series_by_member(self, client):
        resp = self._evaluate(client, {"type": "total", "metrics": ["quotes"]},
                              include_series=True, series_mode="members")
        series = resp.json()["series"]
        assert series["dates"] == ["2026-03-01", "2026-03-02"]
        assert {s["label"]: s["values"] for s in series["series"]} == {"Alice": [4, 5], "Bob": [6, 0]}

    def test_bad_shape_is_422(self, client):
        resp = self._evaluate(client, {"type": "conversion", "metrics": ["deals_won"]})
        assert resp.status_code == 422

    def test_reversed_window_is_422(self, client):
        _use_db(_mk_supabase({}))
        body = {"definition": {"type": "total", "metrics": ["quotes"]}, "team_id": "team-1",
                "start_date": "2026-03-05", "end_date": "2026-03-01"}
        assert client.post("/api/metrics/evaluate", json=body, headers=AUTH).status_code == 422

    def test_team_fields(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}))
        resp = client.get("/api/metrics/fields", params={"team_id": "team-1"}, headers=AUTH)
        assert resp.json()["fields"] == ["quotes", "booked_calls", "deals_won", "deal_value"]


# ---------------------------------------------------------------------------
# Dashboards & templates
# ---------------------------------------------------------------------------

class TestDashboardRoutes:

    def test_create_dashboard(self, client):
        _use_db(_mk_supabase({}))
        resp = client.post("/api/dashboards", json={"title": "Mine"}, headers=AUTH)
        assert resp.status_code == 201
        assert resp.json()["user_id"] == USER_ID
        assert resp.json()["config"]["layout"][0]["rowId"] == "default"

    def test_corrupt_config_is_422_with_problems(self, client):
        _use_db(_mk_supabase({}))
        config = {"metrics": [], "layout": [{"rowId": "default", "metrics": ["gone"]}]}
        resp = client.post("/api/dashboards", json={"title": "Bad", "config": config}, headers=AUTH)
        assert resp.status_code == 422
        assert any("gone" in p for p in resp.json()["detail"])

    def test_missing_dashboard_is_404(self, client):
        _use_db(_mk_supabase({}))
        assert client.get("/api/dashboards/nope", headers=AUTH).status_code == 404

    def test_database_failure_is_502(self, client):
        _use_db(_mk_supabase({}, failing={"dashboards": RuntimeError("timeout")}))
        assert client.get("/api/dashboards", headers=AUTH).status_code == 502


class TestTemplateRoutes:

    def test_compatibility_against_team_fields(self, client):
        _use_db(_mk_supabase({"dashboard_templates": [TEMPLATE_ROW], "teams": [TEAM]}))
        resp = client.get("/api/templates/tpl-1/compatibility", params={"team_id": "team-1"}, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {"compatible": False, "missing_fields": ["cold_calls"]}

    def test_clone(self, client):
        _use_db(_mk_supabase({"dashboard_templates": [TEMPLATE_ROW]}))
        resp = client.post("/api/templates/tpl-1/clone", json={"title": "From Template"}, headers=AUTH)
        assert resp.status_code == 201
        assert resp.json()["title"] == "From Template"
        assert resp.json()["config"] == TEMPLATE_ROW["config"]

    def test_categories(self, client):
        resp = client.get("/api/templates/categories")
        assert "Sales" in resp.json()["categories"]


class TestRevisedRoutes:

    def test_deal_count_on_cleared_day_is_kept(self, client):
        stored = {"id": "log-1", "user_id": USER_ID, "team_id": "team-1", "date": "2026-03-01",
                  "deals_won": 0, "deal_value": 0}
        _use_db(_mk_supabase({"daily_logs": [stored], "teams": [TEAM]}))
        resp = client.put("/api/daily-logs", json={"team_id": "team-1", "date": "2026-03-01", "deals_won": 3},
                          headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["deals_won"] == 3

    def test_team_fields_need_membership(self, client):
        _use_db(_mk_supabase({"teams": []}))
        resp = client.get("/api/metrics/fields", params={"team_id": "team-9"}, headers=AUTH)
        assert resp.status_code == 403

    def test_compatibility_needs_team_membership(self, client):
        _use_db(_mk_supabase({"dashboard_templates": [TEMPLATE_ROW], "teams": []}))
        resp = client.get("/api/templates/tpl-1/compatibility", params={"team_id": "team-9"}, headers=AUTH)
        assert resp.status_code == 403

    def test_suggested_hides_foreign_private_templates(self, client):
        secret = {**TEMPLATE_ROW, "id": "tpl-secret", "visibility": "private", "owner_id": "user-2"}
        _use_db(_mk_supabase({"dashboard_templates": [secret, TEMPLATE_ROW]}))
        resp = client.get("/api/templates/suggested", params={"ids": ["tpl-secret", "tpl-1"]}, headers=AUTH)
        assert resp.status_code == 200
        assert [t["id"] for t in resp.json()] == ["tpl-1"]

    def test_malformed_row_metrics_is_422(self, client):
        _use_db(_mk_supabase({}))
        config = {"metrics": [], "layout": [{"rowId": "default", "metrics": 5}]}
        resp = client.post("/api/dashboards", json={"title": "Bad", "config": config}, headers=AUTH)
        assert resp.status_code == 422
        assert resp.json()["detail"] == ["row 'default' 'metrics' must be a list of metric ids"]

    def test_patch_template_clears_description(self, client):
        own = {**TEMPLATE_ROW, "owner_id": USER_ID, "description": "Old text"}
        _use_db(_mk_supabase({"dashboard_templates": [own]}))
        resp = client.patch("/api/templates/tpl-1", json={"description": None}, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["description"] is None
        assert resp.json()["name"] == "Cold Outreach"

    def test_patch_template_null_name_is_422(self, client):
        own = {**TEMPLATE_ROW, "owner_id": USER_ID}
        _use_db(_mk_supabase({"dashboard_templates": [own]}))
        resp = client.patch("/api/templates/tpl-1", json={"name": None}, headers=AUTH)
        assert resp.status_code == 422


class TestTeamRoutes:

    def test_create_team(self, client):
        _use_db(_mk_supabase({}))
        resp = client.post("/api/teams", json={"name": "Closers"}, headers=AUTH)
        assert resp.status_code == 201
        assert resp.json()["id"] == "teams-new"
        assert resp.json()["team_members"] == ["rep@example.com"]

    def test_blank_name_is_422(self, client):
        _use_db(_mk_supabase({}))
        assert client.post("/api/teams", json={"name": "  "}, headers=AUTH).status_code == 422

    def test_list_teams(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}))
        resp = client.get("/api/teams", headers=AUTH)
        assert [t["id"] for t in resp.json()] == ["team-1"]

    def test_set_activities(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}))
        resp = client.put("/api/teams/team-1/activities", json={"activities": ["cold_calls"]}, headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["default_activities"] == [{"id": "cold_calls", "label": "Cold Calls"}]

    def test_non_owner_cannot_set_activities(self, client):
        _use_db(_mk_supabase({"teams": [{**TEAM, "user_id": "user-2"}]}))
        resp = client.put("/api/teams/team-1/activities", json={"activities": ["cold_calls"]}, headers=AUTH)
        assert resp.status_code == 403

    def test_add_and_remove_member(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}))
        resp = client.post("/api/teams/team-1/members", json={"email": "New@Example.com"}, headers=AUTH)
        assert resp.json()["team_members"] == ["new@example.com"]

        _use_db(_mk_supabase({"teams": [{**TEAM, "team_members": ["new@example.com"]}]}))
        resp = client.delete("/api/teams/team-1/members/new@example.com", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json()["team_members"] == []

    def test_bad_member_email_is_422(self, client):
        _use_db(_mk_supabase({"teams": [TEAM]}))
        resp = client.post("/api/teams/team-1/members", json={"email": "nobody"}, headers=AUTH)
        assert resp.status_code == 422
