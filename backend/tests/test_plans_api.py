from fastapi.testclient import TestClient
from sqlalchemy.exc import SQLAlchemyError

from skillpact.config import settings
from skillpact.main import app

client = TestClient(app)


def _create(headers, title="Learn Rust", description="Ownership and borrowing"):
    return client.post("/api/learning-plans", json={"title": title, "description": description}, headers=headers)


def test_create_then_get_returns_same_fields(make_user):
    owner = make_user()
    r = _create(owner["headers"])
    assert r.status_code == 201
    created = r.json()
    assert created["id"]
    assert created["owner_id"] == owner["id"]

    got = client.get(f"/api/learning-plans/{created['id']}", headers=owner["headers"])
    assert got.status_code == 200
    plan = got.json()["plan"]
    assert plan["id"] == created["id"]
    assert plan["title"] == "Learn Rust"
    assert plan["description"] == "Ownership and borrowing"


def test_any_authenticated_user_can_read_a_plan(make_user):
    owner, other = make_user(), make_user()
    plan_id = _create(owner["headers"]).json()["id"]
    r = client.get(f"/api/learning-plans/{plan_id}", headers=other["headers"])
    assert r.status_code == 200


def test_create_requires_title(make_user):
    owner = make_user()
    r = client.post("/api/learning-plans", json={"description": "no title"}, headers=owner["headers"])
    assert r.status_code == 400
    assert r.json() == {"error": "Title is required"}
    r = client.post("/api/learning-plans", json={"title": "   "}, headers=owner["headers"])
    assert r.status_code == 400


def test_create_accepts_form_encoding(make_user):
    owner = make_user()
    r = client.post("/api/learning-plans", data={"title": "Form plan"}, headers=owner["headers"])
    assert r.status_code == 201
    assert r.json()["title"] == "Form plan"
    assert r.json()["description"] == ""


def test_list_only_returns_owned_plans(make_user):
    owner, other = make_user(), make_user()
    mine = _create(owner["headers"], title="Mine").json()["id"]
    _create(other["headers"], title="Theirs")
    r = client.get("/api/learning-plans", headers=owner["headers"])
    assert r.status_code == 200
    ids = [p["id"] for p in r.json()["plans"]]
    assert ids == [mine]


def test_non_owner_cannot_update_or_delete(make_user):
    owner, other = make_user(), make_user()
    plan_id = _create(owner["headers"]).json()["id"]

    r = client.put(f"/api/learning-plans/{plan_id}", json={"title": "Hijacked"}, headers=other["headers"])
    assert r.status_code == 403
    assert r.json()["error"] == "Not authorized to update this plan"
    r = client.delete(f"/api/learning-plans/{plan_id}", headers=other["headers"])
    assert r.status_code == 403

    r = client.put(f"/api/learning-plans/{plan_id}", json={"title": "Renamed", "description": ""}, headers=owner["headers"])
    assert r.status_code == 200
    assert r.json() == {"message": "Learning plan updated successfully"}
    plan = client.get(f"/api/learning-plans/{plan_id}", headers=owner["headers"]).json()["plan"]
    assert plan["title"] == "Renamed"
    assert plan["description"] == ""

    r = client.delete(f"/api/learning-plans/{plan_id}", headers=owner["headers"])
    assert r.status_code == 200
    assert client.get(f"/api/learning-plans/{plan_id}", headers=owner["headers"]).status_code == 404


def test_update_with_empty_title_keeps_title(make_user):
    owner = make_user()
    plan_id = _create(owner["headers"], title="Keep me").json()["id"]
    r = client.put(f"/api/learning-plans/{plan_id}", json={"title": ""}, headers=owner["headers"])
    assert r.status_code == 200
    assert client.get(f"/api/learning-plans/{plan_id}", headers=owner["headers"]).json()["plan"]["title"] == "Keep me"


def test_missing_plan_is_404_before_ownership(make_user):
    user = make_user()
    for method in ("get", "put", "delete"):
        r = client.request(method.upper(), "/api/learning-plans/does-not-exist", json={}, headers=user["headers"])
        assert r.status_code == 404
        assert r.json() == {"error": "Learning plan not found"}


def test_requires_bearer_token():
    r = client.get("/api/learning-plans")
    assert r.status_code == 401
    r = client.get("/api/learning-plans", headers={"Authorization": "Bearer not-a-jwt"})
    assert r.status_code == 401
    assert r.json() == {"error": "invalid token"}


def test_unknown_route_is_404():
    r = client.get("/api/nothing-here")
    assert r.status_code == 404
    assert r.json() == {"error": "Route not found"}


def test_store_failure_returns_500(make_user, monkeypatch):
    user = make_user()

    def _boom(self, owner_id):
        raise SQLAlchemyError("database is locked")

    monkeypatch.setattr("skillpact.repositories.PlanRepository.list_by_owner", _boom)
    r = client.get("/api/learning-plans", headers=user["headers"])
    assert r.status_code == 500
    assert r.json() == {"error": "Failed to fetch learning plans"}


def test_unhandled_error_returns_generic_500(make_user, monkeypatch):
    user = make_user()
    lenient = TestClient(app, raise_server_exceptions=False)

    def _boom(self, ctx):
        raise RuntimeError("kaboom")

    monkeypatch.setattr("skillpact.services.DashboardService.overview", _boom)
    r = lenient.get("/api/dashboard", headers={**user["headers"], "X-Request-ID": "req-500"})
    assert r.status_code == 500
    assert r.json()["error"] == "Something went wrong!"
    assert r.json()["message"] == "kaboom"
    assert r.headers["X-Request-ID"] == "req-500"


def test_unhandled_error_hides_detail_in_production(make_user, monkeypatch):
    user = make_user()
    lenient = TestClient(app, raise_server_exceptions=False)

    def _boom(self, ctx):
        raise RuntimeError("secret internals")

    monkeypatch.setattr("skillpact.services.DashboardService.overview", _boom)
    monkeypatch.setattr(settings, "ENV", "production")
    r = lenient.get("/api/dashboard", headers=user["headers"])
    assert r.status_code == 500
    assert r.json() == {"error": "Something went wrong!"}
    assert r.headers["X-Request-ID"]


def test_request_id_is_echoed():
    r = client.get("/health", headers={"X-Request-ID": "abc123"})
    assert r.status_code == 200
    assert r.headers["X-Request-ID"] == "abc123"
    assert client.get("/").json()["message"] == "SkillPact API"
