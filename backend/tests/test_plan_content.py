from fastapi.testclient import TestClient
from sqlmodel import Session, select

from skillpact import models
from skillpact.database import engine
from skillpact.main import app

client = TestClient(app)


def _plan(owner):
    r = client.post("/api/learning-plans", json={"title": "Data engineering"}, headers=owner["headers"])
    assert r.status_code == 201
    return r.json()["id"]


def _week(owner, plan_id, title=None):
    payload = {"title": title} if title else {}
    r = client.post(f"/api/learning-plans/{plan_id}/weeks", json=payload, headers=owner["headers"])
    assert r.status_code == 201, r.text
    return r.json()


def _task(owner, plan_id, week_id, title="Read docs"):
    r = client.post(f"/api/learning-plans/{plan_id}/weeks/{week_id}/tasks", json={"title": title, "description": "intro"}, headers=owner["headers"])
    assert r.status_code == 201, r.text
    return r.json()


def _subtask(owner, plan_id, week_id, task_id, title="Chapter 1"):
    url = f"/api/learning-plans/{plan_id}/weeks/{week_id}/tasks/{task_id}/subtasks"
    r = client.post(url, json={"title": title}, headers=owner["headers"])
    assert r.status_code == 201, r.text
    return r.json()


def _join(owner, member, plan_id):
    inv = client.post(f"/api/learning-plans/{plan_id}/invitations", json={"email": member["email"]}, headers=owner["headers"])
    assert inv.status_code == 201, inv.text
    r = client.post(f"/api/invitations/{inv.json()['id']}/accept", headers=member["headers"])
    assert r.status_code == 200, r.text


def test_week_numbers_are_sequential_and_keep_gaps(make_user):
    owner = make_user()
    plan_id = _plan(owner)
    first = _week(owner, plan_id)
    second = _week(owner, plan_id, "Streaming")
    third = _week(owner, plan_id)
    assert (first["week_number"], second["week_number"], third["week_number"]) == (1, 2, 3)
    assert first["title"] == "Week 1"
    assert second["title"] == "Streaming"

    r = client.delete(f"/api/learning-plans/{plan_id}/weeks/{second['id']}", headers=owner["headers"])
    assert r.status_code == 200
    tree = client.get(f"/api/learning-plans/{plan_id}/tree", headers=owner["headers"]).json()
    assert [w["week_number"] for w in tree["weeks"]] == [1, 3]


def test_toggle_twice_restores_completed_by(make_user):
    owner = make_user()
    plan_id = _plan(owner)
    week = _week(owner, plan_id)
    task = _task(owner, plan_id, week["id"])
    url = f"/api/learning-plans/{plan_id}/weeks/{week['id']}/tasks/{task['id']}/toggle"

    on = client.post(url, headers=owner["headers"])
    assert on.status_code == 200
    assert on.json()["completed_by"] == [owner["id"]]
    assert on.json()["is_completed"] is True

    off = client.post(url, headers=owner["headers"])
    assert set(off.json()["completed_by"]) == set(task["completed_by"])
    assert off.json()["is_completed"] is False


def test_tree_assembles_nested_items_and_progress(make_user):
    owner = make_user()
    plan_id = _plan(owner)
    week = _week(owner, plan_id)
    task = _task(owner, plan_id, week["id"])
    sub = _subtask(owner, plan_id, week["id"], task["id"])
    _task(owner, plan_id, week["id"], "Write a pipeline")
    base = f"/api/learning-plans/{plan_id}/weeks/{week['id']}/tasks/{task['id']}"
    assert client.post(f"{base}/subtasks/{sub['id']}/toggle", headers=owner["headers"]).status_code == 200

    r = client.get(f"/api/learning-plans/{plan_id}/tree", headers=owner["headers"])
    assert r.status_code == 200
    tree = r.json()
    assert tree["plan"]["id"] == plan_id
    assert tree["role"] == "owner"
    assert tree["capabilities"]["can_edit"] is True
    assert len(tree["weeks"]) == 1
    tasks = {t["id"]: t for t in tree["weeks"][0]["tasks"]}
    assert len(tasks) == 2
    assert tasks[task["id"]]["subtasks"][0]["is_completed"] is True
    assert tasks[task["id"]]["is_completed"] is False
    # 1 done out of 2 tasks + 1 subtask
    assert tree["progress"]["viewer"] == 33
    assert tree["progress"]["participants"] == {owner["id"]: 33}

    progress = client.get(f"/api/learning-plans/{plan_id}/progress", headers=owner["headers"])
    assert progress.json() == {"user_id": owner["id"], "progress": 33}


def test_edit_items(make_user):
    owner = make_user()
    plan_id = _plan(owner)
    week = _week(owner, plan_id)
    task = _task(owner, plan_id, week["id"])
    sub = _subtask(owner, plan_id, week["id"], task["id"])
    base = f"/api/learning-plans/{plan_id}/weeks/{week['id']}"

    r = client.put(base, json={"title": "Foundations"}, headers=owner["headers"])
    assert r.json()["title"] == "Foundations"
    r = client.put(f"{base}/tasks/{task['id']}", json={"title": "Read the book", "description": ""}, headers=owner["headers"])
    assert r.json()["title"] == "Read the book"
    assert r.json()["description"] == ""
    r = client.put(f"{base}/tasks/{task['id']}/subtasks/{sub['id']}", json={"title": "Preface"}, headers=owner["headers"])
    assert r.json()["title"] == "Preface"

    r = client.put(base, json={"title": ""}, headers=owner["headers"])
    assert r.status_code == 400


def test_task_requires_title(make_user):
    owner = make_user()
    plan_id = _plan(owner)
    week = _week(owner, plan_id)
    r = client.post(f"/api/learning-plans/{plan_id}/weeks/{week['id']}/tasks", json={"description": "x"}, headers=owner["headers"])
    assert r.status_code == 400
    assert r.json() == {"error": "Title is required"}


def test_items_are_scoped_to_their_plan(make_user):
    owner = make_user()
    plan_a, plan_b = _plan(owner), _plan(owner)
    week_a = _week(owner, plan_a)
    r = client.post(f"/api/learning-plans/{plan_b}/weeks/{week_a['id']}/tasks", json={"title": "x"}, headers=owner["headers"])
    assert r.status_code == 404
    assert r.json() == {"error": "Week not found"}


def test_member_can_toggle_but_not_edit(make_user):
    owner, member, stranger = make_user(), make_user(), make_user()
    plan_id = _plan(owner)
    week = _week(owner, plan_id)
    task = _task(owner, plan_id, week["id"])
    _join(owner, member, plan_id)
    toggle_url = f"/api/learning-plans/{plan_id}/weeks/{week['id']}/tasks/{task['id']}/toggle"

    r = client.post(toggle_url, headers=member["headers"])
    assert r.status_code == 200
    assert r.json()["completed_by"] == [member["id"]]
    r = client.post(f"/api/learning-plans/{plan_id}/weeks", json={}, headers=member["headers"])
    assert r.status_code == 403
    r = client.delete(f"/api/learning-plans/{plan_id}/weeks/{week['id']}", headers=member["headers"])
    assert r.status_code == 403

    r = client.post(toggle_url, headers=stranger["headers"])
    assert r.status_code == 403

    tree = client.get(f"/api/learning-plans/{plan_id}/tree", headers=member["headers"]).json()
    assert tree["role"] == "member"
    assert tree["capabilities"]["can_edit"] is False
    assert tree["capabilities"]["can_toggle"] is True
    assert tree["progress"]["viewer"] == 100
    assert tree["progress"]["participants"] == {owner["id"]: 0, member["id"]: 100}
    assert [m["user_id"] for m in tree["members"]] == [member["id"]]
    assert tree["members"][0]["progress"] == 100

    viewer_tree = client.get(f"/api/learning-plans/{plan_id}/tree", headers=stranger["headers"]).json()
    assert viewer_tree["role"] == "viewer"
    assert viewer_tree["capabilities"]["can_toggle"] is False

    other = client.get(f"/api/learning-plans/{plan_id}/progress", params={"user_id": member["id"]}, headers=owner["headers"])
    assert other.json()["progress"] == 100


def test_deleting_week_removes_its_tasks(make_user):
    owner = make_user()
    plan_id = _plan(owner)
    week = _week(owner, plan_id)
    task = _task(owner, plan_id, week["id"])
    _subtask(owner, plan_id, week["id"], task["id"])
    client.delete(f"/api/learning-plans/{plan_id}/weeks/{week['id']}", headers=owner["headers"])
    with Session(engine) as session:
        assert session.exec(select(models.Task).where(models.Task.week_id == week["id"])).all() == []
        assert session.exec(select(models.Subtask).where(models.Subtask.task_id == task["id"])).all() == []


def test_deleting_plan_cascades(make_user):
    owner, member = make_user(), make_user()
    plan_id = _plan(owner)
    week = _week(owner, plan_id)
    task = _task(owner, plan_id, week["id"])
    _subtask(owner, plan_id, week["id"], task["id"])
    _join(owner, member, plan_id)

    r = client.delete(f"/api/learning-plans/{plan_id}", headers=owner["headers"])
    assert r.status_code == 200
    with Session(engine) as session:
        assert session.exec(select(models.Week).where(models.Week.plan_id == plan_id)).all() == []
        assert session.get(models.Task, task["id"]) is None
        assert session.exec(select(models.Subtask).where(models.Subtask.task_id == task["id"])).all() == []
        assert session.exec(select(models.Membership).where(models.Membership.plan_id == plan_id)).all() == []
