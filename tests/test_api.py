"""
REST API tests.
"""

from uuid import uuid4

import pytest

from quotagate.config import Environment, settings


async def _register(client, username):
    response = await client.post(
        "/v1/users", json={"username": username, "email": f"{username}@example.com"}
    )
    assert response.status_code == 201
    return response.json()


async def _membership(client, **overrides):
    body = {"name": "vip", "tasks_per_day": 2, "reward_multiplier": "1.50"}
    body.update(overrides)
    response = await client.post("/v1/memberships", json=body)
    assert response.status_code == 201
    return response.json()


async def _task(client, **overrides):
    body = {"title": "Survey", "threshold_value": 5, "base_reward": "2.00"}
    body.update(overrides)
    response = await client.post("/v1/tasks", json=body)
    assert response.status_code == 201
    return response.json()


@pytest.mark.asyncio
async def test_health(client):
    response = await client.get("/v1/health")

    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_grant_assign_complete_flow(client):
    user = await _register(client, "alice")
    membership = await _membership(client)
    await _task(client, priority="urgent")
    await _task(client, priority="low")
    await _task(client, priority="high")

    granted = await client.post(
        f"/v1/users/{user['id']}/memberships", json={"membership_id": membership["id"]}
    )
    assert granted.status_code == 201
    assert granted.json()["assignment"]["assigned_count"] == 2

    status = (await client.get(f"/v1/users/{user['id']}/task-status")).json()
    assert status["assigned_today"] == 2
    assert status["remaining_today"] == 0
    assert status["can_receive_tasks"] is False

    again = await client.post(f"/v1/users/{user['id']}/assignments/assign")
    assert again.json()["assigned_count"] == 0

    listed = (await client.get(f"/v1/users/{user['id']}/assignments")).json()
    assert listed["count"] == 2
    assignment_id = listed["assignments"][0]["id"]

    completed = await client.post(
        f"/v1/assignments/{assignment_id}/complete", json={"user_id": user["id"]}
    )
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    repeat = await client.post(f"/v1/assignments/{assignment_id}/complete", json={})
    assert repeat.status_code == 409
    assert repeat.json()["detail"]["code"] == "ASSIGNMENT_NOT_COMPLETABLE"

    account = (await client.get(f"/v1/users/{user['id']}/account")).json()
    assert float(account["balance"]) == 3.0


@pytest.mark.asyncio
async def test_distribution_endpoints(client):
    user = await _register(client, "bob")
    membership = await _membership(client, tasks_per_day=1)
    await _task(client)
    await client.post(
        f"/v1/users/{user['id']}/memberships", json={"membership_id": membership["id"]}
    )

    run = await client.post("/v1/distribution/run")
    assert run.status_code == 200
    assert run.json()["users_processed"] == 1
    assert run.json()["tasks_assigned"] == 0

    reset = await client.post("/v1/distribution/reset")
    assert reset.status_code == 200
    assert reset.json()["expired_assignments"] == 0

    stats = (await client.get("/v1/distribution/stats")).json()
    assert stats["assignments"]["pending"] == 1
    assert stats["tasks"]["total"] == 1


@pytest.mark.asyncio
async def test_error_status_codes(client):
    missing_user = await client.get(f"/v1/users/{uuid4()}/account")
    assert missing_user.status_code == 404
    assert missing_user.json()["detail"]["code"] == "USER_NOT_FOUND"

    bad_referral = await client.post(
        "/v1/users",
        json={"username": "carol", "email": "carol@example.com", "referral_code": "ZZZZ9999"},
    )
    assert bad_referral.status_code == 422

    await _register(client, "dave")
    duplicate = await client.post(
        "/v1/users", json={"username": "dave", "email": "dave2@example.com"}
    )
    assert duplicate.status_code == 409

    missing_task = await client.patch("/v1/tasks/999", json={"title": "x"})
    assert missing_task.status_code == 404

    unknown_field = await client.post(
        "/v1/tasks", json={"title": "x", "threshold_value": 1, "task_distribution_count": 3}
    )
    assert unknown_field.status_code == 422

    bad_photo = await client.post(
        "/v1/assignments/1/complete", json={"completion_photo_url": "not-a-url"}
    )
    assert bad_photo.status_code == 422


@pytest.mark.asyncio
async def test_task_patch_validation(client):
    task = await _task(client, threshold_value=2)
    membership = await _membership(client, tasks_per_day=1)
    for name in ("erin", "frank"):
        user = await _register(client, name)
        granted = await client.post(
            f"/v1/users/{user['id']}/memberships", json={"membership_id": membership["id"]}
        )
        assert granted.json()["assignment"]["assigned_count"] == 1

    null_flag = await client.patch(f"/v1/tasks/{task['id']}", json={"is_active": None})
    assert null_flag.status_code == 422

    too_low = await client.patch(f"/v1/tasks/{task['id']}", json={"threshold_value": 1})
    assert too_low.status_code == 409
    assert too_low.json()["detail"]["code"] == "THRESHOLD_BELOW_DISTRIBUTED"

    cleared = await client.patch(f"/v1/tasks/{task['id']}", json={"description": None})
    assert cleared.status_code == 200
    assert cleared.json()["threshold_value"] == 2
    assert cleared.json()["task_distribution_count"] == 2

    null_quota = await client.patch(
        f"/v1/memberships/{membership['id']}", json={"tasks_per_day": None}
    )
    assert null_quota.status_code == 422


@pytest.mark.asyncio
async def test_no_membership_assign_returns_structured_error(client):
    user = await _register(client, "erin")

    response = await client.post(f"/v1/users/{user['id']}/assignments/assign")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is False
    assert body["errors"][0]["code"] == "NO_ACTIVE_MEMBERSHIP"


@pytest.mark.asyncio
async def test_metrics_snapshot(client):
    await _task(client)

    response = await client.get("/v1/metrics")

    assert response.status_code == 200
    assert "counters" in response.json()["metrics"]


@pytest.mark.asyncio
async def test_api_key_required_outside_insecure_dev(client, monkeypatch):
    monkeypatch.setattr(settings, "allow_insecure_dev", False)
    monkeypatch.setattr(settings, "env", Environment.STAGING)
    monkeypatch.setattr(settings, "api_key", "s3cret")

    missing = await client.get("/v1/health")
    wrong = await client.get("/v1/health", headers={"X-API-Key": "nope"})
    bearer = await client.get("/v1/health", headers={"Authorization": "Bearer s3cret"})

    assert missing.status_code == 401
    assert wrong.status_code == 401
    assert bearer.status_code == 200
