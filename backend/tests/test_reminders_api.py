"""Tests for the Reminders router."""
from datetime import datetime, timedelta, timezone

import pytest

import routers.reminders as reminders_router
from tests.conftest import get_auth_headers


def _iso(dt):
    return dt.isoformat()


@pytest.mark.asyncio
async def test_preset_reminder_relative_to_due_date(client, task, owner):
    headers = get_auth_headers(owner)
    due = datetime.now(timezone.utc) + timedelta(days=2)
    await client.patch(f"/api/v1/tasks/{task.id}", json={"due_date": _iso(due)}, headers=headers)

    resp = await client.post(f"/api/v1/tasks/{task.id}/reminders", json={"preset": "1hour"}, headers=headers)
    assert resp.status_code == 201
    body = resp.json()
    assert datetime.fromisoformat(body["remind_at"]) == due - timedelta(hours=1)
    assert body["type"] == "notification"
    assert body["sent"] is False

    # the due-date reminder created by the PATCH already occupies the 1day slot
    resp = await client.post(f"/api/v1/tasks/{task.id}/reminders", json={"preset": "1day"}, headers=headers)
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_preset_without_due_date_rejected(client, task, owner):
    resp = await client.post(f"/api/v1/tasks/{task.id}/reminders", json={"preset": "15min"},
                             headers=get_auth_headers(owner))
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_custom_reminder_and_duplicate(client, task, member):
    headers = get_auth_headers(member)
    at = datetime.now(timezone.utc) + timedelta(hours=6)
    data = {"preset": "custom", "remind_at": _iso(at), "type": "both"}

    resp = await client.post(f"/api/v1/tasks/{task.id}/reminders", json=data, headers=headers)
    assert resp.status_code == 201
    assert resp.json()["type"] == "both"

    resp = await client.post(f"/api/v1/tasks/{task.id}/reminders", json=data, headers=headers)
    assert resp.status_code == 409

    listed = await client.get(f"/api/v1/tasks/{task.id}/reminders", headers=headers)
    assert len(listed.json()) == 1


@pytest.mark.asyncio
async def test_invalid_reminder_type_rejected(client, task, member):
    resp = await client.post(f"/api/v1/tasks/{task.id}/reminders", json={
        "remind_at": _iso(datetime.now(timezone.utc)), "type": "sms",
    }, headers=get_auth_headers(member))
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_delete_allowed_for_owner_or_task_creator(client, task, owner, member):
    at = datetime.now(timezone.utc) + timedelta(hours=6)

    owner_reminder = (await client.post(f"/api/v1/tasks/{task.id}/reminders", json={
        "remind_at": _iso(at),
    }, headers=get_auth_headers(owner))).json()
    member_reminder = (await client.post(f"/api/v1/tasks/{task.id}/reminders", json={
        "remind_at": _iso(at),
    }, headers=get_auth_headers(member))).json()

    # member is neither the reminder owner nor the task creator
    resp = await client.delete(f"/api/v1/tasks/{task.id}/reminders/{owner_reminder['id']}",
                               headers=get_auth_headers(member))
    assert resp.status_code == 403

    # owner created the task
    resp = await client.delete(f"/api/v1/tasks/{task.id}/reminders/{member_reminder['id']}",
                               headers=get_auth_headers(owner))
    assert resp.status_code == 200

    resp = await client.delete(f"/api/v1/tasks/{task.id}/reminders/{member_reminder['id']}",
                               headers=get_auth_headers(owner))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_check_endpoint_sends_due_reminders(client, task, member):
    headers = get_auth_headers(member)
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    await client.post(f"/api/v1/tasks/{task.id}/reminders", json={"remind_at": _iso(past)}, headers=headers)

    resp = await client.post("/api/v1/reminders/check")
    assert resp.status_code == 200
    assert resp.json() == {"sent_count": 1, "message": "Sent 1 reminder"}

    resp = await client.get("/api/v1/reminders/check")
    assert resp.json() == {"sent_count": 0, "message": "No pending reminders to send"}

    notifs = (await client.get("/api/v1/notifications", headers=headers)).json()
    assert [n["type"] for n in notifs] == ["task_reminder"]


@pytest.mark.asyncio
async def test_check_endpoint_requires_api_key_when_configured(client, monkeypatch):
    monkeypatch.setattr(reminders_router, "CRON_API_KEY", "cron-secret")

    resp = await client.post("/api/v1/reminders/check")
    assert resp.status_code == 401

    resp = await client.post("/api/v1/reminders/check", headers={"X-API-Key": "wrong"})
    assert resp.status_code == 401

    resp = await client.post("/api/v1/reminders/check", headers={"X-API-Key": "cron-secret"})
    assert resp.status_code == 200
