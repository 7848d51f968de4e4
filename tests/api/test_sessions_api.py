import pytest
import pytest_asyncio
import uuid
from datetime import timezone
from typing import AsyncIterator
from httpx import AsyncClient, ASGITransport

from classroll.backend.main import app
from classroll.backend.config.config import settings
from classroll.backend.api.dependencies import (
    get_clock, get_db_client, get_notification_service, get_redis_client, get_session_service
)
from classroll.backend.api.utilities.limiter import limiter
from classroll.backend.modules.clock import FixedClock
from classroll.backend.services.session_service import SessionService
from tests.fakes import at, bearer, make_session

SECRET = "test-secret"
TUTOR = bearer("T001", "tutor", SECRET)
OTHER_TUTOR = bearer("T002", "tutor", SECRET)
ADMIN = bearer("A001", "Admin", SECRET)
STUDENT = bearer("S001", "student", SECRET)

NEW_SESSION = {
    "subject": "Mathematics",
    "grade": "10",
    "title": "Quadratic equations",
    "scheduled_date": "2024-03-01",
    "start_time": "09:00",
    "end_time": "10:00",
    "student_ids": ["S001", "S002"],
}


@pytest_asyncio.fixture(scope="function")
async def http_client(store, tokens, notification_service, monkeypatch) -> AsyncIterator[AsyncClient]:
    """
    An HTTP client against the app with the stores swapped for in-memory fakes.
    The lifespan does not run, so no database or scheduler is started.
    """
    monkeypatch.setattr(settings, "SECRET_KEY", SECRET)
    monkeypatch.setattr(limiter, "enabled", False)

    app.dependency_overrides[get_session_service] = lambda: SessionService(db_client=store, tz=timezone.utc)
    app.dependency_overrides[get_db_client] = lambda: store
    app.dependency_overrides[get_redis_client] = lambda: tokens
    app.dependency_overrides[get_notification_service] = lambda: notification_service
    app.dependency_overrides[get_clock] = lambda: FixedClock(at("08:00"))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.mark.asyncio
async def test_health(http_client: AsyncClient):
    response = await http_client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


@pytest.mark.asyncio
async def test_missing_or_bad_token_is_rejected(http_client: AsyncClient):
    response = await http_client.post("/api/v1/sessions", json=NEW_SESSION)
    assert response.status_code == 401

    response = await http_client.post("/api/v1/sessions", json=NEW_SESSION, headers=bearer("T001", "tutor", "wrong"))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_unknown_role_is_rejected(http_client: AsyncClient):
    response = await http_client.get(f"/api/v1/sessions/{uuid.uuid4()}", headers=bearer("X1", "janitor", SECRET))
    assert response.status_code == 401


@pytest.mark.asyncio
async def test_tutor_schedules_own_session(http_client: AsyncClient, store):
    response = await http_client.post("/api/v1/sessions", json=NEW_SESSION, headers=TUTOR)

    assert response.status_code == 201
    body = response.json()
    assert body["tutor_id"] == "T001"
    assert body["status"] == "scheduled"
    assert body["student_ids"] == ["S001", "S002"]
    assert len(store.records) == 2


@pytest.mark.asyncio
async def test_student_cannot_schedule(http_client: AsyncClient):
    response = await http_client.post("/api/v1/sessions", json=NEW_SESSION, headers=STUDENT)
    assert response.status_code == 403


@pytest.mark.asyncio
async def test_admin_must_name_the_tutor(http_client: AsyncClient):
    response = await http_client.post("/api/v1/sessions", json=NEW_SESSION, headers=ADMIN)
    assert response.status_code == 400

    response = await http_client.post("/api/v1/sessions", json={**NEW_SESSION, "tutor_id": "T002"}, headers=ADMIN)
    assert response.status_code == 201
    assert response.json()["tutor_id"] == "T002"


@pytest.mark.asyncio
async def test_invalid_times_are_a_bad_request(http_client: AsyncClient):
    response = await http_client.post(
        "/api/v1/sessions", json={**NEW_SESSION, "start_time": "10:00", "end_time": "09:00"}, headers=TUTOR
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_overlapping_session_is_a_conflict(http_client: AsyncClient):
    first = await http_client.post("/api/v1/sessions", json=NEW_SESSION, headers=TUTOR)
    assert first.status_code == 201

    second = await http_client.post(
        "/api/v1/sessions", json={**NEW_SESSION, "start_time": "09:30", "end_time": "10:30"}, headers=TUTOR
    )
    assert second.status_code == 409


@pytest.mark.asyncio
async def test_get_unknown_session(http_client: AsyncClient):
    response = await http_client.get(f"/api/v1/sessions/{uuid.uuid4()}", headers=STUDENT)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_reschedule_and_cancel(http_client: AsyncClient, store):
    session = make_session()
    store.put_session(session)

    response = await http_client.patch(
        f"/api/v1/sessions/{session.session_id}/schedule",
        json={"scheduled_date": "2024-03-02", "start_time": "11:00", "end_time": "12:00"},
        headers=TUTOR,
    )
    assert response.status_code == 200
    assert response.json()["start_time"] == "11:00"

    response = await http_client.post(f"/api/v1/sessions/{session.session_id}/cancel", headers=OTHER_TUTOR)
    assert response.status_code == 403

    response = await http_client.post(f"/api/v1/sessions/{session.session_id}/cancel", headers=TUTOR)
    assert response.status_code == 200
    assert response.json()["status"] == "cancelled"


@pytest.mark.asyncio
async def test_override_and_list_register(http_client: AsyncClient, store):
    session = make_session()
    store.put_session(session)
    await store.seed_attendance_records(session.session_id, session.student_ids)

    response = await http_client.put(
        f"/api/v1/sessions/{session.session_id}/attendance/S002",
        json={"status": "excused", "reason": "Sports tournament"},
        headers=TUTOR,
    )
    assert response.status_code == 200
    assert response.json()["manual_override"]["original_status"] == "absent"

    response = await http_client.get(f"/api/v1/sessions/{session.session_id}/attendance", headers=TUTOR)
    assert response.status_code == 200
    statuses = {r["student_id"]: r["status"] for r in response.json()}
    assert statuses == {"S001": "absent", "S002": "excused", "S003": "absent"}


@pytest.mark.asyncio
async def test_override_reason_is_validated(http_client: AsyncClient, store):
    session = make_session()
    store.put_session(session)

    response = await http_client.put(
        f"/api/v1/sessions/{session.session_id}/attendance/S002",
        json={"status": "excused", "reason": "x"},
        headers=TUTOR,
    )
    assert response.status_code == 422


@pytest.mark.asyncio
async def test_lifecycle_run_is_admin_only(http_client: AsyncClient, store):
    session = make_session()
    store.put_session(session)
    app.dependency_overrides[get_clock] = lambda: FixedClock(at("10:06"))

    response = await http_client.post("/api/v1/lifecycle/run", headers=TUTOR)
    assert response.status_code == 403

    response = await http_client.post("/api/v1/lifecycle/run", headers=ADMIN)
    assert response.status_code == 200
    assert response.json()["absentees_marked"] == 3
