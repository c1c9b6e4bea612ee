"""Tests for the therapy sessions API and the session lifecycle rules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from mentalspace.errors import BusinessRuleError
from mentalspace.services.session_service import ALLOWED_TRANSITIONS, can_transition


def _slot(hours_from_now: int = 24, minutes: int = 50) -> dict[str, str]:
    start = datetime.now(timezone.utc).replace(microsecond=0) + timedelta(hours=hours_from_now)
    return {"start_time": start.isoformat(), "end_time": (start + timedelta(minutes=minutes)).isoformat()}


class TestTransitions:
    @pytest.mark.parametrize(
        "current,target,allowed",
        [
            ("scheduled", "confirmed", True),
            ("scheduled", "completed", True),
            ("scheduled", "cancelled", True),
            ("scheduled", "no-show", True),
            ("confirmed", "completed", True),
            ("confirmed", "scheduled", False),
            ("completed", "scheduled", False),
            ("cancelled", "confirmed", False),
            ("no-show", "completed", False),
            ("scheduled", "scheduled", False),
        ],
    )
    def test_can_transition(self, current, target, allowed):
        assert can_transition(current, target) is allowed

    def test_terminal_states_have_no_exits(self):
        for status in ("completed", "cancelled", "no-show"):
            assert ALLOWED_TRANSITIONS[status] == frozenset()


class TestCreateSession:
    async def test_clinician_books_for_self(self, client, users, headers, make_client):
        record = await make_client(users["clinician"].id)
        resp = await client.post(
            "/api/sessions",
            json={"client_id": record.id, "session_type": "individual", **_slot()},
            headers=headers["clinician"],
        )
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["therapist_id"] == users["clinician"].id
        assert data["status"] == "scheduled"

    async def test_clinician_cannot_book_for_colleague(self, client, users, headers, make_client):
        record = await make_client(users["clinician"].id)
        resp = await client.post(
            "/api/sessions",
            json={
                "client_id": record.id,
                "therapist_id": users["clinician2"].id,
                "session_type": "individual",
                **_slot(),
            },
            headers=headers["clinician"],
        )
        assert resp.status_code == 201
        assert resp.json()["therapist_id"] == users["clinician"].id

    async def test_supervisor_books_colleague_for_own_client(self, client, users, headers, make_client):
        record = await make_client(users["supervisor"].id)
        resp = await client.post(
            "/api/sessions",
            json={
                "client_id": record.id,
                "therapist_id": users["clinician"].id,
                "session_type": "family",
                "medium": "telehealth",
                **_slot(),
            },
            headers=headers["supervisor"],
        )
        assert resp.status_code == 201
        assert resp.json()["therapist_id"] == users["clinician"].id

    async def test_end_before_start_is_rejected(self, client, users, headers, make_client):
        record = await make_client(users["clinician"].id)
        slot = _slot()
        resp = await client.post(
            "/api/sessions",
            json={
                "client_id": record.id,
                "session_type": "individual",
                "start_time": slot["end_time"],
                "end_time": slot["start_time"],
            },
            headers=headers["clinician"],
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    async def test_clinician_cannot_book_for_colleagues_client(self, client, users, headers, make_client):
        record = await make_client(users["clinician2"].id)
        resp = await client.post(
            "/api/sessions",
            json={"client_id": record.id, "session_type": "individual", **_slot()},
            headers=headers["clinician"],
        )
        assert resp.status_code == 403
        assert resp.json()["code"] == "FORBIDDEN"
        listed = await client.get("/api/sessions", headers=headers["admin"])
        assert listed.json() == []

    async def test_supervisor_cannot_book_for_unowned_client(self, client, users, headers, make_client):
        record = await make_client(users["clinician"].id)
        resp = await client.post(
            "/api/sessions",
            json={"client_id": record.id, "session_type": "individual", **_slot()},
            headers=headers["supervisor"],
        )
        assert resp.status_code == 403

    async def test_admin_books_for_any_client(self, client, users, headers, make_client):
        record = await make_client(users["clinician2"].id)
        resp = await client.post(
            "/api/sessions",
            json={"client_id": record.id, "session_type": "individual", **_slot()},
            headers=headers["admin"],
        )
        assert resp.status_code == 201

    async def test_unknown_client_is_forbidden_for_clinician(self, client, headers):
        resp = await client.post(
            "/api/sessions",
            json={"client_id": 4242, "session_type": "individual", **_slot()},
            headers=headers["clinician"],
        )
        assert resp.status_code == 403
        assert resp.json()["message"] == "Resource ownership could not be determined"

    async def test_missing_body_is_forbidden_for_clinician(self, client, headers):
        resp = await client.post("/api/sessions", headers=headers["clinician"])
        assert resp.status_code == 403

    async def test_unknown_client_for_admin(self, client, headers):
        resp = await client.post(
            "/api/sessions",
            json={"client_id": 4242, "session_type": "individual", **_slot()},
            headers=headers["admin"],
        )
        assert resp.status_code == 404
        assert resp.json()["message"] == "Client with identifier '4242' was not found"

    async def test_biller_cannot_book(self, client, users, headers, make_client):
        record = await make_client(users["clinician"].id)
        resp = await client.post(
            "/api/sessions",
            json={"client_id": record.id, "session_type": "individual", **_slot()},
            headers=headers["biller"],
        )
        assert resp.status_code == 403


class TestSessionAccess:
    async def test_list_is_scoped_to_therapist(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        await make_session(record.id, users["clinician"].id)
        await make_session(record.id, users["clinician2"].id)

        mine = await client.get("/api/sessions", headers=headers["clinician"])
        assert [s["therapist_id"] for s in mine.json()] == [users["clinician"].id]

        everyone = await client.get("/api/sessions", headers=headers["admin"])
        assert len(everyone.json()) == 2

    async def test_list_filters_by_status(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        await make_session(record.id, users["clinician"].id, status="scheduled")
        await make_session(record.id, users["clinician"].id, status="cancelled")
        resp = await client.get("/api/sessions", params={"status": "cancelled"}, headers=headers["clinician"])
        assert [s["status"] for s in resp.json()] == ["cancelled"]

    async def test_other_therapist_is_forbidden(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id)
        resp = await client.get(f"/api/sessions/{session.id}", headers=headers["clinician2"])
        assert resp.status_code == 403

    async def test_admin_gets_404_for_missing_session(self, client, headers):
        resp = await client.get("/api/sessions/777", headers=headers["admin"])
        assert resp.status_code == 404
        assert resp.json()["code"] == "RESOURCE_NOT_FOUND"


class TestSessionLifecycle:
    async def test_reschedule(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id)
        resp = await client.patch(
            f"/api/sessions/{session.id}", json={**_slot(48), "notes": "moved"}, headers=headers["clinician"]
        )
        assert resp.status_code == 200, resp.text
        assert resp.json()["notes"] == "moved"

    async def test_reschedule_with_inverted_range(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id)
        past = (datetime.now(timezone.utc) - timedelta(days=3)).isoformat()
        resp = await client.patch(f"/api/sessions/{session.id}", json={"end_time": past}, headers=headers["clinician"])
        assert resp.status_code == 400
        assert resp.json()["details"] == {"rule": "time_range"}

    async def test_completed_session_cannot_be_updated(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id, status="completed")
        resp = await client.patch(f"/api/sessions/{session.id}", json={"notes": "late edit"}, headers=headers["admin"])
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "BUSINESS_RULE_VIOLATION"
        assert body["message"] == "Completed sessions cannot be updated"

    async def test_status_walk(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id)
        url = f"/api/sessions/{session.id}/status"

        resp = await client.patch(url, json={"status": "confirmed"}, headers=headers["clinician"])
        assert resp.json()["status"] == "confirmed"
        resp = await client.patch(url, json={"status": "completed"}, headers=headers["clinician"])
        assert resp.json()["status"] == "completed"

        resp = await client.patch(url, json={"status": "scheduled"}, headers=headers["clinician"])
        assert resp.status_code == 400
        assert resp.json()["message"] == "Cannot change session status from 'completed' to 'scheduled'"

    async def test_cancel_records_reason(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id)
        resp = await client.patch(
            f"/api/sessions/{session.id}/status",
            json={"status": "cancelled", "cancel_reason": "client ill"},
            headers=headers["clinician"],
        )
        assert resp.status_code == 200
        assert resp.json()["cancel_reason"] == "client ill"

    async def test_unknown_status_value(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id)
        resp = await client.patch(
            f"/api/sessions/{session.id}/status", json={"status": "done"}, headers=headers["clinician"]
        )
        assert resp.status_code == 400
        assert resp.json()["code"] == "VALIDATION_ERROR"

    async def test_delete_scheduled_session(self, client, users, headers, make_client, make_session):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id)
        resp = await client.delete(f"/api/sessions/{session.id}", headers=headers["clinician"])
        assert resp.status_code == 204
        resp = await client.get(f"/api/sessions/{session.id}", headers=headers["admin"])
        assert resp.status_code == 404

    async def test_completed_session_cannot_be_deleted_even_by_admin(
        self, client, users, headers, make_client, make_session
    ):
        record = await make_client(users["clinician"].id)
        session = await make_session(record.id, users["clinician"].id, status="completed")
        resp = await client.delete(f"/api/sessions/{session.id}", headers=headers["admin"])
        assert resp.status_code == 400
        assert resp.json()["details"] == {"rule": "completed_session_immutable"}


class TestServiceRules:
    async def test_delete_completed_raises(self, db_factory, users, make_client, make_session):
        from mentalspace.services import session_service

        record = await make_client(users["clinician"].id)
        created = await make_session(record.id, users["clinician"].id, status="completed")
        async with db_factory() as db:
            session = await session_service.get_session(db, created.id)
            with pytest.raises(BusinessRuleError):
                await session_service.delete_session(db, session)
