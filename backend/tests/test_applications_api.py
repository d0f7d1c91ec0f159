"""
API tests for scholarship application intake and service endpoints.

Tests cover:
1. Creating, fetching, submitting and withdrawing applications
2. Status history across the lifecycle
3. Error responses (404, 409, 422, 401)
4. Login, current user and health endpoints

Usage:
    cd backend && pytest tests/test_applications_api.py -v
"""

import os
import re
import sys
import uuid

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from app.services.application_service import generate_application_number

ADMIN = "admin@scholarship.local"
STAFF = "council@scholarship.local"


# ============================================================================
# TEST DATA FACTORIES
# ============================================================================

def make_create_body(**overrides):
    body = {
        "student_id": "STU-100",
        "school_id": "SCH-7",
        "category_id": "CAT-ACAD",
        "requested_amount": 20000,
    }
    body.update(overrides)
    return body


async def create_draft(client, headers, **overrides):
    response = await client.post(
        "/api/v1/applications", json=make_create_body(**overrides), headers=headers
    )
    assert response.status_code == 201
    return response.json()


# ============================================================================
# INTAKE
# ============================================================================

class TestApplicationLifecycle:
    """Draft, submit and withdraw through the API."""

    async def test_create_draft(self, client, auth_headers):
        data = await create_draft(client, auth_headers(STAFF))

        assert data["status"] == "draft"
        assert data["student_id"] == "STU-100"
        assert data["requested_amount"] == 20000
        assert data["submitted_at"] is None
        assert data["application_number"].startswith("SCH-")

    async def test_get_application(self, client, auth_headers):
        headers = auth_headers(STAFF)
        created = await create_draft(client, headers)

        response = await client.get(f"/api/v1/applications/{created['id']}", headers=headers)

        assert response.status_code == 200
        assert response.json()["application_number"] == created["application_number"]

    async def test_submit_then_withdraw(self, client, auth_headers):
        headers = auth_headers(STAFF)
        created = await create_draft(client, headers)

        submitted = await client.post(
            f"/api/v1/applications/{created['id']}/submit", headers=headers
        )
        assert submitted.status_code == 200
        assert submitted.json()["status"] == "submitted"
        assert submitted.json()["submitted_at"] is not None

        withdrawn = await client.post(
            f"/api/v1/applications/{created['id']}/withdraw",
            json={"reason": "Student transferred abroad"},
            headers=headers,
        )
        assert withdrawn.status_code == 200
        assert withdrawn.json()["status"] == "withdrawn"
        assert withdrawn.json()["withdrawn_at"] is not None

        history = await client.get(
            f"/api/v1/applications/{created['id']}/status-history", headers=headers
        )
        assert history.status_code == 200
        rows = history.json()["history"]
        assert history.json()["total"] == 3
        assert [(r["old_status"], r["new_status"]) for r in rows] == [
            (None, "draft"),
            ("draft", "submitted"),
            ("submitted", "withdrawn"),
        ]
        assert rows[2]["reason"] == "Student transferred abroad"

    async def test_draft_can_be_withdrawn(self, client, auth_headers):
        headers = auth_headers(STAFF)
        created = await create_draft(client, headers)

        response = await client.post(
            f"/api/v1/applications/{created['id']}/withdraw", json={}, headers=headers
        )

        assert response.status_code == 200
        assert response.json()["status"] == "withdrawn"

    async def test_submit_twice_is_invalid(self, client, auth_headers):
        headers = auth_headers(STAFF)
        created = await create_draft(client, headers)
        await client.post(f"/api/v1/applications/{created['id']}/submit", headers=headers)

        response = await client.post(
            f"/api/v1/applications/{created['id']}/submit", headers=headers
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "invalid_transition"

    async def test_withdrawn_application_is_closed(self, client, auth_headers):
        headers = auth_headers(STAFF)
        created = await create_draft(client, headers)
        await client.post(
            f"/api/v1/applications/{created['id']}/withdraw", json={}, headers=headers
        )

        response = await client.post(
            f"/api/v1/applications/{created['id']}/withdraw", json={}, headers=headers
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "application_closed"

    async def test_withdrawn_application_leaves_queues(
        self, client, auth_headers, make_application
    ):
        application = await make_application()
        admin = auth_headers(ADMIN)

        await client.post(
            f"/api/v1/applications/{application.id}/withdraw", json={}, headers=admin
        )
        queue = await client.get("/api/v1/ssc/queues/budget_dept", headers=admin)

        assert queue.json()["total"] == 0


class TestIntakeErrors:
    """Error responses keep a machine-readable code."""

    async def test_unknown_application(self, client, auth_headers):
        response = await client.get(
            f"/api/v1/applications/{uuid.uuid4()}", headers=auth_headers(STAFF)
        )

        assert response.status_code == 404
        body = response.json()
        assert body["detail"]["code"] == "not_found"
        assert "request_id" in body

    async def test_status_history_of_unknown_application(self, client, auth_headers):
        response = await client.get(
            f"/api/v1/applications/{uuid.uuid4()}/status-history",
            headers=auth_headers(STAFF),
        )

        assert response.status_code == 404

    async def test_student_is_required(self, client, auth_headers):
        body = make_create_body()
        del body["student_id"]

        response = await client.post(
            "/api/v1/applications", json=body, headers=auth_headers(STAFF)
        )

        assert response.status_code == 422

    async def test_negative_requested_amount(self, client, auth_headers):
        response = await client.post(
            "/api/v1/applications",
            json=make_create_body(requested_amount=-1),
            headers=auth_headers(STAFF),
        )

        assert response.status_code == 422

    async def test_requested_amount_beyond_column_range(self, client, auth_headers):
        response = await client.post(
            "/api/v1/applications",
            json=make_create_body(requested_amount=1e12),
            headers=auth_headers(STAFF),
        )

        assert response.status_code == 422
        assert response.json()["detail"][0]["loc"] == ["body", "requested_amount"]

    async def test_requires_authentication(self, client):
        response = await client.post("/api/v1/applications", json=make_create_body())

        assert response.status_code == 401

    async def test_rejects_forged_token(self, client):
        response = await client.get(
            f"/api/v1/applications/{uuid.uuid4()}",
            headers={"Authorization": "Bearer not-a-jwt"},
        )

        assert response.status_code == 401


class TestApplicationNumber:
    def test_format(self):
        assert re.fullmatch(r"SCH-\d{4}-[0-9A-F]{8}", generate_application_number())

    def test_unique(self):
        numbers = {generate_application_number() for _ in range(50)}
        assert len(numbers) == 50


# ============================================================================
# AUTH AND HEALTH
# ============================================================================

class TestAuthEndpoints:
    async def test_login_and_me(self, client):
        login = await client.post(
            "/api/v1/auth/login",
            json={"email": ADMIN, "password": os.getenv("SSC_ADMIN_PASSWORD", "SscAdmin2026!")},
        )
        assert login.status_code == 200
        token = login.json()["access_token"]
        assert "hashed_password" not in login.json()["user"]

        me = await client.get(
            "/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}
        )
        assert me.status_code == 200
        assert me.json()["role"] == "admin"

    async def test_wrong_password(self, client):
        response = await client.post(
            "/api/v1/auth/login", json={"email": ADMIN, "password": "wrong"}
        )

        assert response.status_code == 401


class TestHealth:
    async def test_root(self, client):
        response = await client.get("/")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    async def test_health_with_database(self, client, session_factory, monkeypatch):
        from app import database

        monkeypatch.setattr(database, "async_session_factory", session_factory)

        response = await client.get("/api/v1/health")

        data = response.json()
        assert data["services"]["database"] == "connected"
        assert "ssc_review" in data["capabilities"]

    async def test_health_without_database(self, client, monkeypatch):
        from app import database

        monkeypatch.setattr(database, "async_session_factory", None)

        response = await client.get("/api/v1/health")

        data = response.json()
        assert data["status"] == "degraded"
        assert "ssc_review" in data["degraded"]

