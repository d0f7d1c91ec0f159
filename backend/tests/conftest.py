"""
Shared fixtures for the SSC review tests.

Each test gets its own SQLite database file (via aiosqlite) with the full
schema created from the ORM metadata, so concurrent sessions behave like
separate connections to one database.

Usage:
    pytest backend/tests -v
"""

import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import pytest

# Add backend to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "10000")
os.environ.pop("DIRECTORY_SERVICE_URL", None)

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.models.db import Base
from app.models.db.scholarship_application import ScholarshipApplication
from app.models.db.ssc_review import SscMemberAssignment


# ============================================================================
# REVIEW PAYLOADS
# ============================================================================

FULL_CHECKLIST: Dict[str, bool] = {
    "valid_id": True,
    "birth_certificate": True,
    "barangay_certificate": True,
    "income_certificate": True,
    "certificate_of_enrollment": True,
    "good_moral_certificate": True,
    "academic_records": True,
}

FINANCIAL_OK: Dict[str, Any] = {
    "income_verified": True,
    "budget_available": True,
    "recommended_amount": 15000,
    "budget_period": "2026-2027",
    "financial_assessment_score": 4,
}

ACADEMIC_OK: Dict[str, Any] = {"gwa": 1.75, "academic_standing": "Good standing"}


def approval_payload(stage: str) -> Dict[str, Any]:
    """Valid approval payload for *stage*."""
    return {
        "document_verification": {"checklist": dict(FULL_CHECKLIST)},
        "financial_review": dict(FINANCIAL_OK),
        "academic_review": dict(ACADEMIC_OK),
        "final_approval": {},
    }[stage]


# ============================================================================
# DATABASE FIXTURES
# ============================================================================

@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ssc.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# TEST DATA FACTORIES
# ============================================================================

@pytest.fixture
def make_application(session_factory):
    """Factory fixture: insert an application directly and return it."""
    counter = {"n": 0}
    base_time = datetime(2026, 10, 1, 8, 0, tzinfo=timezone.utc)

    async def _make(
        status: str = "submitted",
        submitted_at: Optional[datetime] = None,
        student_id: str = "STU-001",
        school_id: Optional[str] = "SCH-001",
        category_id: Optional[str] = "CAT-ACAD",
        requested_amount: Optional[float] = 20000,
    ) -> ScholarshipApplication:
        counter["n"] += 1
        if submitted_at is None and status != "draft":
            submitted_at = base_time + timedelta(minutes=counter["n"])
        application = ScholarshipApplication(
            id=uuid.uuid4(),
            application_number=f"SCH-2026-{counter['n']:06d}",
            student_id=student_id,
            school_id=school_id,
            category_id=category_id,
            requested_amount=(
                Decimal(str(requested_amount)) if requested_amount is not None else None
            ),
            status=status,
            submitted_at=submitted_at,
        )
        async with session_factory() as session:
            session.add(application)
            await session.commit()
        return application

    return _make


@pytest.fixture
def assign_role(session_factory):
    """Factory fixture: give a user an SSC role."""

    async def _assign(user_id: str, role: str, is_active: bool = True) -> None:
        async with session_factory() as session:
            session.add(
                SscMemberAssignment(user_id=user_id, ssc_role=role, is_active=is_active)
            )
            await session.commit()

    return _assign


@pytest.fixture
def decide(session_factory):
    """Factory fixture: submit a stage decision in its own session."""
    from app.services.review_workflow import ReviewWorkflow

    async def _decide(
        application_id: uuid.UUID,
        stage: str,
        outcome: str = "approved",
        review_data: Optional[Dict[str, Any]] = None,
        notes: Optional[str] = None,
        reviewer_id: str = "reviewer-1",
        publisher=None,
    ):
        if review_data is None and outcome == "approved":
            review_data = approval_payload(stage)
        async with session_factory() as session:
            return await ReviewWorkflow.submit_stage_decision(
                session,
                application_id=application_id,
                stage=stage,
                outcome=outcome,
                review_data=review_data,
                notes=notes,
                reviewer_id=reviewer_id,
                publisher=publisher,
            )

    return _decide


# ============================================================================
# API CLIENT
# ============================================================================

@pytest.fixture
async def client(session_factory):
    """HTTP client against the FastAPI app, bound to the test database."""
    import httpx

    from app.database import get_db
    from app.main import app
    from app.security import limiter

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    limiter.enabled = False
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    limiter.enabled = True
    app.dependency_overrides.clear()


def auth_headers_for(email: str) -> Dict[str, str]:
    from app.auth import HARDCODED_USERS, create_access_token

    token = create_access_token(HARDCODED_USERS[email])
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    """Factory fixture: bearer headers for a hardcoded staff account."""
    return auth_headers_for
