"""Hardcoded authentication for the SSC review service.

Provides JWT-based authentication for a small set of staff accounts.
Passwords are verified with bcrypt. Tokens are signed with HS256 via
python-jose.

Committee roles are not part of the token: which stages a user may decide
comes from ``ssc_member_assignments``.  The ``role`` claim only separates
administrators (who may reopen stages) from ordinary staff.
"""

import logging
import os
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from fastapi import HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# JWT configuration
# ---------------------------------------------------------------------------
JWT_SECRET = os.getenv(
    "JWT_SECRET",
    "ssc-dev-secret-change-in-production",
)
JWT_ALGORITHM = "HS256"
JWT_EXPIRY_HOURS = int(os.getenv("JWT_EXPIRY_HOURS", "12"))


# ---------------------------------------------------------------------------
# Password hashing (direct bcrypt, avoids passlib compatibility issues)
# ---------------------------------------------------------------------------
def _hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def _verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# Hardcoded users
# ---------------------------------------------------------------------------
# Passwords come from the environment and are bcrypt-hashed at module load.

HARDCODED_USERS: dict[str, dict[str, Any]] = {
    "admin@scholarship.local": {
        "id": "00000000-0000-0000-0000-000000000001",
        "email": "admin@scholarship.local",
        "display_name": "Scholarship Administrator",
        "role": "admin",
        "hashed_password": _hash_password(os.getenv("SSC_ADMIN_PASSWORD", "SscAdmin2026!")),
    },
    "council@scholarship.local": {
        "id": "00000000-0000-0000-0000-000000000002",
        "email": "council@scholarship.local",
        "display_name": "City Council Representative",
        "role": "staff",
        "hashed_password": _hash_password(os.getenv("SSC_STAFF_PASSWORD", "SscStaff2026!")),
    },
    "budget@scholarship.local": {
        "id": "00000000-0000-0000-0000-000000000003",
        "email": "budget@scholarship.local",
        "display_name": "Budget Department Officer",
        "role": "staff",
        "hashed_password": _hash_password(os.getenv("SSC_STAFF_PASSWORD", "SscStaff2026!")),
    },
    "education@scholarship.local": {
        "id": "00000000-0000-0000-0000-000000000004",
        "email": "education@scholarship.local",
        "display_name": "Education Affairs Officer",
        "role": "staff",
        "hashed_password": _hash_password(os.getenv("SSC_STAFF_PASSWORD", "SscStaff2026!")),
    },
    "chair@scholarship.local": {
        "id": "00000000-0000-0000-0000-000000000005",
        "email": "chair@scholarship.local",
        "display_name": "SSC Chairperson",
        "role": "staff",
        "hashed_password": _hash_password(os.getenv("SSC_STAFF_PASSWORD", "SscStaff2026!")),
    },
}

# ---------------------------------------------------------------------------
# HTTPBearer scheme (shared with deps.py)
# ---------------------------------------------------------------------------
security = HTTPBearer(auto_error=False)


# ---------------------------------------------------------------------------
# Public helpers
# ---------------------------------------------------------------------------


def _user_profile(user_record: dict[str, Any]) -> dict[str, Any]:
    """Return a user dict without the hashed password."""
    return {k: v for k, v in user_record.items() if k != "hashed_password"}


def authenticate_user(email: str, password: str) -> dict[str, Any] | None:
    """Verify *email* and *password* against the hardcoded user list.

    Returns the user profile dict (without password) on success, or
    ``None`` if authentication fails.
    """
    user = HARDCODED_USERS.get(email.lower().strip())
    if user is None:
        return None
    if not _verify_password(password, user["hashed_password"]):
        return None
    return _user_profile(user)


def create_access_token(user_data: dict[str, Any]) -> str:
    """Create a signed JWT containing the user's id, email and role."""
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user_data["id"],
        "email": user_data["email"],
        "role": user_data.get("role", "staff"),
        "exp": now + timedelta(hours=JWT_EXPIRY_HOURS),
        "iat": now,
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


async def get_current_user(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = None,
) -> dict[str, Any]:
    """FastAPI dependency -- extract and validate the Bearer JWT.

    If *credentials* is not supplied, the ``Authorization`` header is read
    directly.
    """
    token: str | None = None

    if credentials is not None:
        token = credentials.credentials
    else:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        user_id: str = payload.get("sub", "")
        email: str = payload.get("email", "")
        if not user_id:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid token payload",
            )
    except JWTError as exc:
        logger.warning("JWT validation failed: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from exc

    user = HARDCODED_USERS.get(email)
    if user is not None:
        return _user_profile(user)

    # Valid token for an account outside the hardcoded list: build a
    # minimal profile from the claims.
    return {
        "id": user_id,
        "email": email,
        "display_name": email.split("@")[0],
        "role": payload.get("role", "staff"),
    }


async def get_current_user_hardcoded(request: Request) -> dict[str, Any]:
    """Variant of ``get_current_user`` that reads the Authorization header
    directly, for routers that do not declare the HTTPBearer dependency.
    """
    return await get_current_user(request)
