"""Authentication router: exchange staff credentials for a bearer token."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, Field

from app.auth import authenticate_user, create_access_token, get_current_user_hardcoded
from app.security import log_security_event, rate_limit_auth

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=255)


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: dict


@router.post("/login", response_model=LoginResponse)
@rate_limit_auth()
async def login(request: Request, body: LoginRequest):
    """Verify credentials and issue a JWT."""
    user = authenticate_user(body.email, body.password)
    if user is None:
        log_security_event("auth_failure", request, {"email": body.email[:100]})
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid email or password",
        )
    logger.info("User %s logged in", user["id"])
    return LoginResponse(access_token=create_access_token(user), user=user)


@router.get("/me")
async def me(current_user: dict = Depends(get_current_user_hardcoded)):
    """Return the authenticated user's profile."""
    return current_user
