"""Authentication routes and the role / tenancy dependencies used by every router."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from prism.domain.clock import utcnow
from prism.domain.enums import AGENCY_ROLES, CLIENT_ROLES
from prism.domain.models import User
from prism.domain.schemas import TokenResponse, UserLogin, UserResponse
from prism.infra.database import get_db
from prism.services.auth_service import (
    create_access_token,
    decode_token,
    get_user_by_email,
    get_user_by_id,
    verify_password,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


async def get_current_user_dep(
    request: Request, db: AsyncSession = Depends(get_db)
) -> User:
    """Dependency: extract current user from Bearer token."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid token",
        )
    token = auth_header.removeprefix("Bearer ")
    payload = decode_token(token)
    if not payload or "sub" not in payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    user = await get_user_by_id(db, payload["sub"])
    if not user or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user


def require_role(*roles: str):
    """Factory: dependency that checks user has one of the required roles."""

    async def checker(user: User = Depends(get_current_user_dep)):
        if user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker


require_agency_staff = require_role(*(r.value for r in AGENCY_ROLES))
require_client_user = require_role(*(r.value for r in CLIENT_ROLES))


def is_agency_staff(user: User) -> bool:
    return user.role in {r.value for r in AGENCY_ROLES}


def resolve_client_id(user: User, requested_client_id: Optional[str]) -> str:
    """Pick the client a request acts for.

    Client users always act for their own client; agency staff must name one.
    """
    if is_agency_staff(user):
        if not requested_client_id:
            raise HTTPException(status_code=400, detail="client_id is required")
        return requested_client_id
    if not user.client_id:
        raise HTTPException(status_code=403, detail="User is not linked to a client")
    if requested_client_id and requested_client_id != user.client_id:
        raise HTTPException(status_code=403, detail="Access denied")
    return user.client_id


def ensure_same_agency(user: User, agency_id: str) -> None:
    if user.agency_id != agency_id:
        raise HTTPException(status_code=403, detail="Access denied")


@router.post("/login", response_model=TokenResponse)
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await get_user_by_email(db, data.email)
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if not user.is_active:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    user.last_login_at = utcnow()
    await db.commit()
    token = create_access_token(user.id, user.role, user.agency_id, user.client_id)
    logger.info("User %s logged in", user.id)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user_dep)):
    return UserResponse.model_validate(user)
