"""Current-user dependency.

With ``auth_enabled`` the request must carry ``Authorization: Bearer <jwt>``
signed with ``jwt_secret``; the token's ``sub`` (or ``email``) names the user,
who is created on first sight. Without it (local dev) every request runs as
``local_user_email``.

New users are put on ``default_plan_name`` when that plan exists.
"""
from __future__ import annotations

from typing import Annotated, Optional

import structlog
from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel
from sqlalchemy.orm import Session

import crud
import models
import plans
import schemas
from database import get_db
from settings import Settings, get_settings

logger = structlog.get_logger(__name__)


class TokenPayload(BaseModel):
    sub: str
    email: Optional[str] = None
    exp: int


def verify_token(token: str, settings: Settings) -> TokenPayload:
    """Verify a bearer JWT and return its payload.

    Raises HTTPException(401) on failure.
    """
    if not settings.jwt_secret:
        logger.error("auth_enabled is set but jwt_secret is missing")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Auth misconfigured")
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
        return TokenPayload.model_validate(payload)
    except (JWTError, ValueError) as exc:
        logger.warning("JWT verification failed", exc=str(exc))
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")


def _get_authorization_header(request: Request) -> Optional[str]:
    return request.headers.get("Authorization")


def get_or_create_user(db: Session, email: str, settings: Settings) -> models.User:
    user = crud.get_user_by_email(db, email)
    if user:
        return user
    default_plan = plans.get_plan_by_name(db, settings.default_plan_name) if settings.default_plan_name else None
    user = crud.create_user(db, schemas.UserCreate(email=email, plan_id=default_plan.id if default_plan else None))
    db.commit()
    logger.info("User created", user_id=user.id, plan_id=user.plan_id)
    return user


async def get_current_user(
    authorization: Annotated[Optional[str], Depends(_get_authorization_header)],
    db: Session = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> models.User:
    if not settings.auth_enabled:
        return get_or_create_user(db, settings.local_user_email, settings)

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token")

    payload = verify_token(authorization.split(" ", 1)[1], settings)
    return get_or_create_user(db, payload.email or payload.sub, settings)
