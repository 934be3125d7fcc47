"""Authentication API — password + TOTP login, current user."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel
from sqlmodel import Session, select

from finrecorder.config import settings
from finrecorder.database import get_session
from finrecorder.models.user import User
from finrecorder.services.auth import verify_password, verify_totp, create_access_token
from finrecorder.api.deps import get_current_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    username: str
    password: str
    totp_code: str


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class MeResponse(BaseModel):
    id: int
    username: str


def _reject(username: str, detail: str) -> HTTPException:
    logger.warning(f"Login rejected for {username!r}: {detail}")
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail)


@router.post("/login", response_model=LoginResponse)
def login(body: LoginRequest, session: Session = Depends(get_session)):
    user = session.exec(select(User).where(User.username == body.username)).first()

    if not user or not user.is_active or not verify_password(body.password, user.hashed_password):
        raise _reject(body.username, "Invalid credentials")

    if not verify_totp(user.totp_secret, body.totp_code):
        raise _reject(body.username, "Invalid TOTP code")

    token = create_access_token(subject=user.username)
    return LoginResponse(access_token=token, expires_in=settings.jwt_expire_minutes * 60)


@router.get("/me", response_model=MeResponse)
def me(user: User = Depends(get_current_user)):
    return MeResponse(id=user.id, username=user.username)
