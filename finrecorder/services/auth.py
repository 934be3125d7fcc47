"""Authentication: bcrypt password hashes, TOTP second factor, JWT bearer tokens.

Also owns user creation, since a new account needs both a password hash and a
fresh TOTP secret.
"""

import logging
from datetime import datetime, timedelta, timezone

import bcrypt
import pyotp
from jose import JWTError, jwt
from sqlmodel import Session, select

from finrecorder.config import settings
from finrecorder.models.preference import UserPreference
from finrecorder.models.user import User

logger = logging.getLogger(__name__)

TOTP_ISSUER = "FinRecorder"
# bcrypt ignores everything past 72 bytes
BCRYPT_MAX_BYTES = 72


def _password_bytes(password: str) -> bytes:
    return password.encode("utf-8")[:BCRYPT_MAX_BYTES]


def hash_password(password: str) -> str:
    return bcrypt.hashpw(_password_bytes(password), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # stored value is not a bcrypt hash
        return False


def create_access_token(subject: str, expires_minutes: int | None = None) -> str:
    now = datetime.now(timezone.utc)
    ttl = timedelta(minutes=expires_minutes or settings.jwt_expire_minutes)
    claims = {"sub": subject, "iat": now, "exp": now + ttl}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_access_token(token: str) -> str | None:
    """Username carried by a valid, unexpired token; ``None`` otherwise."""
    try:
        claims = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError as e:
        logger.debug(f"Rejected access token: {e}")
        return None
    return claims.get("sub")


def verify_totp(secret: str, code: str) -> bool:
    """Check a 6-digit code, accepting one step of clock drift either way."""
    digits = code.replace(" ", "").strip()
    if not digits.isdigit():
        return False
    return pyotp.TOTP(secret).verify(digits, valid_window=1)


def get_totp_uri(secret: str, username: str) -> str:
    return pyotp.TOTP(secret).provisioning_uri(name=username, issuer_name=TOTP_ISSUER)


def create_user(session: Session, username: str, password: str) -> tuple[User, str]:
    """Create an active user with a fresh TOTP secret and default preferences.

    Returns ``(user, totp_secret)``. Raises ValueError if the username is taken.
    """
    if session.exec(select(User).where(User.username == username)).first():
        raise ValueError(f"User {username!r} already exists")

    secret = pyotp.random_base32()
    user = User(username=username, hashed_password=hash_password(password), totp_secret=secret)
    session.add(user)
    session.flush()
    session.add(UserPreference(user_id=user.id))
    session.commit()
    session.refresh(user)
    logger.info(f"Created user {username!r}")
    return user, secret
