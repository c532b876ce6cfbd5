import logging
import time
from typing import NamedTuple, Optional

import jwt
from passlib.context import CryptContext

from . import config, errors
from .models import Role

logger = logging.getLogger(__name__)

# Use pbkdf2_sha256 as default to avoid bcrypt 72-byte limitation in some envs
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

ALGORITHM = "HS256"


class Claims(NamedTuple):
    user_id: int
    username: str
    role: Role
    expires_at: int


def _strip_scheme(token: Optional[str]) -> str:
    token = (token or "").strip()
    if token[:7].lower() == "bearer ":
        token = token[7:].strip()
    return token


def issue_token(user_id: int, username: str, role: Role, ttl: Optional[int] = None) -> str:
    settings = config.get_settings()
    now = int(time.time())
    exp = now + (ttl if ttl is not None else settings.token_ttl_seconds)
    payload = {
        "sub": str(user_id),
        "username": username,
        "role": Role(role).value,
        "iat": now,
        "exp": exp,
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=ALGORITHM)


def verify_token(token: Optional[str]) -> Claims:
    """Check signature and expiry of a bearer credential and return its claims."""
    raw = _strip_scheme(token)
    if not raw:
        raise errors.Unauthenticated("unauthorized")
    try:
        payload = jwt.decode(
            raw,
            config.get_settings().jwt_secret,
            algorithms=[ALGORITHM],
            options={"require": ["sub", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise errors.Unauthenticated("token expired") from None
    except jwt.PyJWTError:
        raise errors.Unauthenticated("invalid token") from None

    try:
        return Claims(
            user_id=int(payload["sub"]),
            username=str(payload.get("username", "")),
            role=Role(payload.get("role")),
            expires_at=int(payload["exp"]),
        )
    except (KeyError, TypeError, ValueError):
        raise errors.Unauthenticated("invalid token") from None


def refresh_token(token: Optional[str]) -> str:
    claims = verify_token(token)
    remaining = claims.expires_at - int(time.time())
    if remaining > config.get_settings().refresh_window_seconds:
        raise errors.RefreshNotYetEligible("token not expired enough")
    logger.info("refreshed token for user %s", claims.user_id)
    return issue_token(claims.user_id, claims.username, claims.role)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)
