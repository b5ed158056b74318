from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import ExpiredSignatureError, JWTError, jwt

from studiobook.auth.actor import Actor, ROLES, CLIENT
from studiobook.core.config import settings
from studiobook.core.conversions import coerce_int
from studiobook.core.logging_config import get_logger, log_security_event

ALGORITHM = "HS256"

logger = get_logger("auth")


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY_ACCESS_TOKEN, algorithm=ALGORITHM)


def verify_token(token: str):
    try:
        return jwt.decode(token, settings.SECRET_KEY_ACCESS_TOKEN, algorithms=[ALGORITHM])
    except ExpiredSignatureError:
        logger.info("Access token expired")
        return None
    except JWTError as e:
        log_security_event("invalid_token", str(e))
        return None


def actor_from_token(token: Optional[str]) -> Optional[Actor]:
    """Decode an access token into the acting identity, or None."""
    if not token:
        return None
    payload = verify_token(token)
    if not payload:
        return None

    role = payload.get("role", CLIENT)
    if role not in ROLES:
        log_security_event("unknown_role", f"role={role!r}")
        return None

    actor_id = coerce_int(payload.get("sub"))
    if actor_id is None:
        log_security_event("token_without_subject", "missing or non-numeric sub claim")
        return None
    return Actor(role=role, id=actor_id)
