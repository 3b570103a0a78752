import time
from typing import Optional

import jwt

from .config import get_settings
from .models import Role
from .schemas import Actor

ALGORITHM = "HS256"
EXP_SECONDS = 60 * 60 * 24  # 1 day


def create_access_token(user_id: int, role: str, expires_delta: Optional[int] = None) -> str:
    # issuance lives in the auth service; this is for tests and local tooling
    now = int(time.time())
    exp = now + (expires_delta or EXP_SECONDS)
    payload = {"sub": str(user_id), "role": Role(role).value, "iat": now, "exp": exp}
    return jwt.encode(payload, get_settings().jwt_secret, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    return jwt.decode(token, get_settings().jwt_secret, algorithms=[ALGORITHM])


def actor_from_token(token: str) -> Actor:
    """Verified identity from a bearer token; raises ``jwt.PyJWTError`` if unusable."""
    payload = decode_access_token(token)
    try:
        return Actor(user_id=int(payload["sub"]), role=payload["role"])
    except (KeyError, ValueError) as e:
        raise jwt.InvalidTokenError("token is missing a subject or role") from e
