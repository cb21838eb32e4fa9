from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

ACCESS_TOKEN_TTL = timedelta(hours=12)
_TOKEN_TYPE = "access"


@dataclass(frozen=True)
class AccessClaims:
    user_id: int
    expires_at: datetime


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
    issued_at: datetime | None = None,
) -> str:
    issued = issued_at or datetime.now(timezone.utc)
    claims = {
        "sub": str(user_id),
        "typ": _TOKEN_TYPE,
        "iat": issued,
        "exp": issued + (expires_delta or ACCESS_TOKEN_TTL),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_access_token(token: str, *, secret: str, algorithms: Sequence[str]) -> AccessClaims:
    """ValueError for anything that is not a live access token for a numeric user."""
    try:
        claims = jwt.decode(token, secret, algorithms=list(algorithms), options={"require": ["sub", "exp"]})
    except InvalidTokenError as exc:
        raise ValueError("invalid token") from exc

    if claims.get("typ", _TOKEN_TYPE) != _TOKEN_TYPE:
        raise ValueError("not an access token")
    sub = str(claims["sub"])
    if not sub.isdigit():
        raise ValueError("token subject is not a user id")
    return AccessClaims(user_id=int(sub), expires_at=datetime.fromtimestamp(claims["exp"], tz=timezone.utc))


def bearer_token(authorization: str | None) -> str | None:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
