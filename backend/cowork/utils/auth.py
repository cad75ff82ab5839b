from datetime import datetime, timedelta, timezone
from typing import Sequence

import jwt
from jwt import InvalidTokenError

ISSUER = "cowork-admin"
STAFF_TOKEN_TTL = timedelta(hours=8)


def bearer_token(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header value."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    return token.strip() or None


def create_access_token(
    *,
    user_id: int,
    secret: str,
    algorithm: str = "HS256",
    expires_delta: timedelta | None = None,
) -> str:
    """Issue a staff token, one shift long unless told otherwise."""
    issued_at = datetime.now(timezone.utc)
    claims = {
        "iss": ISSUER,
        "sub": str(user_id),
        "iat": issued_at,
        "exp": issued_at + (expires_delta or STAFF_TOKEN_TTL),
    }
    return jwt.encode(claims, secret, algorithm=algorithm)


def decode_access_token(
    token: str,
    *,
    secret: str,
    algorithms: Sequence[str],
) -> int:
    """Return the staff user id carried by a valid token, or raise ValueError."""
    try:
        claims = jwt.decode(
            token,
            secret,
            algorithms=list(algorithms),
            issuer=ISSUER,
            options={"require": ["iss", "sub", "exp"]},
        )
    except InvalidTokenError as exc:
        raise ValueError(f"rejected staff token: {exc}") from exc

    staff_id = claims["sub"]
    if not str(staff_id).isdigit():
        raise ValueError("staff token subject is not a user id")
    return int(staff_id)
