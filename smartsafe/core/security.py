import asyncio
import datetime as dt
import uuid
from typing import Optional, Any

import bcrypt
from fastapi import HTTPException, status
from jose import jwt, JWTError
from pydantic import BaseModel, ValidationError

from smartsafe.core.config import Settings


class TokenClaims(BaseModel):
    sub: str
    email: str
    is_admin: bool = False
    exp: int
    typ: str
    jti: str | None = None
    aud: str | list[str] | None = None
    iss: str | None = None
    nbf: int | None = None
    iat: int | None = None


def _verification_key(settings: Settings) -> str:
    if settings.jwt_public_key and not settings.jwt_algorithm.startswith("HS"):
        return settings.jwt_public_key
    if settings.jwt_secret_key and settings.jwt_algorithm.startswith("HS"):
        return settings.jwt_secret_key
    raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="No verification key available")


def _get_leeway(settings: Settings) -> int:
    return max(0, settings.jwt_clock_skew_seconds)


def verify_token(token: str, settings: Settings, expected_typ: str = "access") -> TokenClaims:
    """
    Verify a signed token; enforces aud/iss when configured, nbf/iat skew and typ.
    """
    options = {
        "verify_aud": settings.jwt_audience is not None,
        "verify_iss": settings.jwt_issuer is not None,
        "leeway": _get_leeway(settings),
    }
    try:
        payload = jwt.decode(
            token,
            _verification_key(settings),
            algorithms=[settings.jwt_algorithm],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
        claims = TokenClaims(**payload)
    except (JWTError, ValidationError) as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token verification failed") from exc

    if claims.typ != expected_typ:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unexpected token type")

    now_ts = int(dt.datetime.now(dt.timezone.utc).timestamp())
    leeway = _get_leeway(settings)
    if claims.nbf and claims.nbf - leeway > now_ts:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token not yet valid")
    if claims.iat and claims.iat - leeway > now_ts:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token issued in the future")

    return claims


def _sign_payload(payload: dict[str, Any], settings: Settings) -> str:
    if settings.jwt_private_key and not settings.jwt_algorithm.startswith("HS"):
        return jwt.encode(payload, settings.jwt_private_key, algorithm=settings.jwt_algorithm)
    if settings.jwt_secret_key and settings.jwt_algorithm.startswith("HS"):
        return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)
    raise RuntimeError("No signing key configured")


def create_access_token(
    user_id: str,
    email: str,
    is_admin: bool,
    settings: Settings,
) -> str:
    now = dt.datetime.now(dt.timezone.utc)
    expire = now + dt.timedelta(minutes=settings.jwt_expire_minutes)
    payload = {
        "sub": user_id,
        "email": email,
        "is_admin": is_admin,
        "exp": int(expire.timestamp()),
        "nbf": int(now.timestamp()),
        "iat": int(now.timestamp()),
        "typ": "access",
        "jti": str(uuid.uuid4()),
    }
    if settings.jwt_audience:
        payload["aud"] = settings.jwt_audience
    if settings.jwt_issuer:
        payload["iss"] = settings.jwt_issuer
    return _sign_payload(payload, settings)


def _hash(secret: str, rounds: int) -> str:
    return bcrypt.hashpw(secret.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def _check(secret: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(secret.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # malformed stored hash
        return False


async def hash_secret(secret: str, settings: Settings) -> str:
    """bcrypt is deliberately slow; keep it off the event loop."""
    return await asyncio.to_thread(_hash, secret, settings.bcrypt_rounds)


async def verify_secret(secret: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    return await asyncio.to_thread(_check, secret, hashed)
