from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.requests import HTTPConnection
from redis.asyncio import Redis

from smartsafe.core.config import Settings
from smartsafe.core.deps import get_redis, get_settings_dep
from smartsafe.core.security import verify_token, TokenClaims


def extract_token(conn: HTTPConnection, settings: Settings) -> Optional[str]:
    """Bearer header first, then the session cookie set by /auth/login."""
    authorization = conn.headers.get("authorization")
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1].strip()
    return conn.cookies.get(settings.auth_cookie_name)


def extract_ws_token(conn: HTTPConnection) -> tuple[Optional[str], Optional[str]]:
    """
    Token from `Sec-WebSocket-Protocol: bearer,<JWT>` (browsers cannot set
    headers on a websocket) or a plain Authorization header. Returns the
    token and the subprotocol to echo back on accept.
    """
    proto_header = conn.headers.get("sec-websocket-protocol")
    if proto_header:
        parts = [p.strip() for p in proto_header.split(",") if p.strip()]
        if len(parts) > 1 and parts[0].lower() == "bearer":
            return parts[1], "bearer"
    auth = conn.headers.get("authorization")
    if auth and auth.lower().startswith("bearer "):
        return auth.split(" ", 1)[1].strip(), None
    return None, None


async def check_revoked(redis: Redis, claims: TokenClaims) -> None:
    if claims.jti and await redis.get(f"revoked:jti:{claims.jti}"):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token revoked")


async def get_current_claims(
    conn: HTTPConnection,
    settings: Settings = Depends(get_settings_dep),
    redis: Redis = Depends(get_redis),
) -> TokenClaims:
    token = extract_token(conn, settings)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    claims = verify_token(token, settings)
    await check_revoked(redis, claims)
    return claims


async def require_admin(claims: TokenClaims = Depends(get_current_claims)) -> TokenClaims:
    if not claims.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")
    return claims


def decode_token_raw(token: str, settings: Settings) -> TokenClaims:
    return verify_token(token, settings)
