import datetime as dt
import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status
from redis.asyncio import Redis

from smartsafe.core.auth import get_current_claims
from smartsafe.core.config import Settings
from smartsafe.core.deps import get_redis, get_settings_dep, get_store
from smartsafe.core.security import TokenClaims, create_access_token, verify_secret
from smartsafe.schemas.user import LoginIn, TokenOut, UserOut
from smartsafe.services.limits import check_rate_limit
from smartsafe.services.store import SafeStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/login", response_model=TokenOut)
async def login(
    payload: LoginIn,
    response: Response,
    store: SafeStore = Depends(get_store),
    redis: Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings_dep),
):
    if not await check_rate_limit(redis, f"login_attempts:{payload.email}", limit=10, window=300):
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many login attempts")

    user = await store.get_user_by_email(payload.email)
    if user is None or not await verify_secret(payload.password, user.password_hash):
        logger.warning("Failed login for %s", payload.email)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    token = create_access_token(user.id, user.email, user.is_admin, settings)
    response.set_cookie(
        settings.auth_cookie_name,
        token,
        max_age=settings.jwt_expire_minutes * 60,
        httponly=True,
        secure=settings.environment != "development",
        samesite="lax",
    )
    return TokenOut(access_token=token, user=UserOut.from_user(user))


@router.post("/logout")
async def logout(
    response: Response,
    claims: TokenClaims = Depends(get_current_claims),
    redis: Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings_dep),
):
    if claims.jti:
        ttl = claims.exp - int(dt.datetime.now(dt.timezone.utc).timestamp())
        await redis.set(f"revoked:jti:{claims.jti}", "1", ex=max(ttl, 1))
    response.delete_cookie(settings.auth_cookie_name)
    return {"detail": "Logged out"}
