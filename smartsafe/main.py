import logging
import secrets
from contextlib import asynccontextmanager

import httpx
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from redis.asyncio import Redis
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from smartsafe.api.v1.router import api_router
from smartsafe.core.config import get_settings, Settings
from smartsafe.core.deps import build_redis
from smartsafe.db.session import build_engine, build_sessionmaker, init_models
from smartsafe.services.actuator import LockActuator
from smartsafe.services.events import BackgroundDispatcher, EventEmitter
from smartsafe.services.faces import FaceMatcher
from smartsafe.services.limits import PinAttemptGuard
from smartsafe.services.sensors import SensorHub
from smartsafe.services.store import SafeStore
from smartsafe.services.unlock import SessionRegistry, UnlockStateMachine

logger = logging.getLogger(__name__)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        response: Response = await call_next(request)
        response.headers.update(
            {
                "X-Content-Type-Options": "nosniff",
                "X-Frame-Options": "DENY",
                "Referrer-Policy": "no-referrer",
                "Cache-Control": "no-store",
            }
        )
        return response


def configure_logging(settings: Settings) -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _with_signing_key(settings: Settings) -> Settings:
    if settings.jwt_secret_key or not settings.jwt_algorithm.startswith("HS"):
        return settings
    if settings.environment != "development":
        raise RuntimeError("JWT_SECRET_KEY missing")
    logger.warning("JWT_SECRET_KEY not set, using a random key; tokens will not survive a restart")
    return settings.model_copy(update={"jwt_secret_key": secrets.token_urlsafe(32)})


def get_application(
    settings: Settings | None = None,
    redis: Redis | None = None,
    actuator_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings)
    settings = _with_signing_key(settings)

    engine = build_engine(settings)
    store = SafeStore(build_sessionmaker(engine))
    redis = redis if redis is not None else build_redis(settings)
    dispatcher = BackgroundDispatcher()
    emitter = EventEmitter(store, dispatcher)
    actuator = LockActuator(settings, dispatcher, client=actuator_client)
    matcher = FaceMatcher(store, threshold=settings.face_match_threshold)
    hub = SensorHub(settings, emitter)

    def new_machine() -> UnlockStateMachine:
        guard = PinAttemptGuard(redis, limit=settings.pin_attempt_limit, window=settings.pin_attempt_window_seconds)
        return UnlockStateMachine(store, matcher, emitter, actuator, settings, pin_guard=guard)

    registry = SessionRegistry(new_machine, idle_seconds=settings.session_idle_seconds)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await init_models(engine)
        dispatcher.start()
        logger.info("%s started (%s)", settings.app_name, settings.environment)
        try:
            yield
        finally:
            await hub.close()
            await dispatcher.stop()
            await redis.aclose()
            await engine.dispose()

    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)
    app.state.settings = settings
    app.state.redis = redis
    app.state.store = store
    app.state.dispatcher = dispatcher
    app.state.emitter = emitter
    app.state.hub = hub
    app.state.registry = registry

    if settings.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[str(origin).rstrip("/") for origin in settings.cors_origins],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    app.add_middleware(SecurityHeadersMiddleware)
    app.include_router(api_router)

    @app.get("/health", tags=["health"])
    async def health():
        return {"status": "ok", "observers": len(hub.observers), "sessions": len(registry)}

    return app


def run() -> None:
    settings = get_settings()
    uvicorn.run(
        "smartsafe.main:get_application",
        factory=True,
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
