from redis.asyncio import ConnectionPool, Redis
from fastapi.requests import HTTPConnection

from smartsafe.core.config import get_settings, Settings
from smartsafe.services.events import EventEmitter
from smartsafe.services.sensors import SensorHub
from smartsafe.services.store import SafeStore
from smartsafe.services.unlock import SessionRegistry

_redis_pool: ConnectionPool | None = None


def get_settings_dep(conn: HTTPConnection) -> Settings:
    return getattr(conn.app.state, "settings", None) or get_settings()


def _ensure_redis_pool(settings: Settings) -> ConnectionPool:
    global _redis_pool
    url = settings.redis_url
    if not url.startswith("rediss://") and settings.environment != "development":
        raise RuntimeError("Redis URL must use TLS (rediss://) for production safety")
    if _redis_pool is None:
        _redis_pool = ConnectionPool.from_url(
            url,
            max_connections=64,
            decode_responses=True,
            socket_timeout=1.0,
            socket_connect_timeout=1.0,
            health_check_interval=30,
        )
    return _redis_pool


def build_redis(settings: Settings) -> Redis:
    return Redis(connection_pool=_ensure_redis_pool(settings))


# Long-lived collaborators are built once in get_application and parked on
# app.state; HTTPConnection resolves for both HTTP routes and websockets.
def get_redis(conn: HTTPConnection) -> Redis:
    return conn.app.state.redis


def get_store(conn: HTTPConnection) -> SafeStore:
    return conn.app.state.store


def get_emitter(conn: HTTPConnection) -> EventEmitter:
    return conn.app.state.emitter


def get_hub(conn: HTTPConnection) -> SensorHub:
    return conn.app.state.hub


def get_registry(conn: HTTPConnection) -> SessionRegistry:
    return conn.app.state.registry
