import httpx
import pytest
from fakeredis import FakeAsyncRedis

from smartsafe.core.config import Settings
from smartsafe.db.session import build_engine, build_sessionmaker, init_models
from smartsafe.services.actuator import LockActuator
from smartsafe.services.events import BackgroundDispatcher, EventEmitter
from smartsafe.services.faces import FaceMatcher
from smartsafe.services.limits import PinAttemptGuard
from smartsafe.services.store import SafeStore
from smartsafe.services.unlock import UnlockStateMachine

ACTUATOR_URL = "http://esp32.local/servo?angle="
DIMENSIONS = 128


def embedding(*head: float) -> list[float]:
    """A 128-value descriptor starting with `head`, zero padded."""
    return list(head) + [0.0] * (DIMENSIONS - len(head))


@pytest.fixture(scope="session")
def settings() -> Settings:
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        redis_url="redis://localhost:6379/0",
        jwt_secret_key="test-secret-key-with-enough-entropy",
        jwt_algorithm="HS256",
        jwt_issuer="https://issuer.test",
        jwt_audience="smartsafe-api",
        jwt_clock_skew_seconds=30,
        bcrypt_rounds=4,
        actuator_url=ACTUATOR_URL,
        face_stabilization_seconds=0,
    )


@pytest.fixture()
async def redis():
    client = FakeAsyncRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest.fixture()
async def store(settings):
    engine = build_engine(settings)
    await init_models(engine)
    try:
        yield SafeStore(build_sessionmaker(engine))
    finally:
        await engine.dispose()


@pytest.fixture()
async def dispatcher():
    dispatcher = BackgroundDispatcher()
    dispatcher.start()
    try:
        yield dispatcher
    finally:
        await dispatcher.stop()


@pytest.fixture()
def emitter(store, dispatcher):
    return EventEmitter(store, dispatcher)


@pytest.fixture()
def actuator_calls() -> list[str]:
    return []


@pytest.fixture()
async def actuator_client(actuator_calls):
    def handler(request: httpx.Request) -> httpx.Response:
        actuator_calls.append(str(request.url))
        return httpx.Response(200, text="ok")

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        yield client


@pytest.fixture()
def actuator(settings, dispatcher, actuator_client):
    return LockActuator(settings, dispatcher, client=actuator_client)


@pytest.fixture()
def machine(store, emitter, actuator, settings, redis):
    return UnlockStateMachine(
        store,
        FaceMatcher(store, threshold=settings.face_match_threshold),
        emitter,
        actuator,
        settings,
        pin_guard=PinAttemptGuard(redis, limit=settings.pin_attempt_limit, window=settings.pin_attempt_window_seconds),
    )


@pytest.fixture()
def vector():
    return embedding
