import base64
import time

import httpx
import numpy as np
import pytest
from fakeredis import FakeAsyncRedis
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from smartsafe.main import get_application

ADMIN = {"name": "Admin", "email": "admin@example.com", "password": "correct horse"}


def _speech(seconds: float = 3.0, rate: int = 16000) -> str:
    samples = np.full(int(seconds * rate), 8000, dtype="<i2")
    return base64.b64encode(samples.tobytes()).decode()


@pytest.fixture()
def calls():
    return []


@pytest.fixture()
def client(settings, calls):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(str(request.url))
        return httpx.Response(200)

    app = get_application(
        settings=settings,
        redis=FakeAsyncRedis(decode_responses=True),
        actuator_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture()
def admin_token(client):
    assert client.post("/v1/admin/init", json=ADMIN).status_code == 201
    resp = client.post("/v1/auth/login", json={"email": ADMIN["email"], "password": ADMIN["password"]})
    assert resp.status_code == 200
    return resp.json()["access_token"]


def _auth(token):
    return {"Authorization": f"Bearer {token}"}


def _wait_for_events(client, token, count, attempts=50):
    for _ in range(attempts):
        events = client.get("/v1/events", headers=_auth(token)).json()["events"]
        if len(events) >= count:
            return events
        time.sleep(0.02)
    raise AssertionError(f"expected {count} events, got {events}")


def test_admin_init_and_login(client, admin_token):
    assert client.post("/v1/admin/init", json=ADMIN).status_code == 400
    second = {"name": "Mallory", "email": "mallory@example.com", "password": "letmein"}
    assert client.post("/v1/admin/init", json=second).status_code == 400
    assert client.post("/v1/auth/login", json={"email": second["email"], "password": "letmein"}).status_code == 401
    me = client.get("/v1/users", headers=_auth(admin_token)).json()["users"]
    assert [u["email"] for u in me] == [ADMIN["email"]]
    assert "password_hash" not in me[0]

    bad = client.post("/v1/auth/login", json={"email": ADMIN["email"], "password": "nope"})
    assert bad.status_code == 401


def test_login_sets_cookie_and_logout_revokes(client, admin_token):
    assert client.cookies.get("auth-token") == admin_token
    assert client.get("/v1/events").status_code == 200

    assert client.post("/v1/auth/logout", headers=_auth(admin_token)).status_code == 200
    assert client.get("/v1/events", headers=_auth(admin_token)).status_code == 401


def test_admin_routes_require_token(client):
    assert client.get("/v1/users").status_code == 401
    assert client.get("/v1/events").status_code == 401
    assert client.get("/v1/sensors/recent").status_code == 401


def test_user_crud(client, admin_token):
    created = client.post(
        "/v1/users",
        json={"name": "Eve", "email": "eve@example.com", "password": "pw"},
        headers=_auth(admin_token),
    )
    assert created.status_code == 201
    user_id = created.json()["id"]

    patched = client.patch(f"/v1/users/{user_id}", json={"name": "Evelyn"}, headers=_auth(admin_token))
    assert patched.json()["name"] == "Evelyn"

    assert client.delete(f"/v1/users/{user_id}", headers=_auth(admin_token)).status_code == 200
    assert client.delete(f"/v1/users/{user_id}", headers=_auth(admin_token)).status_code == 404

    user_token = client.post("/v1/auth/login", json={"email": "eve@example.com", "password": "pw"})
    assert user_token.status_code == 401


def test_enroll_then_unlock_over_http(client, admin_token, calls, vector):
    sid = client.post("/v1/safe/sessions").json()["session_id"]
    base = f"/v1/safe/sessions/{sid}"

    step = client.post(f"{base}/enroll", json={"user_id": "frank"}).json()
    assert step["state"] == "enrolling_face"
    assert client.post(f"{base}/enroll/face", json={"descriptor": vector(0.0)}).json()["state"] == "enrolling_pin"
    assert client.post(f"{base}/enroll/pin", json={"pin": "2468", "confirm_pin": "2468"}).json()["state"] == (
        "enrolling_phrase"
    )
    done = client.post(f"{base}/enroll/phrase", json={"phrase": "let me in", "pcm16": _speech()}).json()
    assert done["state"] == "locked"

    assert client.post(f"{base}/face", json={"descriptor": vector(0.05)}).json()["state"] == "awaiting_pin"
    assert client.post(f"{base}/pin", json={"pin": "2468"}).json()["state"] == "verifying_voice"
    unlocked = client.post(f"{base}/voice", json={"pcm16": _speech()}).json()
    assert unlocked["state"] == "unlocked"
    assert unlocked["user_id"] == "frank"

    events = _wait_for_events(client, admin_token, 3)
    assert [e["type"] for e in events] == ["unlock", "setup", "setup"]
    assert events[0]["metadata"] == {"verified": "face+pin+voice"}

    assert client.post(f"{base}/lock").json()["state"] == "locked"
    _wait_for_events(client, admin_token, 4)
    url = client.app.state.settings.actuator_url
    assert calls[-2:] == [f"{url}90", f"{url}-90"]


def test_safe_input_errors(client, vector):
    sid = client.post("/v1/safe/sessions").json()["session_id"]
    base = f"/v1/safe/sessions/{sid}"

    assert client.post(f"{base}/face", json={"descriptor": [0.1, 0.2]}).status_code == 400
    assert client.post(f"{base}/face", json={}).status_code == 422
    assert client.post(f"{base}/pin", json={"pin": "1234"}).status_code == 409
    assert client.get(base).json()["state"] == "locked"

    assert client.post("/v1/safe/sessions/nope/face", json={"descriptor": None}).status_code == 404
    assert client.delete(base).status_code == 200
    assert client.get(base).status_code == 404


def test_sensor_websockets(client, admin_token):
    with client.websocket_connect("/v1/sensors/observe", subprotocols=["bearer", admin_token]) as observer:
        with client.websocket_connect("/v1/sensors/ingest?device_id=safe-1") as device:
            device.send_text("not json")
            assert device.receive_json()["event"] == "error"

            device.send_json({"accelerometer": {"x": 40, "y": 30, "z": 10}, "timestamp": 5})
            first = observer.receive_json()
            assert first["event"] == "sensor-data"
            assert first["data"]["timestamp"] == 5
            alert = observer.receive_json()
            assert alert["event"] == "theft-alert"
            assert alert["data"]["magnitude"] == pytest.approx(51.0)

    recent = client.get("/v1/sensors/recent", headers=_auth(admin_token)).json()
    assert [s["timestamp"] for s in recent] == [5]
    types = {e["type"] for e in _wait_for_events(client, admin_token, 2)}
    assert types == {"theft_detected", "movement_detected"}


def test_observe_requires_admin_token(client):
    with pytest.raises(WebSocketDisconnect):
        with client.websocket_connect("/v1/sensors/observe") as ws:
            ws.receive_json()


def test_reenrolling_existing_user_needs_admin(client, admin_token, vector):
    sid = client.post("/v1/safe/sessions").json()["session_id"]
    base = f"/v1/safe/sessions/{sid}"
    assert client.post(f"{base}/enroll", json={"user_id": "gina"}).json()["state"] == "enrolling_face"
    assert client.post(f"{base}/enroll/face", json={"descriptor": vector(0.4)}).status_code == 200
    client.post(f"{base}/lock")

    client.cookies.clear()
    assert client.post(f"{base}/enroll", json={"user_id": "gina"}).status_code == 401
    assert client.get(base).json()["state"] == "locked"

    step = client.post(f"{base}/enroll", json={"user_id": "gina"}, headers=_auth(admin_token))
    assert step.status_code == 200
    assert step.json()["state"] == "enrolling_face"
