import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from redis.asyncio import Redis

from smartsafe.core.auth import check_revoked, decode_token_raw, extract_ws_token, require_admin
from smartsafe.core.config import Settings
from smartsafe.core.deps import get_hub, get_redis, get_settings_dep
from smartsafe.schemas.sensor import SensorSample
from smartsafe.services.limits import check_rate_limit
from smartsafe.services.sensors import COMBINED, SENSOR_TYPES, SensorHub, parse_frame

logger = logging.getLogger(__name__)

router = APIRouter()


def _origin_allowed(websocket: WebSocket, settings: Settings) -> bool:
    origin = websocket.headers.get("origin")
    return not settings.ws_allowed_origins or origin in [str(o).rstrip("/") for o in settings.ws_allowed_origins]


async def _within_rate_limit(websocket: WebSocket, redis: Redis, settings: Settings, scope: str) -> bool:
    client_ip = websocket.client.host if websocket.client else "unknown"
    return await check_rate_limit(
        redis, f"ws:conn:{scope}:{client_ip}", settings.ws_rate_limit_max, settings.ws_rate_limit_window
    )


@router.websocket("/ingest")
async def ingest(
    websocket: WebSocket,
    device_id: str = Query(default="default", min_length=1, max_length=64),
    sensor_type: str = Query(default=COMBINED, alias="type"),
    hub: SensorHub = Depends(get_hub),
    redis: Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings_dep),
):
    if not _origin_allowed(websocket, settings) or sensor_type not in SENSOR_TYPES:
        await websocket.close(code=1008)
        return
    if settings.sensor_device_key and websocket.headers.get("x-device-key") != settings.sensor_device_key:
        await websocket.close(code=1008)
        return
    if not await _within_rate_limit(websocket, redis, settings, "ingest"):
        await websocket.close(code=1013)  # try again later
        return

    await websocket.accept()
    channel = hub.open_channel(device_id, sensor_type)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                sample = parse_frame(json.loads(raw), sensor_type, hub.clock())
            except ValueError as exc:
                # json.JSONDecodeError and pydantic's ValidationError are both ValueErrors
                logger.warning("Dropped malformed frame from %s: %s", device_id, exc)
                await websocket.send_json({"event": "error", "data": {"detail": "Malformed sensor frame"}})
                continue
            hub.ingest(channel, sample)
    except WebSocketDisconnect:
        pass
    finally:
        hub.close_channel(channel)


@router.websocket("/observe")
async def observe(
    websocket: WebSocket,
    hub: SensorHub = Depends(get_hub),
    redis: Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings_dep),
):
    if not _origin_allowed(websocket, settings):
        await websocket.close(code=1008)
        return

    token, subprotocol = extract_ws_token(websocket)
    if not token:
        await websocket.close(code=1008)  # policy violation
        return
    try:
        claims = decode_token_raw(token, settings)
        await check_revoked(redis, claims)
    except HTTPException:
        await websocket.close(code=1008)
        return
    if not claims.is_admin:
        await websocket.close(code=1008)
        return
    if not await _within_rate_limit(websocket, redis, settings, "observe"):
        await websocket.close(code=1013)
        return

    await websocket.accept(subprotocol=subprotocol)
    observer = hub.add_observer(websocket.send_json)
    logger.info("Observer %s attached", claims.sub)
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.remove_observer(observer)
        logger.info("Observer %s detached", claims.sub)


@router.get("/recent", response_model=list[SensorSample], dependencies=[Depends(require_admin)])
async def recent(limit: int | None = Query(default=None, ge=1), hub: SensorHub = Depends(get_hub)):
    return hub.recent(limit)
