import asyncio
import logging
import time
from collections import deque
from typing import Any, Awaitable, Callable, Set

from smartsafe.core.config import Settings
from smartsafe.schemas.sensor import (
    ZERO,
    AndroidSensorFrame,
    GhostModeAlert,
    SensorFrame,
    SensorSample,
    TheftAlert,
    Vector3,
)
from smartsafe.services.detection import AnomalyDetector, Classification, SignalSmoother, Verdict
from smartsafe.services.events import EventEmitter

logger = logging.getLogger(__name__)

COMBINED = "combined"
ANDROID_ACCELEROMETER = "android.sensor.accelerometer"
ANDROID_GYROSCOPE = "android.sensor.gyroscope"
SENSOR_TYPES = (COMBINED, ANDROID_ACCELEROMETER, ANDROID_GYROSCOPE)

Send = Callable[[dict[str, Any]], Awaitable[None]]


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_frame(payload: Any, sensor_type: str, received_ms: int) -> SensorSample:
    """
    Turn one inbound frame into a sample. Missing axis groups are zero-filled
    and flagged so the detector can tell them apart from a real zero reading.
    Raises ValueError (pydantic's ValidationError included) on a bad frame.
    """
    if not isinstance(payload, dict):
        raise ValueError("Sensor frame must be a JSON object")

    if sensor_type == COMBINED:
        frame = SensorFrame.model_validate(payload)
        return SensorSample(
            accelerometer=frame.accelerometer.to_vector(),
            gyroscope=frame.gyroscope.to_vector() if frame.gyroscope is not None else ZERO,
            timestamp=frame.timestamp if frame.timestamp is not None else received_ms,
            has_gyroscope=frame.gyroscope is not None,
        )

    if sensor_type in (ANDROID_ACCELEROMETER, ANDROID_GYROSCOPE):
        frame = AndroidSensorFrame.model_validate(payload)
        vec = Vector3(x=frame.values[0], y=frame.values[1], z=frame.values[2])
        is_accel = sensor_type == ANDROID_ACCELEROMETER
        return SensorSample(
            accelerometer=vec if is_accel else ZERO,
            gyroscope=ZERO if is_accel else vec,
            timestamp=frame.timestamp if frame.timestamp is not None else received_ms,
            has_accelerometer=is_accel,
            has_gyroscope=not is_accel,
        )

    raise ValueError(f"Unsupported sensor type {sensor_type}")


class DeviceContext:
    """Detector state shared by every channel of one physical device."""

    def __init__(self, device_id: str, settings: Settings):
        self.device_id = device_id
        self.detector = AnomalyDetector(settings)
        self.channels = 0


class SensorChannel:
    def __init__(self, device: DeviceContext, sensor_type: str, settings: Settings):
        self.device = device
        self.sensor_type = sensor_type
        self.smoother = SignalSmoother(window=settings.smoothing_window, z_offset=settings.z_calibration_offset)
        self.accepted = 0

    @property
    def device_id(self) -> str:
        return self.device.device_id


class Observer:
    """
    One dashboard connection. Frames queue here and a dedicated task sends
    them; once the queue is full the oldest frame is discarded.
    """

    def __init__(self, send: Send, maxsize: int = 256):
        self.send = send
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0
        self.task: asyncio.Task | None = None

    def offer(self, frame: dict[str, Any]) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.queue.task_done()
            self.dropped += 1
        self.queue.put_nowait(frame)

    async def run(self) -> None:
        while True:
            frame = await self.queue.get()
            try:
                await self.send(frame)
            finally:
                self.queue.task_done()


class SensorHub:
    def __init__(self, settings: Settings, emitter: EventEmitter, clock: Callable[[], int] = now_ms):
        self.settings = settings
        self.emitter = emitter
        self.clock = clock
        self.observers: Set[Observer] = set()
        self.devices: dict[str, DeviceContext] = {}
        self.history: deque[SensorSample] = deque(maxlen=settings.sample_history_size)

    # Producers
    def open_channel(self, device_id: str, sensor_type: str = COMBINED) -> SensorChannel:
        if sensor_type not in SENSOR_TYPES:
            raise ValueError(f"Unsupported sensor type {sensor_type}")
        device = self.devices.get(device_id)
        if device is None:
            device = self.devices[device_id] = DeviceContext(device_id, self.settings)
        device.channels += 1
        logger.info("Sensor channel opened for %s (%s)", device_id, sensor_type)
        return SensorChannel(device, sensor_type, self.settings)

    def close_channel(self, channel: SensorChannel) -> None:
        device = channel.device
        device.channels -= 1
        if device.channels <= 0:
            self.devices.pop(device.device_id, None)
        logger.info("Sensor channel closed for %s after %d samples", device.device_id, channel.accepted)

    def ingest(self, channel: SensorChannel, sample: SensorSample) -> Classification:
        channel.accepted += 1
        self.history.append(sample)
        self.broadcast("sensor-data", sample.model_dump())

        smoothed = channel.smoother.smooth(sample.accelerometer)
        now = self.clock()
        result = channel.device.detector.classify(sample, smoothed, now)

        if Verdict.THEFT in result:
            magnitude = result.metadata["magnitude"]
            logger.warning("Theft detected on %s, magnitude %.2f", channel.device_id, magnitude)
            self.broadcast("theft-alert", TheftAlert(magnitude=magnitude, timestamp=now).model_dump())
            self.emitter.emit("theft_detected", metadata={"magnitude": magnitude})
        if Verdict.MOVEMENT in result:
            self.emitter.emit("movement_detected", metadata=result.metadata["movement"])
        if Verdict.GHOST in result:
            logger.warning("Ghost mode on %s", channel.device_id)
            self.broadcast("ghost-mode-alert", GhostModeAlert(timestamp=now).model_dump())
            self.emitter.emit("ghost_mode", metadata={"deviceId": channel.device_id})
        return result

    # Observers
    def add_observer(self, send: Send) -> Observer:
        observer = Observer(send, maxsize=self.settings.observer_queue_size)
        observer.task = asyncio.create_task(self._pump(observer))
        self.observers.add(observer)
        return observer

    async def remove_observer(self, observer: Observer) -> None:
        self.observers.discard(observer)
        if observer.task is not None and not observer.task.done():
            observer.task.cancel()
            try:
                await observer.task
            except asyncio.CancelledError:
                pass
        if observer.dropped:
            logger.info("Observer removed, %d frames were dropped", observer.dropped)

    def broadcast(self, event: str, data: dict[str, Any]) -> None:
        frame = {"event": event, "data": data}
        for observer in list(self.observers):
            observer.offer(frame)

    def recent(self, limit: int | None = None) -> list[SensorSample]:
        samples = list(self.history)
        return samples[-limit:] if limit else samples

    async def close(self) -> None:
        for observer in list(self.observers):
            await self.remove_observer(observer)

    async def _pump(self, observer: Observer) -> None:
        try:
            await observer.run()
        except asyncio.CancelledError:
            raise
        except Exception:
            # a dead socket only takes its own observer down
            logger.info("Observer send failed, detaching", exc_info=True)
            self.observers.discard(observer)
