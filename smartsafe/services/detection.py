import math
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List

from smartsafe.core.config import Settings
from smartsafe.schemas.sensor import SensorSample, Vector3


class Verdict(str, Enum):
    NONE = "none"
    MOVEMENT = "movement"
    THEFT = "theft"
    GHOST = "ghost"


@dataclass
class Classification:
    verdicts: List[Verdict] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def verdict(self) -> Verdict:
        return self.verdicts[0] if self.verdicts else Verdict.NONE

    def __contains__(self, verdict: Verdict) -> bool:
        return verdict in self.verdicts


def magnitude(vec: Vector3) -> float:
    return math.sqrt(vec.x ** 2 + vec.y ** 2 + vec.z ** 2)


class SignalSmoother:
    """Trailing moving average over the accelerometer axes of one channel."""

    def __init__(self, window: int = 5, z_offset: float = 5.0):
        self.window = window
        self.z_offset = z_offset
        self.reset()

    def reset(self) -> None:
        self._x: deque[float] = deque(maxlen=self.window)
        self._y: deque[float] = deque(maxlen=self.window)
        self._z: deque[float] = deque(maxlen=self.window)

    def smooth(self, accel: Vector3) -> Vector3:
        self._x.append(accel.x)
        self._y.append(accel.y)
        self._z.append(accel.z)
        return Vector3(
            x=sum(self._x) / len(self._x),
            y=sum(self._y) / len(self._y),
            z=sum(self._z) / len(self._z) - self.z_offset,
        )


class AnomalyDetector:
    """
    Per-sample classifier. Theft is never debounced; movement shares one
    cooldown window across every channel feeding this detector; ghost mode is
    edge-triggered and re-arms once the device moves again.
    """

    def __init__(self, settings: Settings):
        self.theft_threshold = settings.theft_magnitude_threshold
        self.accel_threshold = settings.movement_accel_threshold
        self.gyro_threshold = settings.movement_gyro_threshold
        self.cooldown_ms = settings.movement_cooldown_ms
        self.ghost_magnitude = settings.ghost_magnitude_threshold
        self.ghost_gyro = settings.ghost_gyro_threshold
        self.last_movement_ms: int | None = None
        self.ghost_latched = False

    def classify(self, raw: SensorSample, smoothed: Vector3, now_ms: int) -> Classification:
        result = Classification()
        accel, gyro = raw.accelerometer, raw.gyroscope
        accel_mag = magnitude(accel)
        result.metadata["smoothed"] = smoothed.model_dump()

        if accel_mag > self.theft_threshold:
            result.verdicts.append(Verdict.THEFT)
            result.metadata["magnitude"] = accel_mag

        exceeded = self._movement_axes(accel, gyro)
        if exceeded and self._movement_ready(now_ms):
            self.last_movement_ms = now_ms
            result.verdicts.append(Verdict.MOVEMENT)
            result.metadata["movement"] = exceeded

        if raw.has_accelerometer and raw.has_gyroscope:
            still = accel_mag < self.ghost_magnitude and all(
                abs(v) < self.ghost_gyro for v in (gyro.x, gyro.y, gyro.z)
            )
            if still and not self.ghost_latched:
                result.verdicts.append(Verdict.GHOST)
            self.ghost_latched = still
        return result

    def _movement_axes(self, accel: Vector3, gyro: Vector3) -> dict[str, float]:
        exceeded: dict[str, float] = {}
        if abs(accel.x) > self.accel_threshold:
            exceeded["accelX"] = accel.x
        if abs(accel.y) > self.accel_threshold:
            exceeded["accelY"] = accel.y
        if abs(gyro.x) > self.gyro_threshold:
            exceeded["gyroX"] = gyro.x
        if abs(gyro.y) > self.gyro_threshold:
            exceeded["gyroY"] = gyro.y
        if abs(gyro.z) > self.gyro_threshold:
            exceeded["gyroZ"] = gyro.z
        return exceeded

    def _movement_ready(self, now_ms: int) -> bool:
        return self.last_movement_ms is None or now_ms - self.last_movement_ms > self.cooldown_ms
