from pydantic import BaseModel, ConfigDict, Field
from typing import Optional


class Vector3(BaseModel):
    model_config = ConfigDict(frozen=True)

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def is_zero(self) -> bool:
        return self.x == 0 and self.y == 0 and self.z == 0


ZERO = Vector3()


class Vector3In(BaseModel):
    """Inbound axis group; every axis must be present."""

    x: float
    y: float
    z: float

    def to_vector(self) -> Vector3:
        return Vector3(x=self.x, y=self.y, z=self.z)


class SensorFrame(BaseModel):
    """Combined frame sent by the safe's motion client."""

    accelerometer: Vector3In
    # only the whole group may be left out
    gyroscope: Optional[Vector3In] = None
    timestamp: Optional[int] = None


class AndroidSensorFrame(BaseModel):
    """Single-sensor frame from the Android "Sensor Server" app."""

    values: list[float] = Field(..., min_length=3)
    timestamp: Optional[int] = None


class SensorSample(BaseModel):
    model_config = ConfigDict(frozen=True)

    accelerometer: Vector3
    gyroscope: Vector3
    timestamp: int
    # False when the ingestion boundary zero-filled the group
    has_accelerometer: bool = Field(default=True, exclude=True)
    has_gyroscope: bool = Field(default=True, exclude=True)


class TheftAlert(BaseModel):
    magnitude: float
    timestamp: int


class GhostModeAlert(BaseModel):
    timestamp: int
