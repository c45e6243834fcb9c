from typing import Optional

from pydantic import BaseModel, Field


class FaceCaptureIn(BaseModel):
    # null when the kiosk camera found no face in the frame
    descriptor: Optional[list[float]] = Field(...)


class PinIn(BaseModel):
    pin: str = Field(..., max_length=32)


class AudioIn(BaseModel):
    """Base64 PCM16 little-endian mono; null when nothing was recorded."""

    pcm16: Optional[str] = Field(...)
    sample_rate: int = Field(default=16000, gt=0, le=192000)


class EnrollStartIn(BaseModel):
    user_id: Optional[str] = Field(default=None, min_length=1, max_length=64)


class EnrollPinIn(BaseModel):
    pin: str = Field(..., max_length=32)
    confirm_pin: str = Field(..., max_length=32)


class EnrollPhraseIn(AudioIn):
    phrase: str = Field(..., min_length=1, max_length=255)


class StepOut(BaseModel):
    session_id: str
    state: str
    message: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
