"""
Voice liveness. The voice factor only checks that somebody spoke during the
recording window (signal energy above a silence floor); it does not compare
the recording with the enrolled phrase.
"""
import base64
import binascii
from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class AudioClip:
    samples: np.ndarray  # float32 in [-1, 1]
    sample_rate: int

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate if self.sample_rate else 0.0

    def window(self, seconds: float) -> "AudioClip":
        """The first `seconds` of the recording."""
        count = int(round(seconds * self.sample_rate))
        return AudioClip(samples=self.samples[:count], sample_rate=self.sample_rate)


def pcm16le_to_float32(data: bytes) -> np.ndarray:
    if len(data) % 2:
        data = data[:-1]
    return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0


def decode_clip(encoded: str | None, sample_rate: int) -> AudioClip | None:
    if not encoded:
        return None
    try:
        raw = base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError("Audio is not valid base64") from exc
    return AudioClip(samples=pcm16le_to_float32(raw), sample_rate=sample_rate)


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


def has_speech(clip: AudioClip | None, threshold: float = 0.01) -> bool:
    if clip is None or clip.samples.size == 0:
        return False
    return rms(clip.samples) > threshold
