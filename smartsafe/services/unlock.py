import asyncio
import functools
import logging
import secrets
import time
import uuid
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol, Sequence

from fastapi import HTTPException, status

from smartsafe.core.config import Settings
from smartsafe.core.security import hash_secret, verify_secret
from smartsafe.services.actuator import LockActuator
from smartsafe.services.events import EventEmitter
from smartsafe.services.faces import EmbeddingLengthError, FaceMatcher
from smartsafe.services.limits import PinAttemptGuard
from smartsafe.services.store import SafeStore
from smartsafe.services.voice import AudioClip, has_speech

logger = logging.getLogger(__name__)


class SafeState(str, Enum):
    LOCKED = "locked"
    SCANNING = "scanning"
    AWAITING_PIN = "awaiting_pin"
    VERIFYING_VOICE = "verifying_voice"
    UNLOCKED = "unlocked"
    ENROLLING_FACE = "enrolling_face"
    ENROLLING_PIN = "enrolling_pin"
    ENROLLING_PHRASE = "enrolling_phrase"


class CaptureSource(Protocol):
    async def capture_embedding(self) -> Sequence[float] | None: ...

    async def record_audio(self, seconds: float) -> AudioClip | None: ...


class UploadedCapture:
    """Capture already performed by the kiosk and uploaded with the request."""

    def __init__(self, embedding: Sequence[float] | None = None, clip: AudioClip | None = None):
        self.embedding = embedding
        self.clip = clip

    async def capture_embedding(self) -> Sequence[float] | None:
        return self.embedding

    async def record_audio(self, seconds: float) -> AudioClip | None:
        if self.clip is None:
            return None
        return self.clip.window(seconds)


@dataclass
class StepResult:
    state: SafeState
    message: str
    ok: bool = True
    user_id: str | None = None
    user_name: str | None = None


def mint_user_id() -> str:
    return f"user-{uuid.uuid4().hex[:12]}"


def serialized_step(method):
    """
    Run a step under the machine's lock. An unexpected error from a
    collaborator drops the machine back to LOCKED before propagating;
    HTTPExceptions are input errors and leave the state alone.
    """

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        async with self._step_lock:
            try:
                return await method(self, *args, **kwargs)
            except HTTPException:
                raise
            except Exception:
                logger.exception("Unlock step %s failed in %s", method.__name__, self.state.value)
                self._reset()
                raise

    return wrapper


class UnlockStateMachine:
    """
    One kiosk's face -> PIN -> voice challenge and its enrollment flow.

    Any failure or stage timeout drops back to LOCKED and forgets the
    recognized identity. The actuator is only ever told to open from the
    successful end of `verify_voice`.
    """

    def __init__(
        self,
        store: SafeStore,
        matcher: FaceMatcher,
        emitter: EventEmitter,
        actuator: LockActuator,
        settings: Settings,
        pin_guard: PinAttemptGuard | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.store = store
        self.matcher = matcher
        self.emitter = emitter
        self.actuator = actuator
        self.settings = settings
        self.pin_guard = pin_guard
        self.clock = clock

        self.state = SafeState.LOCKED
        self.user_id: str | None = None
        self.user_name: str | None = None
        self.stage_started_at: float | None = None
        self.stage_deadline: float | None = None
        self.unlocked_by: str | None = None
        self._step_lock = asyncio.Lock()

    # Unlock flow
    @serialized_step
    async def scan_face(self, source: CaptureSource) -> StepResult:
        self._drop_expired_stage()
        self._require(SafeState.LOCKED, action="scan a face")
        self._enter(SafeState.SCANNING)
        if self.settings.face_stabilization_seconds > 0:
            await asyncio.sleep(self.settings.face_stabilization_seconds)

        embedding = await source.capture_embedding()
        if not embedding:
            return self._fail("No face detected. Please position your face in the camera.")

        try:
            match = await self.matcher.match(embedding)
        except EmbeddingLengthError:
            logger.exception("Stored face template does not match the capture dimension")
            return self._fail("Error during unlock process.")

        if match is None:
            self.emitter.emit("unauthorized_face", metadata={"reason": "No matching face found"})
            return self._fail("Face not recognized. Access denied.")

        user = await self.store.get_user(match.user_id)
        self.user_id = match.user_id
        self.user_name = user.name if user else None
        self._enter(SafeState.AWAITING_PIN, timeout=self.settings.pin_stage_timeout_seconds)
        logger.info("Face matched user %s (distance %.3f)", match.user_id, match.distance)
        return self._ok("Face recognized. Please enter your PIN below.")

    @serialized_step
    async def submit_pin(self, pin: str) -> StepResult:
        self._require(SafeState.AWAITING_PIN, action="submit a PIN")
        if self._expired():
            return self._fail("Session expired. Please start again.")
        self._validate_pin(pin, "Please enter a valid PIN (at least {n} digits).")

        user_id, user_name = self.user_id, self.user_name
        if self.pin_guard is not None and not await self.pin_guard.allow(user_id):
            self.emitter.emit(
                "unauthorized_face", user_id=user_id, user_name=user_name, metadata={"reason": "Too many PIN attempts"}
            )
            self._reset()
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Too many PIN attempts")

        user = await self.store.get_user(user_id)
        reason = None
        if user is None:
            reason = "User not found"
        elif not user.pin_hash:
            reason = "PIN not set"
        elif not await verify_secret(pin, user.pin_hash):
            reason = "Invalid PIN"
        if reason:
            logger.warning("PIN rejected for user %s: %s", user_id, reason)
            self.emitter.emit("unauthorized_face", user_id=user_id, user_name=user_name, metadata={"reason": reason})
            return self._fail(f"{reason}. Access denied.")

        if self.pin_guard is not None:
            await self.pin_guard.clear(user_id)
        self._enter(SafeState.VERIFYING_VOICE, timeout=self.settings.voice_stage_timeout_seconds)
        return self._ok("PIN verified. Please speak your phrase now.")

    @serialized_step
    async def verify_voice(self, source: CaptureSource) -> StepResult:
        self._require(SafeState.VERIFYING_VOICE, action="verify voice")
        if self._expired():
            return self._fail("Session expired. Please start again.")

        clip = await source.record_audio(self.settings.voice_unlock_window_seconds)
        if not has_speech(clip, self.settings.voice_rms_threshold):
            return self._fail("No audio detected. Please speak your phrase.")

        user_id, user_name = self.user_id, self.user_name
        self.emitter.emit("unlock", user_id=user_id, user_name=user_name, metadata={"verified": "face+pin+voice"})
        self.actuator.open()
        self._reset(SafeState.UNLOCKED)
        self.unlocked_by = user_id
        logger.info("Safe unlocked by %s", user_id)
        return StepResult(state=self.state, message="Safe unlocked", user_id=user_id, user_name=user_name)

    @serialized_step
    async def lock(self) -> StepResult:
        user_id = self.unlocked_by
        self.actuator.close()
        self.emitter.emit("lock", user_id=user_id)
        self._reset()
        self.unlocked_by = None
        return self._ok("Safe locked")

    def cancel(self) -> StepResult:
        self._reset()
        return self._ok("Cancelled")

    # Enrollment flow
    @serialized_step
    async def begin_enrollment(self, user_id: str | None = None) -> StepResult:
        self._drop_expired_stage()
        self._require(SafeState.LOCKED, action="start setup")
        self._enter(SafeState.ENROLLING_FACE)
        self.user_id = user_id or mint_user_id()
        user = await self.store.get_user(self.user_id)
        self.user_name = user.name if user else None
        return self._ok("Setup: Capture your face")

    @serialized_step
    async def enroll_face(self, source: CaptureSource) -> StepResult:
        self._require(SafeState.ENROLLING_FACE, action="register a face")
        embedding = await source.capture_embedding()
        if not embedding:
            return self._ok("No face detected. Please position your face in the camera.", ok=False)
        user = await self.store.upsert_credentials(self.user_id, embedding=embedding)
        self.user_name = user.name
        self._enter(SafeState.ENROLLING_PIN)
        return self._ok("Face registered. Now set your PIN.")

    @serialized_step
    async def enroll_pin(self, pin: str, confirm_pin: str) -> StepResult:
        self._require(SafeState.ENROLLING_PIN, action="set a PIN")
        self._validate_pin(pin, "PIN must be at least {n} digits.")
        if not secrets.compare_digest(pin, confirm_pin):
            return self._ok("PINs do not match. Please try again.", ok=False)
        pin_hash = await hash_secret(pin, self.settings)
        user = await self.store.upsert_credentials(self.user_id, pin_hash=pin_hash)
        self.user_name = user.name
        self.emitter.emit(
            "setup", user_id=self.user_id, user_name=user.name, metadata={"hasPin": True, "hasVoicePhrase": False}
        )
        self._enter(SafeState.ENROLLING_PHRASE)
        return self._ok("PIN set. Now record your phrase.")

    @serialized_step
    async def enroll_phrase(self, phrase: str, source: CaptureSource) -> StepResult:
        self._require(SafeState.ENROLLING_PHRASE, action="record a phrase")
        clip = await source.record_audio(self.settings.voice_enrollment_window_seconds)
        if not has_speech(clip, self.settings.voice_rms_threshold):
            return self._ok("No audio detected. Please speak your phrase.", ok=False)
        user = await self.store.upsert_credentials(self.user_id, voice_phrase=phrase)
        self.emitter.emit(
            "setup", user_id=self.user_id, user_name=user.name, metadata={"hasPin": False, "hasVoicePhrase": True}
        )
        result = StepResult(
            state=SafeState.LOCKED,
            message="Setup complete! You can now unlock the safe.",
            user_id=self.user_id,
            user_name=user.name,
        )
        self._reset()
        return result

    # Internals
    def _require(self, expected: SafeState, action: str) -> None:
        if self.state != expected:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail=f"Cannot {action} while {self.state.value}",
            )

    def _validate_pin(self, pin: str, message: str) -> None:
        n = self.settings.pin_min_length
        if not pin or len(pin) < n or not pin.isdigit():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=message.format(n=n))

    def _enter(self, state: SafeState, timeout: float | None = None) -> None:
        now = self.clock()
        self.state = state
        self.stage_started_at = now
        self.stage_deadline = now + timeout if timeout else None

    def _expired(self) -> bool:
        return self.stage_deadline is not None and self.clock() > self.stage_deadline

    def _drop_expired_stage(self) -> None:
        # an abandoned challenge must not block the next attempt
        if self._expired():
            self._reset()

    def _reset(self, state: SafeState = SafeState.LOCKED) -> None:
        self.state = state
        self.user_id = None
        self.user_name = None
        self.stage_started_at = None
        self.stage_deadline = None

    def _ok(self, message: str, ok: bool = True) -> StepResult:
        return StepResult(state=self.state, message=message, ok=ok, user_id=self.user_id, user_name=self.user_name)

    def _fail(self, message: str) -> StepResult:
        logger.info("Unlock attempt failed in %s: %s", self.state.value, message)
        self._reset()
        return StepResult(state=self.state, message=message, ok=False)


class SessionRegistry:
    """In-memory unlock sessions keyed by the id handed to each kiosk."""

    def __init__(
        self,
        factory: Callable[[], UnlockStateMachine],
        idle_seconds: float = 300.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.factory = factory
        self.idle_seconds = idle_seconds
        self.clock = clock
        self._sessions: dict[str, tuple[UnlockStateMachine, float]] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def create(self) -> tuple[str, UnlockStateMachine]:
        self.reap()
        session_id = secrets.token_urlsafe(16)
        machine = self.factory()
        self._sessions[session_id] = (machine, self.clock())
        return session_id, machine

    def get(self, session_id: str) -> UnlockStateMachine | None:
        self.reap()
        entry = self._sessions.get(session_id)
        if entry is None:
            return None
        machine, _ = entry
        self._sessions[session_id] = (machine, self.clock())
        return machine

    def discard(self, session_id: str) -> bool:
        return self._sessions.pop(session_id, None) is not None

    def reap(self) -> int:
        cutoff = self.clock() - self.idle_seconds
        stale = [sid for sid, (_, seen) in self._sessions.items() if seen < cutoff]
        for sid in stale:
            del self._sessions[sid]
        if stale:
            logger.info("Reaped %d idle unlock sessions", len(stale))
        return len(stale)
