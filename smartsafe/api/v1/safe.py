from fastapi import APIRouter, Depends, HTTPException, Request, status
from redis.asyncio import Redis

from smartsafe.core.auth import get_current_claims, require_admin
from smartsafe.core.config import Settings
from smartsafe.core.deps import get_redis, get_registry, get_settings_dep, get_store
from smartsafe.schemas.safe import AudioIn, EnrollPhraseIn, EnrollPinIn, EnrollStartIn, FaceCaptureIn, PinIn, StepOut
from smartsafe.services.store import SafeStore
from smartsafe.services.unlock import SessionRegistry, StepResult, UnlockStateMachine, UploadedCapture
from smartsafe.services.voice import AudioClip, decode_clip

router = APIRouter()


def _out(session_id: str, result: StepResult) -> StepOut:
    return StepOut(
        session_id=session_id,
        state=result.state.value,
        message=result.message,
        user_id=result.user_id,
        user_name=result.user_name,
    )


def _machine(session_id: str, registry: SessionRegistry = Depends(get_registry)) -> UnlockStateMachine:
    machine = registry.get(session_id)
    if machine is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown or expired session")
    return machine


def _embedding(payload: FaceCaptureIn, settings: Settings) -> list[float] | None:
    if payload.descriptor is None:
        return None
    if len(payload.descriptor) != settings.face_embedding_dimensions:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Face descriptor must have {settings.face_embedding_dimensions} values",
        )
    return payload.descriptor


def _clip(payload: AudioIn) -> AudioClip | None:
    try:
        return decode_clip(payload.pcm16, payload.sample_rate)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc


@router.post("/sessions", response_model=StepOut, status_code=status.HTTP_201_CREATED)
async def open_session(registry: SessionRegistry = Depends(get_registry)):
    session_id, machine = registry.create()
    return StepOut(session_id=session_id, state=machine.state.value, message="Ready to scan.")


@router.get("/sessions/{session_id}", response_model=StepOut)
async def session_state(session_id: str, machine: UnlockStateMachine = Depends(_machine)):
    return StepOut(
        session_id=session_id,
        state=machine.state.value,
        message="",
        user_id=machine.user_id,
        user_name=machine.user_name,
    )


@router.delete("/sessions/{session_id}")
async def close_session(session_id: str, registry: SessionRegistry = Depends(get_registry)):
    machine = registry.get(session_id)
    if machine is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown or expired session")
    machine.cancel()
    registry.discard(session_id)
    return {"success": True}


@router.post("/sessions/{session_id}/face", response_model=StepOut)
async def scan_face(
    session_id: str,
    payload: FaceCaptureIn,
    machine: UnlockStateMachine = Depends(_machine),
    settings: Settings = Depends(get_settings_dep),
):
    embedding = _embedding(payload, settings)
    result = await machine.scan_face(UploadedCapture(embedding=embedding))
    return _out(session_id, result)


@router.post("/sessions/{session_id}/pin", response_model=StepOut)
async def submit_pin(session_id: str, payload: PinIn, machine: UnlockStateMachine = Depends(_machine)):
    result = await machine.submit_pin(payload.pin)
    return _out(session_id, result)


@router.post("/sessions/{session_id}/voice", response_model=StepOut)
async def verify_voice(session_id: str, payload: AudioIn, machine: UnlockStateMachine = Depends(_machine)):
    result = await machine.verify_voice(UploadedCapture(clip=_clip(payload)))
    return _out(session_id, result)


@router.post("/sessions/{session_id}/lock", response_model=StepOut)
async def lock(session_id: str, machine: UnlockStateMachine = Depends(_machine)):
    result = await machine.lock()
    return _out(session_id, result)


@router.post("/sessions/{session_id}/enroll", response_model=StepOut)
async def begin_enrollment(
    session_id: str,
    request: Request,
    payload: EnrollStartIn | None = None,
    machine: UnlockStateMachine = Depends(_machine),
    store: SafeStore = Depends(get_store),
    settings: Settings = Depends(get_settings_dep),
    redis: Redis = Depends(get_redis),
):
    user_id = payload.user_id if payload else None
    if user_id and await store.get_user(user_id) is not None:
        # replacing an existing user's credentials is an admin action
        await require_admin(await get_current_claims(request, settings, redis))
    result = await machine.begin_enrollment(user_id)
    return _out(session_id, result)


@router.post("/sessions/{session_id}/enroll/face", response_model=StepOut)
async def enroll_face(
    session_id: str,
    payload: FaceCaptureIn,
    machine: UnlockStateMachine = Depends(_machine),
    settings: Settings = Depends(get_settings_dep),
):
    embedding = _embedding(payload, settings)
    result = await machine.enroll_face(UploadedCapture(embedding=embedding))
    return _out(session_id, result)


@router.post("/sessions/{session_id}/enroll/pin", response_model=StepOut)
async def enroll_pin(session_id: str, payload: EnrollPinIn, machine: UnlockStateMachine = Depends(_machine)):
    result = await machine.enroll_pin(payload.pin, payload.confirm_pin)
    return _out(session_id, result)


@router.post("/sessions/{session_id}/enroll/phrase", response_model=StepOut)
async def enroll_phrase(session_id: str, payload: EnrollPhraseIn, machine: UnlockStateMachine = Depends(_machine)):
    result = await machine.enroll_phrase(payload.phrase, UploadedCapture(clip=_clip(payload)))
    return _out(session_id, result)
