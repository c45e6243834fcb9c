from fastapi import APIRouter, Depends, Query, status

from smartsafe.core.auth import require_admin
from smartsafe.core.deps import get_store
from smartsafe.schemas.event import EventIn, EventList, EventOut
from smartsafe.services.store import SafeStore

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("", response_model=EventList)
async def list_events(
    limit: int | None = Query(default=None, ge=1, le=1000),
    store: SafeStore = Depends(get_store),
):
    events = await store.list_events(limit)
    return EventList(events=[EventOut.model_validate(e) for e in events])


@router.post("", response_model=EventOut, status_code=status.HTTP_201_CREATED)
async def create_event(payload: EventIn, store: SafeStore = Depends(get_store)):
    event = await store.append_event(
        payload.type, user_id=payload.user_id, user_name=payload.user_name, metadata=payload.metadata
    )
    return EventOut.model_validate(event)
