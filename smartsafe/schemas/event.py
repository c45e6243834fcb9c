import datetime as dt
from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

EventType = Literal[
    "lock",
    "unlock",
    "setup",
    "unauthorized_face",
    "theft_detected",
    "movement_detected",
    "ghost_mode",
]


class EventIn(BaseModel):
    type: EventType
    user_id: Optional[str] = Field(default=None, max_length=64)
    user_name: Optional[str] = Field(default=None, max_length=128)
    metadata: Optional[dict[str, Any]] = None


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True, populate_by_name=True)

    id: int
    type: str
    user_id: Optional[str] = None
    user_name: Optional[str] = None
    metadata: Optional[dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("details", "metadata"))
    timestamp: dt.datetime = Field(validation_alias=AliasChoices("created_at", "timestamp"))


class EventList(BaseModel):
    events: list[EventOut]
