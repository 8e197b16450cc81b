"""Calendar webhook schemas."""

from uuid import UUID

from pydantic import BaseModel

from callgate.schemas.credit import CreditAwardRead
from callgate.schemas.flag import FlagRaiseRead


class CalendarConnectionEvent(BaseModel):
    """Connection state pushed by the calendar integration."""
    user_id: UUID
    connected: bool


class CalendarConnectionRead(BaseModel):
    user_id: UUID
    connected: bool
    changed: bool
    flag: FlagRaiseRead | None = None
    credit: CreditAwardRead | None = None
