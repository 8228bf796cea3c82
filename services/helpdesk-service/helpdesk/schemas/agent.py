from pydantic import BaseModel, Field, ConfigDict
from typing import Optional
from datetime import datetime

class SessionResponse(BaseModel):
    id: int
    agent_id: str
    login_at: datetime
    logout_at: Optional[datetime] = None
    duration: Optional[int] = Field(None, description="Seconds between login and logout.")
    reply_count: int

    model_config = ConfigDict(from_attributes=True)

class CleanupResponse(BaseModel):
    closed_count: int

class TimerStart(BaseModel):
    ticket_id: int

class TimeRecord(BaseModel):
    ticket_id: int
    duration: int = Field(..., description="Seconds of work to add to the ledger.")

class TimeEntryResponse(BaseModel):
    id: int
    ticket_id: int
    agent_id: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    duration: int

    model_config = ConfigDict(from_attributes=True)
