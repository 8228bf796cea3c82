from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, Dict, Any, List
from datetime import datetime
from enum import Enum

class TicketStatusEnum(str, Enum):
    NEW = "NEW"
    OPEN = "OPEN"
    PENDING = "PENDING"
    ON_HOLD = "ON_HOLD"
    SOLVED = "SOLVED"
    CLOSED = "CLOSED"

class TicketPriorityEnum(str, Enum):
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"

class ActivityLogResponse(BaseModel):
    id: int
    ticket_id: int
    user_id: Optional[str] = Field(None, description="The acting user, or null for automation.")
    action: str = Field(..., description="The event recorded, e.g. status_changed or comment_added.")
    details: Dict[str, Any] = Field(default_factory=dict, description="Old and new values of the changed fields.")
    created_at: datetime
    sequence: int = Field(..., description="Per-ticket tie breaker for entries with the same timestamp.")

    model_config = ConfigDict(from_attributes=True)


class TicketCreate(BaseModel):
    subject: str = Field(..., description="Short summary of the request.")
    description: str = Field(..., description="The original request text.")
    priority: TicketPriorityEnum = Field(TicketPriorityEnum.NORMAL, description="Initial priority.")
    category_id: Optional[str] = Field(None, description="Optional category reference.")
    requester_id: Optional[str] = Field(None, description="Staff only: open the ticket on behalf of this user.")

    model_config = ConfigDict(use_enum_values=True)

class TicketUpdate(BaseModel):
    status: Optional[TicketStatusEnum] = None
    priority: Optional[TicketPriorityEnum] = None
    assignee_id: Optional[str] = Field(None, description="Claim an unassigned ticket for this agent.")
    category_id: Optional[str] = None

    model_config = ConfigDict(use_enum_values=True)

class TicketResponse(BaseModel):
    id: int
    ticket_number: int
    subject: str
    description: str
    status: TicketStatusEnum
    priority: TicketPriorityEnum
    requester_id: str
    assignee_id: Optional[str] = None
    category_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    first_response_at: Optional[datetime] = None
    solved_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class CommentCreate(BaseModel):
    body: str = Field(..., description="Comment text.")
    is_internal: bool = Field(False, description="Agent-only note; ignored for requesters.")
    is_system: bool = Field(False, description="Machine-authored comment, e.g. from an import.")
    mentioned_user_ids: List[str] = Field(default_factory=list, description="Users to notify about this comment.")

class CommentResponse(BaseModel):
    id: int
    ticket_id: int
    author_id: str
    author_role: str
    body: str
    is_internal: bool
    is_system: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class NotificationResponse(BaseModel):
    id: int
    user_id: str
    ticket_id: Optional[int] = None
    comment_id: Optional[int] = None
    type: str
    title: str
    message: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
