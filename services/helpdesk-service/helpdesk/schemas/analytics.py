from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict
from datetime import datetime

class AgentRefResponse(BaseModel):
    id: str
    email: str
    name: Optional[str] = None
    role: str

    model_config = ConfigDict(from_attributes=True)


class AgentContributionResponse(BaseModel):
    agent_id: str
    agent: Optional[AgentRefResponse] = None
    time_spent: int = Field(..., description="Seconds recorded in the time ledger.")
    reply_count: int = Field(..., description="Staff comments, internal notes included.")
    contribution_percent: int = Field(..., description="round((timeShare*0.6 + replyShare*0.4) * 100)")

    model_config = ConfigDict(from_attributes=True)

class TicketContributionResponse(BaseModel):
    ticket_id: int
    ticket_number: int
    subject: str
    status: str
    priority: str
    created_at: datetime
    solved_at: Optional[datetime] = None
    requester_id: str
    assignee_id: Optional[str] = None
    total_time: int
    total_replies: int
    agent_contributions: List[AgentContributionResponse]

    model_config = ConfigDict(from_attributes=True)


class SessionStatsResponse(BaseModel):
    total: int
    total_duration: int
    avg_duration: int
    last_login: Optional[datetime] = None
    is_online: bool

class AssignmentStatsResponse(BaseModel):
    assigned: int
    solved: int
    solve_rate: float

class ReplyStatsResponse(BaseModel):
    total: int
    avg_per_session: float

class AssignmentPerformanceResponse(BaseModel):
    agent: AgentRefResponse
    sessions: SessionStatsResponse
    tickets: AssignmentStatsResponse
    replies: ReplyStatsResponse

    model_config = ConfigDict(from_attributes=True)


class ContributionPerformanceResponse(BaseModel):
    agent: AgentRefResponse
    total_time_spent: int
    total_replies: int
    total_tickets: int
    solved_tickets: int
    solve_rate: int
    avg_time_per_ticket: int

    model_config = ConfigDict(from_attributes=True)


class PerformanceReportResponse(BaseModel):
    generated_at: datetime
    assignment: List[AssignmentPerformanceResponse]
    contribution: List[ContributionPerformanceResponse]

    model_config = ConfigDict(from_attributes=True)


class RecentTicketResponse(BaseModel):
    id: int
    ticket_number: int
    subject: str
    status: str
    priority: str
    created_at: datetime
    requester: Optional[AgentRefResponse] = None
    assignee: Optional[AgentRefResponse] = None

    model_config = ConfigDict(from_attributes=True)

class SystemOverviewResponse(BaseModel):
    total_tickets: int
    total_users: int = Field(..., description="Users with the USER role.")
    total_agents: int = Field(..., description="Agents and admins.")
    by_status: Dict[str, int] = Field(..., description="Ticket count per lowercased status.")
    by_priority: Dict[str, int] = Field(..., description="Ticket count per lowercased priority.")
    recent: List[RecentTicketResponse]

    model_config = ConfigDict(from_attributes=True)
