from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session
from helpdesk.api.deps import get_admin_actor
from helpdesk.core.actor import Actor
from helpdesk.core.db import get_db
from helpdesk.core.timeutil import utcnow
from helpdesk.schemas.agent import SessionResponse
from helpdesk.schemas.analytics import (
    AgentContributionResponse,
    AssignmentPerformanceResponse,
    ContributionPerformanceResponse,
    PerformanceReportResponse,
    SystemOverviewResponse,
    TicketContributionResponse,
)
from helpdesk.services.scoring import ContributionScorer
from helpdesk.services.sessions import SessionTracker

router = APIRouter(prefix="/analytics", tags=["Analytics"])

@router.get("/tickets/{ticket_id}/contributions", response_model=List[AgentContributionResponse])
def ticket_contributions(ticket_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Split of credit for one ticket: 60% time spent, 40% replies.
    """
    return ContributionScorer.from_db(db, ticket_id=ticket_id).ticket_contributions(ticket_id)


@router.get("/ticket-contributions", response_model=List[TicketContributionResponse])
def all_ticket_contributions(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    return ContributionScorer.from_db(db).all_ticket_contributions()


@router.get("/agents/assignment-performance", response_model=List[AssignmentPerformanceResponse])
def assignment_performance(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Per-agent performance over formally assigned tickets, with session statistics.
    """
    return ContributionScorer.from_db(db).assignment_performance()


@router.get("/agents/contribution-performance", response_model=List[ContributionPerformanceResponse])
def contribution_performance(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Per-agent performance over every ticket the agent logged time or replied on.
    """
    return ContributionScorer.from_db(db).contribution_performance()


@router.get("/performance-report", response_model=PerformanceReportResponse)
def performance_report(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Both per-agent views computed from the same snapshot.
    """
    return ContributionScorer.from_db(db).report(generated_at=utcnow())


@router.get("/system", response_model=SystemOverviewResponse)
def system_overview(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Helpdesk-wide ticket and user counts with the newest tickets.
    """
    return ContributionScorer.from_db(db).system_overview()


@router.get("/agents/{agent_id}/sessions", response_model=List[SessionResponse])
def agent_sessions(
    agent_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_admin_actor),
):
    return SessionTracker(db).history(agent_id, limit=limit)
