from typing import List, Optional
from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.orm import Session
from helpdesk.api.deps import get_current_actor
from helpdesk.core.actor import Actor
from helpdesk.core.db import get_db
from helpdesk.schemas.ticket import (
    ActivityLogResponse,
    CommentCreate,
    CommentResponse,
    TicketCreate,
    TicketResponse,
    TicketStatusEnum,
    TicketUpdate,
)
from helpdesk.services import comments, tickets

router = APIRouter(prefix="/tickets", tags=["Tickets"])

@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
def create_ticket(ticket_in: TicketCreate, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """
    Open a new ticket in NEW and record the ticket_created activity entry.
    """
    return tickets.create_ticket(
        db,
        actor,
        subject=ticket_in.subject,
        description=ticket_in.description,
        priority=ticket_in.priority,
        category_id=ticket_in.category_id,
        requester_id=ticket_in.requester_id,
    )


@router.get("", response_model=List[TicketResponse])
def get_tickets(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    status: Optional[TicketStatusEnum] = None,
    assignee_id: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    List tickets visible to the caller. Requesters only see their own.
    """
    return tickets.list_tickets(
        db,
        actor,
        status=status.value if status is not None else None,
        assignee_id=assignee_id,
        skip=skip,
        limit=limit,
    )


@router.get("/{ticket_id}", response_model=TicketResponse)
def get_ticket(ticket_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return tickets.get_ticket(db, ticket_id, actor)


@router.patch("/{ticket_id}", response_model=TicketResponse)
def update_ticket(
    ticket_id: int,
    update_data: TicketUpdate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Manual override of status, priority, assignee and category by an agent or admin.
    Assigning a ticket that already has an assignee returns 409.
    """
    return tickets.update_ticket(db, ticket_id, actor, update_data.model_dump(exclude_unset=True))


@router.post("/{ticket_id}/comments", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
def create_comment(
    ticket_id: int,
    comment_in: CommentCreate,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Reply on a ticket. Public agent replies move the ticket to PENDING and
    requester replies to a PENDING ticket move it back to OPEN.
    Mentioned users get a MENTION notification.
    """
    return comments.create_comment(
        db,
        ticket_id,
        actor,
        body=comment_in.body,
        is_internal=comment_in.is_internal,
        is_system=comment_in.is_system,
        mentioned_user_ids=comment_in.mentioned_user_ids,
    )


@router.get("/{ticket_id}/comments", response_model=List[CommentResponse])
def get_comments(ticket_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return comments.list_comments(db, ticket_id, actor)


@router.get("/{ticket_id}/activity", response_model=List[ActivityLogResponse])
def get_activity(ticket_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """
    Ticket history in (created_at, sequence) order.
    """
    return tickets.list_activity(db, ticket_id, actor)
