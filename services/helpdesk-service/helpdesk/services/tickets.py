from datetime import datetime
from typing import Any, Dict, List, Optional
import structlog
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from helpdesk.core.actor import Actor, Admin, Agent, Requester, System, actor_user_id, can_view_ticket, require_staff
from helpdesk.core.errors import Forbidden, NotFound, ValidationError
from helpdesk.core.fsm import ActivityAction, TicketPriority, TicketState, TicketStateMachine
from helpdesk.core.timeutil import resolve_now
from helpdesk.core.uow import UnitOfWork
from helpdesk.models.agent import User
from helpdesk.models.ticket import ActivityLog, Ticket, TicketCounter

logger = structlog.get_logger()


def load_ticket(db: Session, ticket_id: int, for_update: bool = False) -> Ticket:
    query = select(Ticket).where(Ticket.id == ticket_id)
    if for_update:
        query = query.with_for_update()
    ticket = db.execute(query).scalar_one_or_none()
    if ticket is None:
        raise NotFound("Ticket not found", {"ticket_id": ticket_id})
    return ticket


def next_ticket_number(db: Session) -> int:
    """
    Allocate the next ticket number inside the caller's transaction.

    The UPDATE locks the counter row until commit, so a concurrent create
    waits and then reads the number after ours. A database created before the
    counter existed gets its row seeded from the highest number in use.
    """
    result = db.execute(
        update(TicketCounter)
        .where(TicketCounter.id == 1)
        .values(last_number=TicketCounter.last_number + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        last_number = db.execute(select(func.max(Ticket.ticket_number))).scalar() or 0
        db.add(TicketCounter(id=1, last_number=last_number + 1))
        db.flush()
        return last_number + 1
    return db.execute(select(TicketCounter.last_number).where(TicketCounter.id == 1)).scalar_one()


def get_ticket(db: Session, ticket_id: int, actor: Actor) -> Ticket:
    ticket = load_ticket(db, ticket_id)
    if not can_view_ticket(actor, ticket.requester_id):
        raise Forbidden("Forbidden", {"ticket_id": ticket_id})
    return ticket


def list_tickets(
    db: Session,
    actor: Actor,
    status: Optional[str] = None,
    assignee_id: Optional[str] = None,
    skip: int = 0,
    limit: int = 100,
) -> List[Ticket]:
    query = select(Ticket)
    match actor:
        case Requester(user_id=uid):
            query = query.where(Ticket.requester_id == uid)
        case Agent() | Admin() | System():
            pass
    if status is not None:
        query = query.where(Ticket.status == status)
    if assignee_id is not None:
        query = query.where(Ticket.assignee_id == assignee_id)
    query = query.order_by(Ticket.created_at.desc(), Ticket.id.desc()).offset(skip).limit(limit)
    return list(db.execute(query).scalars())


def create_ticket(
    db: Session,
    actor: Actor,
    subject: str,
    description: str,
    priority: str = TicketPriority.NORMAL,
    category_id: Optional[str] = None,
    requester_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Ticket:
    """
    Open a ticket in NEW. Requesters always file for themselves; staff may
    file on behalf of another user.
    """
    now = resolve_now(now)
    if not subject or not subject.strip():
        raise ValidationError("Subject is required")
    if not description or not description.strip():
        raise ValidationError("Description is required")

    match actor:
        case Requester(user_id=uid):
            if requester_id is not None and requester_id != uid:
                raise Forbidden("Requesters can only open tickets for themselves")
            requester_id = uid
        case Agent(user_id=uid) | Admin(user_id=uid):
            requester_id = requester_id or uid
        case System():
            if requester_id is None:
                raise ValidationError("requester_id is required for system-created tickets")

    if db.get(User, requester_id) is None:
        raise NotFound("Requester not found", {"requester_id": requester_id})

    fsm = TicketStateMachine(db)
    fsm.validate_priority(priority)

    with UnitOfWork(db):
        ticket = Ticket(
            ticket_number=next_ticket_number(db),
            subject=subject.strip(),
            description=description,
            status=TicketState.NEW,
            priority=priority,
            requester_id=requester_id,
            category_id=category_id,
            created_at=now,
            updated_at=now,
        )
        db.add(ticket)
        db.flush()
        fsm.record_activity(
            ticket.id,
            actor_user_id(actor),
            ActivityAction.TICKET_CREATED,
            {"ticketNumber": ticket.ticket_number, "status": TicketState.NEW, "priority": priority},
            now,
        )

    db.refresh(ticket)
    logger.info("ticket_created", ticket_id=ticket.id, ticket_number=ticket.ticket_number, requester_id=requester_id)
    return ticket


def update_ticket(
    db: Session,
    ticket_id: int,
    actor: Actor,
    changes: Dict[str, Any],
    now: Optional[datetime] = None,
) -> Ticket:
    """
    Manual override path for status, priority, assignee and category.
    Only the keys present in `changes` are considered.
    """
    now = resolve_now(now)
    fsm = TicketStateMachine(db)

    with UnitOfWork(db):
        ticket = load_ticket(db, ticket_id, for_update=True)
        diff = fsm.update_fields(ticket, actor, changes, now)

    db.refresh(ticket)
    if diff:
        logger.info("ticket_updated", ticket_id=ticket.id, user_id=actor_user_id(actor), fields=sorted(diff))
    return ticket


def list_activity(db: Session, ticket_id: int, actor: Actor) -> List[ActivityLog]:
    require_staff(actor)
    load_ticket(db, ticket_id)
    return list(
        db.execute(
            select(ActivityLog)
            .where(ActivityLog.ticket_id == ticket_id)
            .order_by(ActivityLog.created_at, ActivityLog.sequence)
        ).scalars()
    )
