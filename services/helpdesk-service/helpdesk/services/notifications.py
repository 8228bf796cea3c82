from datetime import datetime
from typing import List, Optional
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session
from helpdesk.models.ticket import Notification, Ticket

logger = structlog.get_logger()


class NotificationType:
    PENDING_REMINDER = "PENDING_REMINDER"
    TICKET_AUTO_SOLVED = "TICKET_AUTO_SOLVED"
    TICKET_ASSIGNED = "TICKET_ASSIGNED"
    MENTION = "MENTION"


def emit(
    db: Session,
    user_id: str,
    ticket: Ticket,
    type: str,
    title: str,
    message: str,
    now: datetime,
    comment_id: Optional[int] = None,
) -> Notification:
    """Queue an event for the external notifier inside the caller's transaction."""
    notification = Notification(
        user_id=user_id,
        ticket_id=ticket.id,
        comment_id=comment_id,
        type=type,
        title=title,
        message=message,
        created_at=now,
    )
    db.add(notification)
    db.flush()
    logger.info("notification_queued", type=type, user_id=user_id, ticket_id=ticket.id)
    return notification


def list_for_user(db: Session, user_id: str) -> List[Notification]:
    return list(
        db.execute(
            select(Notification).where(Notification.user_id == user_id).order_by(Notification.created_at, Notification.id)
        ).scalars()
    )
