from datetime import datetime
from typing import List, Optional, Sequence
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session
from helpdesk.core.actor import Actor, Admin, Agent, Requester, System, actor_role, actor_user_id, can_view_ticket, is_staff
from helpdesk.core.errors import Forbidden, ValidationError
from helpdesk.core.fsm import TicketStateMachine
from helpdesk.core.timeutil import resolve_now
from helpdesk.core.uow import UnitOfWork
from helpdesk.models.agent import STAFF_ROLES, User
from helpdesk.models.ticket import Comment, Mention, Ticket
from helpdesk.services import notifications
from helpdesk.services.sessions import SessionTracker
from helpdesk.services.tickets import load_ticket

logger = structlog.get_logger()


def record_mentions(
    db: Session,
    ticket: Ticket,
    comment: Comment,
    mentioned_user_ids: Sequence[str],
    now: datetime,
) -> List[Mention]:
    """
    Store a Mention and queue a MENTION notification per mentioned user.

    The author, repeated ids and unknown users are skipped. Mentions in an
    internal note only reach staff, since requesters cannot read the note.
    """
    wanted = [uid for uid in dict.fromkeys(mentioned_user_ids) if uid and uid != comment.author_id]
    if not wanted:
        return []

    users = {u.id: u for u in db.execute(select(User).where(User.id.in_(wanted))).scalars()}
    author = db.get(User, comment.author_id)
    author_name = (author.name or author.email) if author is not None else comment.author_id

    mentions = []
    for user_id in wanted:
        user = users.get(user_id)
        if user is None:
            logger.warning("mention_skipped", ticket_id=ticket.id, user_id=user_id, reason="unknown_user")
            continue
        if comment.is_internal and user.role not in STAFF_ROLES:
            logger.warning("mention_skipped", ticket_id=ticket.id, user_id=user_id, reason="internal_note")
            continue

        mention = Mention(comment_id=comment.id, user_id=user_id, created_at=now)
        db.add(mention)
        mentions.append(mention)
        notifications.emit(
            db,
            user_id=user_id,
            ticket=ticket,
            type=notifications.NotificationType.MENTION,
            title=f"You were mentioned in ticket #{ticket.ticket_number}",
            message=f'{author_name} mentioned you in a comment on "{ticket.subject}"',
            now=now,
            comment_id=comment.id,
        )
    db.flush()
    return mentions


def create_comment(
    db: Session,
    ticket_id: int,
    actor: Actor,
    body: str,
    is_internal: bool = False,
    is_system: bool = False,
    mentioned_user_ids: Optional[Sequence[str]] = None,
    now: Optional[datetime] = None,
) -> Comment:
    """
    Add a comment and apply its lifecycle side effects as one unit of work:
    the comment row, the ticket status / first response update, the activity
    entries, mention notifications and the author's session reply counter
    commit together.
    """
    now = resolve_now(now)
    if body is None or not body.strip():
        raise ValidationError("Comment body is required")

    match actor:
        case Agent() | Admin():
            pass
        case Requester():
            # Only staff can write internal notes.
            is_internal = False
            is_system = False
        case System():
            raise Forbidden("Automation does not author comments")

    fsm = TicketStateMachine(db)

    with UnitOfWork(db):
        ticket = load_ticket(db, ticket_id, for_update=True)
        if not can_view_ticket(actor, ticket.requester_id):
            raise Forbidden("Forbidden", {"ticket_id": ticket_id})

        comment = Comment(
            ticket_id=ticket.id,
            author_id=actor_user_id(actor),
            author_role=actor_role(actor),
            body=body,
            is_internal=is_internal,
            is_system=is_system,
            created_at=now,
        )
        db.add(comment)
        db.flush()

        new_status = fsm.apply_comment(ticket, actor, comment, now)
        mentioned = [m.user_id for m in record_mentions(db, ticket, comment, mentioned_user_ids or (), now)]

        if is_staff(actor):
            SessionTracker(db).increment_replies(actor_user_id(actor))

    db.refresh(comment)
    logger.info(
        "comment_added",
        ticket_id=ticket_id,
        comment_id=comment.id,
        author_id=comment.author_id,
        is_internal=comment.is_internal,
        new_status=new_status,
        mentioned=mentioned,
    )
    return comment


def list_comments(db: Session, ticket_id: int, actor: Actor) -> List[Comment]:
    ticket = load_ticket(db, ticket_id)
    if not can_view_ticket(actor, ticket.requester_id):
        raise Forbidden("Forbidden", {"ticket_id": ticket_id})

    query = select(Comment).where(Comment.ticket_id == ticket_id)
    if not is_staff(actor):
        query = query.where(Comment.is_internal.is_(False))
    return list(db.execute(query.order_by(Comment.created_at, Comment.id)).scalars())
