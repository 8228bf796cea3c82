from datetime import datetime
from typing import Any, Dict, Optional, Sequence
from sqlalchemy import func, select, update
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import set_committed_value
from helpdesk.core.actor import Actor, Admin, Agent, Requester, System, actor_user_id, require_ticket_manager
from helpdesk.core.errors import Conflict, NotFound, ValidationError
from helpdesk.models.agent import STAFF_ROLES, User
from helpdesk.models.ticket import ActivityLog, Comment, Ticket
from helpdesk.services import notifications

class TicketState:
    NEW = "NEW"
    OPEN = "OPEN"
    PENDING = "PENDING"
    ON_HOLD = "ON_HOLD"
    SOLVED = "SOLVED"
    CLOSED = "CLOSED"

ALL_STATES = (
    TicketState.NEW,
    TicketState.OPEN,
    TicketState.PENDING,
    TicketState.ON_HOLD,
    TicketState.SOLVED,
    TicketState.CLOSED,
)

# No transition leaves these states.
TERMINAL_STATES = (TicketState.CLOSED,)

# solved_at stays set while the ticket sits in one of these.
SOLVED_STATES = (TicketState.SOLVED, TicketState.CLOSED)

class TicketPriority:
    LOW = "LOW"
    NORMAL = "NORMAL"
    HIGH = "HIGH"
    URGENT = "URGENT"

ALL_PRIORITIES = (TicketPriority.LOW, TicketPriority.NORMAL, TicketPriority.HIGH, TicketPriority.URGENT)

class ActivityAction:
    TICKET_CREATED = "ticket_created"
    STATUS_CHANGED = "status_changed"
    ASSIGNED = "assigned"
    TICKET_UPDATED = "ticket_updated"
    COMMENT_ADDED = "comment_added"

MANAGED_FIELDS = ("status", "priority", "assignee_id", "category_id")

class TicketStateMachine:
    """
    Applies actor-driven and manual transitions to a ticket.
    Never commits: callers wrap every call in a UnitOfWork.
    """

    def __init__(self, db: Session):
        self.db = db

    def record_activity(
        self,
        ticket_id: int,
        user_id: Optional[str],
        action: str,
        details: Dict[str, Any],
        now: datetime,
    ) -> ActivityLog:
        last_sequence = self.db.execute(
            select(func.max(ActivityLog.sequence)).where(ActivityLog.ticket_id == ticket_id)
        ).scalar()
        entry = ActivityLog(
            ticket_id=ticket_id,
            user_id=user_id,
            action=action,
            details=details,
            created_at=now,
            sequence=(last_sequence or 0) + 1,
        )
        self.db.add(entry)
        self.db.flush()
        return entry

    def validate_status(self, status: str):
        if status not in ALL_STATES:
            raise ValidationError(f"Unknown status {status!r}", {"allowed": list(ALL_STATES)})

    def validate_priority(self, priority: str):
        if priority not in ALL_PRIORITIES:
            raise ValidationError(f"Unknown priority {priority!r}", {"allowed": list(ALL_PRIORITIES)})

    def _set_status(self, ticket: Ticket, new_status: str, now: datetime):
        ticket.status = new_status
        if new_status == TicketState.SOLVED:
            ticket.solved_at = now
        elif new_status not in SOLVED_STATES:
            ticket.solved_at = None
        ticket.updated_at = now

    def apply_comment(self, ticket: Ticket, actor: Actor, comment: Comment, now: datetime) -> Optional[str]:
        """
        Apply the status side effects of a freshly flushed comment.
        Returns the new status when the comment moved the ticket, else None.

        Comments that leave the status alone are accepted in every state,
        CLOSED included. A public staff reply on a CLOSED ticket is a Conflict.
        """
        previous_state = ticket.status
        new_state = previous_state

        match actor:
            case Agent() | Admin():
                if not comment.is_internal:
                    if previous_state in TERMINAL_STATES:
                        raise Conflict("Ticket is closed", {"ticket_id": ticket.id, "status": previous_state})
                    new_state = TicketState.PENDING
                if ticket.first_response_at is None:
                    ticket.first_response_at = now
            case Requester():
                if previous_state == TicketState.PENDING:
                    new_state = TicketState.OPEN
            case System():
                pass

        ticket.updated_at = now
        user_id = actor_user_id(actor)

        if new_state != previous_state:
            self._set_status(ticket, new_state, now)
            self.record_activity(
                ticket.id,
                user_id,
                ActivityAction.STATUS_CHANGED,
                {"oldStatus": previous_state, "newStatus": new_state, "commentId": comment.id},
                now,
            )

        self.record_activity(
            ticket.id,
            user_id,
            ActivityAction.COMMENT_ADDED,
            {"commentId": comment.id, "isInternal": bool(comment.is_internal)},
            now,
        )
        return new_state if new_state != previous_state else None

    def claim(self, ticket: Ticket, assignee_id: str, now: datetime):
        """
        Set the assignee of an unassigned ticket.

        The write is a compare-and-swap on assignee_id IS NULL, so of two
        concurrent claims exactly one wins and the other gets Conflict.
        """
        if ticket.assignee_id is not None:
            if ticket.assignee_id == assignee_id:
                return
            raise Conflict(
                "Ticket is already assigned",
                {"ticket_id": ticket.id, "assignee_id": ticket.assignee_id},
            )

        assignee = self.db.get(User, assignee_id)
        if assignee is None:
            raise NotFound("Assignee not found", {"assignee_id": assignee_id})
        if assignee.role not in STAFF_ROLES:
            raise ValidationError("Tickets can only be assigned to agents or admins", {"assignee_id": assignee_id})

        result = self.db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.assignee_id.is_(None))
            .values(assignee_id=assignee_id, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise Conflict("Ticket was assigned concurrently", {"ticket_id": ticket.id})

        set_committed_value(ticket, "assignee_id", assignee_id)
        set_committed_value(ticket, "updated_at", now)

    def update_fields(self, ticket: Ticket, actor: Actor, changes: Dict[str, Any], now: datetime) -> Dict[str, Dict[str, Any]]:
        """
        Manual override of status, priority, assignee and category.
        Writes one activity entry covering every field that actually changed.
        """
        require_ticket_manager(actor)

        unknown = set(changes) - set(MANAGED_FIELDS)
        if unknown:
            raise ValidationError("Unsupported ticket fields", {"fields": sorted(unknown)})

        diff: Dict[str, Dict[str, Any]] = {}

        new_status = changes.get("status")
        if new_status is not None and new_status != ticket.status:
            self.validate_status(new_status)
            if ticket.status in TERMINAL_STATES:
                raise Conflict("Ticket is closed", {"ticket_id": ticket.id, "status": ticket.status})
            if new_status == TicketState.CLOSED:
                raise ValidationError("Tickets are closed by automation only")
            diff["status"] = {"old": ticket.status, "new": new_status}

        new_priority = changes.get("priority")
        if new_priority is not None and new_priority != ticket.priority:
            self.validate_priority(new_priority)
            diff["priority"] = {"old": ticket.priority, "new": new_priority}

        if "assignee_id" in changes and changes["assignee_id"] != ticket.assignee_id:
            if changes["assignee_id"] is None:
                raise Conflict(
                    "Assigned tickets cannot be released",
                    {"ticket_id": ticket.id, "assignee_id": ticket.assignee_id},
                )
            diff["assignee_id"] = {"old": ticket.assignee_id, "new": changes["assignee_id"]}
            self.claim(ticket, changes["assignee_id"], now)

        if "category_id" in changes and changes["category_id"] != ticket.category_id:
            diff["category_id"] = {"old": ticket.category_id, "new": changes["category_id"]}
            ticket.category_id = changes["category_id"]

        if not diff:
            return diff

        if "status" in diff:
            self._set_status(ticket, diff["status"]["new"], now)
        if "priority" in diff:
            ticket.priority = diff["priority"]["new"]
        ticket.updated_at = now

        if "status" in diff:
            action = ActivityAction.STATUS_CHANGED
            details = {"oldStatus": diff["status"]["old"], "newStatus": diff["status"]["new"], "changes": diff}
        elif set(diff) == {"assignee_id"}:
            action = ActivityAction.ASSIGNED
            details = {"assigneeId": diff["assignee_id"]["new"], "changes": diff}
        else:
            action = ActivityAction.TICKET_UPDATED
            details = {"changes": diff}

        self.record_activity(ticket.id, actor_user_id(actor), action, details, now)

        if "assignee_id" in diff:
            notifications.emit(
                self.db,
                user_id=diff["assignee_id"]["new"],
                ticket=ticket,
                type=notifications.NotificationType.TICKET_ASSIGNED,
                title=f"Ticket #{ticket.ticket_number} assigned to you",
                message=ticket.subject,
                now=now,
            )
        return diff

    def transition_if(
        self,
        ticket_id: int,
        expected_state: str,
        new_state: str,
        actor: Actor,
        now: datetime,
        details: Optional[Dict[str, Any]] = None,
        conditions: Sequence[Any] = (),
    ) -> bool:
        """
        Compare-and-swap status change used by automation.

        The UPDATE only matches while the ticket is still in expected_state,
        so re-running a rule never produces a second transition or activity entry.
        Extra `conditions` are ANDed into the same WHERE clause.
        """
        self.validate_status(new_state)
        values: Dict[str, Any] = {"status": new_state, "updated_at": now}
        if new_state == TicketState.SOLVED:
            values["solved_at"] = now
        elif new_state not in SOLVED_STATES:
            values["solved_at"] = None

        result = self.db.execute(
            update(Ticket)
            .where(Ticket.id == ticket_id, Ticket.status == expected_state, *conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            return False

        entry_details = {"oldStatus": expected_state, "newStatus": new_state}
        entry_details.update(details or {})
        self.record_activity(ticket_id, actor_user_id(actor), ActivityAction.STATUS_CHANGED, entry_details, now)
        return True
