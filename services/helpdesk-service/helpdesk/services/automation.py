"""
Time-based automation: pending reminders, auto-solve, auto-close and
attachment retention.

Each ticket (and each attachment) is handled in its own unit of work. Every
write is a compare-and-swap against the rule's precondition, so running the
sweep twice in the same window is a no-op the second time. A failure on one
item is rolled back, logged and reported; the sweep carries on.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Protocol
import structlog
from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session
from helpdesk.core.actor import SYSTEM
from helpdesk.core.fsm import ActivityAction, TicketState, TicketStateMachine
from helpdesk.core.timeutil import resolve_now
from helpdesk.core.uow import UnitOfWork
from helpdesk.models.agent import STAFF_ROLES, UserRole
from helpdesk.models.ticket import ActivityLog, Attachment, Comment, Ticket
from helpdesk.services import notifications
from helpdesk.services.settings import SettingsService
from helpdesk.services.tickets import load_ticket

logger = structlog.get_logger()


class AttachmentBlobStore(Protocol):
    def delete(self, storage_key: str) -> None:
        ...


class Rule:
    PENDING_REMINDER = "pending_reminder"
    AUTO_SOLVE = "auto_solve"
    AUTO_CLOSE = "auto_close"
    ATTACHMENT_RETENTION = "attachment_retention"


@dataclass
class SweepFailure:
    rule: str
    error: str
    ticket_id: Optional[int] = None
    attachment_id: Optional[int] = None


@dataclass
class SweepReport:
    reminded: int = 0
    auto_solved: int = 0
    auto_closed: int = 0
    attachments_deleted: int = 0
    failures: List[SweepFailure] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class RuleConfig:
    """Plain copy of the settings row, so values survive the per-ticket commits."""

    send_pending_ticket_reminder: bool
    pending_ticket_reminder_hours: int
    auto_solve_enabled: bool
    auto_solve_hours: int
    auto_close_enabled: bool
    auto_close_hours: int
    auto_delete_attachments_enabled: bool
    auto_delete_attachments_days: int

    @classmethod
    def load(cls, db: Session) -> "RuleConfig":
        row = SettingsService(db).get()
        return cls(
            send_pending_ticket_reminder=row.send_pending_ticket_reminder,
            pending_ticket_reminder_hours=row.pending_ticket_reminder_hours,
            auto_solve_enabled=row.auto_solve_enabled,
            auto_solve_hours=row.auto_solve_hours,
            auto_close_enabled=row.auto_close_enabled,
            auto_close_hours=row.auto_close_hours,
            auto_delete_attachments_enabled=row.auto_delete_attachments_enabled,
            auto_delete_attachments_days=row.auto_delete_attachments_days,
        )


class AutomationScheduler:
    def __init__(self, db: Session, blob_store: Optional[AttachmentBlobStore] = None):
        self.db = db
        self.blob_store = blob_store
        self.fsm = TicketStateMachine(db)

    def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = resolve_now(now)
        config = RuleConfig.load(self.db)
        report = SweepReport()

        if config.send_pending_ticket_reminder or config.auto_solve_enabled:
            pending_ids = self._ticket_ids(Ticket.status == TicketState.PENDING)
            if config.send_pending_ticket_reminder:
                threshold = timedelta(hours=config.pending_ticket_reminder_hours)
                for ticket_id in pending_ids:
                    if self._isolated(report, Rule.PENDING_REMINDER, lambda: self._remind(ticket_id, threshold, now), ticket_id=ticket_id):
                        report.reminded += 1
            if config.auto_solve_enabled:
                threshold = timedelta(hours=config.auto_solve_hours)
                for ticket_id in pending_ids:
                    if self._isolated(report, Rule.AUTO_SOLVE, lambda: self._auto_solve(ticket_id, threshold, now), ticket_id=ticket_id):
                        report.auto_solved += 1

        if config.auto_close_enabled:
            cutoff = now - timedelta(hours=config.auto_close_hours)
            solved_ids = self._ticket_ids(Ticket.status == TicketState.SOLVED, Ticket.solved_at <= cutoff)
            for ticket_id in solved_ids:
                if self._isolated(report, Rule.AUTO_CLOSE, lambda: self._auto_close(ticket_id, cutoff, now), ticket_id=ticket_id):
                    report.auto_closed += 1

        if config.auto_delete_attachments_enabled and self.blob_store is None:
            # Rows stay unstamped until a store is configured.
            logger.warning("attachment_retention_skipped", reason="no_blob_store")
        elif config.auto_delete_attachments_enabled:
            cutoff = now - timedelta(days=config.auto_delete_attachments_days)
            attachment_ids = list(
                self.db.execute(
                    select(Attachment.id)
                    .where(Attachment.blob_deleted_at.is_(None), Attachment.created_at <= cutoff)
                    .order_by(Attachment.id)
                ).scalars()
            )
            for attachment_id in attachment_ids:
                if self._isolated(report, Rule.ATTACHMENT_RETENTION, lambda: self._purge_attachment(attachment_id, now), attachment_id=attachment_id):
                    report.attachments_deleted += 1

        # Release the read transaction left open by the candidate queries.
        self.db.commit()

        logger.info(
            "automation_sweep_finished",
            reminded=report.reminded,
            auto_solved=report.auto_solved,
            auto_closed=report.auto_closed,
            attachments_deleted=report.attachments_deleted,
            failures=len(report.failures),
        )
        return report

    def _ticket_ids(self, *conditions) -> List[int]:
        return list(self.db.execute(select(Ticket.id).where(*conditions).order_by(Ticket.id)).scalars())

    def _isolated(
        self,
        report: SweepReport,
        rule: str,
        action: Callable[[], bool],
        ticket_id: Optional[int] = None,
        attachment_id: Optional[int] = None,
    ) -> bool:
        try:
            return action()
        except Exception as exc:
            self.db.rollback()
            logger.error(
                "automation_rule_failed",
                rule=rule,
                ticket_id=ticket_id,
                attachment_id=attachment_id,
                error=str(exc),
                exc_info=True,
            )
            report.failures.append(SweepFailure(rule=rule, error=str(exc), ticket_id=ticket_id, attachment_id=attachment_id))
            return False

    def last_staff_reply_at(self, ticket_id: int) -> Optional[datetime]:
        return self.db.execute(
            select(func.max(Comment.created_at)).where(
                Comment.ticket_id == ticket_id,
                Comment.author_role.in_(STAFF_ROLES),
                Comment.is_internal.is_(False),
            )
        ).scalar()

    def pending_anchor(self, ticket: Ticket) -> datetime:
        """
        Start of the current waiting-for-customer window: the last public
        agent reply, else the last move into PENDING, else ticket creation.
        """
        last_reply = self.last_staff_reply_at(ticket.id)
        if last_reply is not None:
            return last_reply

        status_changes = self.db.execute(
            select(ActivityLog)
            .where(ActivityLog.ticket_id == ticket.id, ActivityLog.action == ActivityAction.STATUS_CHANGED)
            .order_by(ActivityLog.created_at.desc(), ActivityLog.sequence.desc())
        ).scalars()
        for entry in status_changes:
            if (entry.details or {}).get("newStatus") == TicketState.PENDING:
                return entry.created_at
        return ticket.created_at

    def requester_replied_since(self, ticket_id: int, since: datetime) -> bool:
        count = self.db.execute(
            select(func.count(Comment.id)).where(
                Comment.ticket_id == ticket_id,
                Comment.author_role == UserRole.USER,
                Comment.created_at > since,
            )
        ).scalar()
        return bool(count)

    def _remind(self, ticket_id: int, threshold: timedelta, now: datetime) -> bool:
        with UnitOfWork(self.db):
            ticket = load_ticket(self.db, ticket_id, for_update=True)
            if ticket.status != TicketState.PENDING:
                return False
            anchor = self.pending_anchor(ticket)
            if now - anchor < threshold:
                return False

            result = self.db.execute(
                update(Ticket)
                .where(
                    Ticket.id == ticket_id,
                    Ticket.status == TicketState.PENDING,
                    or_(Ticket.last_reminded_at.is_(None), Ticket.last_reminded_at < anchor),
                )
                .values(last_reminded_at=now, updated_at=Ticket.updated_at)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False

            notifications.emit(
                self.db,
                user_id=ticket.requester_id,
                ticket=ticket,
                type=notifications.NotificationType.PENDING_REMINDER,
                title=f"Ticket #{ticket.ticket_number} is waiting for your reply",
                message=ticket.subject,
                now=now,
            )
        logger.info("pending_reminder_queued", ticket_id=ticket_id)
        return True

    def _auto_solve(self, ticket_id: int, threshold: timedelta, now: datetime) -> bool:
        with UnitOfWork(self.db):
            ticket = load_ticket(self.db, ticket_id, for_update=True)
            if ticket.status != TicketState.PENDING:
                return False
            anchor = self.pending_anchor(ticket)
            if now - anchor < threshold:
                return False
            if self.requester_replied_since(ticket_id, anchor):
                return False

            solved = self.fsm.transition_if(
                ticket_id,
                TicketState.PENDING,
                TicketState.SOLVED,
                SYSTEM,
                now,
                details={"automation": Rule.AUTO_SOLVE},
            )
            if not solved:
                return False

            notifications.emit(
                self.db,
                user_id=ticket.requester_id,
                ticket=ticket,
                type=notifications.NotificationType.TICKET_AUTO_SOLVED,
                title=f"Ticket #{ticket.ticket_number} was marked as solved",
                message=ticket.subject,
                now=now,
            )
        logger.info("ticket_auto_solved", ticket_id=ticket_id)
        return True

    def _auto_close(self, ticket_id: int, cutoff: datetime, now: datetime) -> bool:
        with UnitOfWork(self.db):
            closed = self.fsm.transition_if(
                ticket_id,
                TicketState.SOLVED,
                TicketState.CLOSED,
                SYSTEM,
                now,
                details={"automation": Rule.AUTO_CLOSE},
                conditions=(Ticket.solved_at <= cutoff,),
            )
        if closed:
            logger.info("ticket_auto_closed", ticket_id=ticket_id)
        return closed

    def _purge_attachment(self, attachment_id: int, now: datetime) -> bool:
        with UnitOfWork(self.db):
            result = self.db.execute(
                update(Attachment)
                .where(Attachment.id == attachment_id, Attachment.blob_deleted_at.is_(None))
                .values(blob_deleted_at=now)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return False
            storage_key = self.db.execute(
                select(Attachment.storage_key).where(Attachment.id == attachment_id)
            ).scalar_one()
            # A failing delete rolls the marker back so the next sweep retries.
            self.blob_store.delete(storage_key)
        logger.info("attachment_blob_deleted", attachment_id=attachment_id)
        return True
