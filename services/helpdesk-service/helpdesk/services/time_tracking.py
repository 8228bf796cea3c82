from datetime import datetime, timedelta
from typing import List, Optional
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session
from helpdesk.core.actor import Actor, Admin, Agent, Requester, System, require_staff
from helpdesk.core.errors import Conflict, Forbidden, NotFound, ValidationError
from helpdesk.core.timeutil import resolve_now, seconds_between
from helpdesk.core.uow import UnitOfWork
from helpdesk.models.agent import TimeEntry
from helpdesk.services.tickets import load_ticket

logger = structlog.get_logger()


class TimeTrackingLedger:
    """
    Per-agent, per-ticket work spans. Entries are only appended or closed,
    never removed, and are summed per agent when scoring.
    """

    def __init__(self, db: Session):
        self.db = db

    def active_timer(self, ticket_id: int, agent_id: str) -> Optional[TimeEntry]:
        return self.db.execute(
            select(TimeEntry).where(
                TimeEntry.ticket_id == ticket_id,
                TimeEntry.agent_id == agent_id,
                TimeEntry.ended_at.is_(None),
            )
        ).scalars().first()

    def start_timer(self, ticket_id: int, actor: Actor, now: Optional[datetime] = None) -> TimeEntry:
        require_staff(actor)
        now = resolve_now(now)
        load_ticket(self.db, ticket_id)

        with UnitOfWork(self.db):
            running = self.active_timer(ticket_id, actor.user_id)
            if running is not None:
                raise Conflict("A timer is already running on this ticket", {"time_entry_id": running.id})
            entry = TimeEntry(ticket_id=ticket_id, agent_id=actor.user_id, started_at=now, duration=0)
            self.db.add(entry)
            self.db.flush()

        self.db.refresh(entry)
        logger.info("time_entry_started", time_entry_id=entry.id, ticket_id=ticket_id, agent_id=actor.user_id)
        return entry

    def stop_timer(self, entry_id: int, actor: Actor, now: Optional[datetime] = None) -> TimeEntry:
        now = resolve_now(now)
        entry = self.db.get(TimeEntry, entry_id)
        if entry is None:
            raise NotFound("Time entry not found", {"time_entry_id": entry_id})

        match actor:
            case Agent(user_id=uid):
                if entry.agent_id != uid:
                    raise Forbidden("Agents can only stop their own timers", {"time_entry_id": entry_id})
            case Admin() | System():
                pass
            case Requester():
                raise Forbidden("Only agents and admins track time")

        with UnitOfWork(self.db):
            if entry.ended_at is not None:
                raise Conflict("Timer already stopped", {"time_entry_id": entry_id})
            entry.ended_at = now
            entry.duration = seconds_between(entry.started_at, now)

        self.db.refresh(entry)
        logger.info("time_entry_stopped", time_entry_id=entry.id, ticket_id=entry.ticket_id, duration=entry.duration)
        return entry

    def record(self, ticket_id: int, actor: Actor, duration: int, now: Optional[datetime] = None) -> TimeEntry:
        """Append an already finished span of `duration` seconds."""
        require_staff(actor)
        if duration is None or duration < 0:
            raise ValidationError("Duration must be zero or positive", {"duration": duration})
        now = resolve_now(now)
        load_ticket(self.db, ticket_id)

        with UnitOfWork(self.db):
            entry = TimeEntry(
                ticket_id=ticket_id,
                agent_id=actor.user_id,
                started_at=now - timedelta(seconds=duration),
                ended_at=now,
                duration=duration,
            )
            self.db.add(entry)
            self.db.flush()

        self.db.refresh(entry)
        return entry

    def entries_for_ticket(self, ticket_id: int) -> List[TimeEntry]:
        load_ticket(self.db, ticket_id)
        return list(
            self.db.execute(
                select(TimeEntry).where(TimeEntry.ticket_id == ticket_id).order_by(TimeEntry.started_at, TimeEntry.id)
            ).scalars()
        )
