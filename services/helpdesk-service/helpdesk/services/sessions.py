"""
Agent login/logout sessions.

Invariant: at most one session per agent has logout_at IS NULL. It is held
by the uq_agent_sessions_active partial unique index in storage and by
start() closing any open session before inserting a new one. Calls for the
same agent are additionally serialized in-process by a per-agent lock.
"""
import threading
import weakref
from datetime import datetime, timedelta
from typing import List, Optional
import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from helpdesk.core.actor import Actor, Admin, Agent, Requester, System, require_staff
from helpdesk.core.config import settings
from helpdesk.core.errors import Conflict, Forbidden, NotFound
from helpdesk.core.timeutil import resolve_now, seconds_between
from helpdesk.core.uow import UnitOfWork
from helpdesk.models.agent import AgentSession

logger = structlog.get_logger()

_registry_lock = threading.Lock()
# Entries disappear once no call holds the lock for that agent.
_agent_locks = weakref.WeakValueDictionary()


def _lock_for(agent_id: str) -> threading.Lock:
    with _registry_lock:
        lock = _agent_locks.get(agent_id)
        if lock is None:
            lock = threading.Lock()
            _agent_locks[agent_id] = lock
        return lock


def _close(session: AgentSession, logout_at: datetime):
    session.logout_at = logout_at
    session.duration = seconds_between(session.login_at, logout_at)


class SessionTracker:
    def __init__(self, db: Session, max_age_hours: Optional[int] = None):
        self.db = db
        self.max_age = timedelta(hours=max_age_hours or settings.SESSION_MAX_AGE_HOURS)

    def _active_sessions(self, agent_id: str) -> List[AgentSession]:
        return list(
            self.db.execute(
                select(AgentSession)
                .where(AgentSession.agent_id == agent_id, AgentSession.logout_at.is_(None))
                .with_for_update()
            ).scalars()
        )

    def start(self, actor: Actor, now: Optional[datetime] = None) -> AgentSession:
        """Open a session for the acting agent, force-closing a dangling one first."""
        require_staff(actor)
        agent_id = actor.user_id
        now = resolve_now(now)

        with _lock_for(agent_id):
            try:
                with UnitOfWork(self.db):
                    for stale in self._active_sessions(agent_id):
                        _close(stale, now)
                        logger.info("agent_session_force_closed", session_id=stale.id, agent_id=agent_id)
                    self.db.flush()

                    session = AgentSession(agent_id=agent_id, login_at=now, reply_count=0)
                    self.db.add(session)
                    self.db.flush()
            except IntegrityError as exc:
                raise Conflict("Another session was opened concurrently", {"agent_id": agent_id}) from exc

        self.db.refresh(session)
        logger.info("agent_session_started", session_id=session.id, agent_id=agent_id)
        return session

    def end(self, session_id: int, actor: Actor, now: Optional[datetime] = None) -> AgentSession:
        now = resolve_now(now)
        session = self.db.get(AgentSession, session_id)
        if session is None:
            raise NotFound("Session not found", {"session_id": session_id})

        match actor:
            case Agent(user_id=uid):
                if session.agent_id != uid:
                    raise Forbidden("Agents can only end their own sessions", {"session_id": session_id})
            case Admin() | System():
                pass
            case Requester():
                raise Forbidden("Only agents and admins have sessions")

        with _lock_for(session.agent_id):
            with UnitOfWork(self.db):
                self.db.refresh(session, with_for_update=True)
                if session.logout_at is None:
                    _close(session, now)
                    logger.info("agent_session_ended", session_id=session.id, agent_id=session.agent_id, duration=session.duration)

        self.db.refresh(session)
        return session

    def cleanup_old(self, now: Optional[datetime] = None) -> int:
        """
        Force-close sessions left open for longer than the max age, typically
        because the browser never sent its unload signal. The synthetic logout
        is login_at + max age, or now if that is earlier.
        """
        now = resolve_now(now)
        cutoff = now - self.max_age
        with UnitOfWork(self.db):
            stale = list(
                self.db.execute(
                    select(AgentSession)
                    .where(AgentSession.logout_at.is_(None), AgentSession.login_at < cutoff)
                    .with_for_update()
                ).scalars()
            )
            for session in stale:
                _close(session, min(session.login_at + self.max_age, now))

        if stale:
            logger.info("agent_sessions_cleaned_up", closed_count=len(stale))
        return len(stale)

    def current(self, agent_id: str) -> Optional[AgentSession]:
        return self.db.execute(
            select(AgentSession)
            .where(AgentSession.agent_id == agent_id, AgentSession.logout_at.is_(None))
            .order_by(AgentSession.login_at.desc())
        ).scalars().first()

    def history(self, agent_id: str, limit: int = 50) -> List[AgentSession]:
        return list(
            self.db.execute(
                select(AgentSession)
                .where(AgentSession.agent_id == agent_id)
                .order_by(AgentSession.login_at.desc(), AgentSession.id.desc())
                .limit(limit)
            ).scalars()
        )

    def increment_replies(self, agent_id: str) -> bool:
        """
        Count a reply against the agent's open session, if there is one.
        Runs inside the caller's unit of work.
        """
        result = self.db.execute(
            update(AgentSession)
            .where(AgentSession.agent_id == agent_id, AgentSession.logout_at.is_(None))
            .values(reply_count=AgentSession.reply_count + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0
