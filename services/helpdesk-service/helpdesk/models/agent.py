from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from helpdesk.core.db import Base
from helpdesk.core.timeutil import utcnow


class UserRole:
    USER = "USER"
    AGENT = "AGENT"
    ADMIN = "ADMIN"

STAFF_ROLES = (UserRole.AGENT, UserRole.ADMIN)


class User(Base):
    """
    Local mirror of an identity-provider account. Only the role matters here.
    """
    __tablename__ = "users"

    id = Column(String(64), primary_key=True)
    email = Column(String(255), nullable=False, unique=True)
    name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.USER, index=True)
    created_at = Column(DateTime, default=utcnow)


class AgentSession(Base):
    __tablename__ = "agent_sessions"
    __table_args__ = (
        # At most one open session per agent.
        Index(
            "uq_agent_sessions_active",
            "agent_id",
            unique=True,
            sqlite_where=text("logout_at IS NULL"),
            postgresql_where=text("logout_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)
    agent_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    login_at = Column(DateTime, nullable=False, index=True)
    logout_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # seconds
    reply_count = Column(Integer, nullable=False, default=0)


class TimeEntry(Base):
    """
    One span of work by an agent on a ticket. ended_at is null while the timer runs.
    """
    __tablename__ = "time_entries"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    agent_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    started_at = Column(DateTime, nullable=False)
    ended_at = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=False, default=0)  # seconds
