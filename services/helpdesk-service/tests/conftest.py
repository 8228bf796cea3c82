import os

# Point the application engine at a throwaway SQLite file before anything imports it
os.environ["DATABASE_URL"] = "sqlite:///./test_helpdesk.db"

from datetime import datetime, timedelta
import pytest
from helpdesk.core.actor import Admin, Agent, Requester
from helpdesk.core.db import Base, SessionLocal, engine
from helpdesk.models import agent, automation, ticket  # noqa: F401  registers tables
from helpdesk.models.agent import User, UserRole
from helpdesk.services.tickets import create_ticket

T0 = datetime(2026, 1, 5, 9, 0, 0)


def at(hours: float = 0, minutes: float = 0) -> datetime:
    return T0 + timedelta(hours=hours, minutes=minutes)


@pytest.fixture(scope="function")
def db_session():
    # Create the tables
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
        # Drop the tables after the test
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def make_user(db_session):
    def _make(user_id: str, role: str = UserRole.AGENT) -> User:
        user = User(id=user_id, email=f"{user_id}@example.com", name=user_id.title(), role=role)
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture
def requester(make_user):
    make_user("req-1", UserRole.USER)
    return Requester("req-1")


@pytest.fixture
def other_requester(make_user):
    make_user("req-2", UserRole.USER)
    return Requester("req-2")


@pytest.fixture
def agent_a(make_user):
    make_user("agent-a", UserRole.AGENT)
    return Agent("agent-a")


@pytest.fixture
def agent_b(make_user):
    make_user("agent-b", UserRole.AGENT)
    return Agent("agent-b")


@pytest.fixture
def admin(make_user):
    make_user("admin-1", UserRole.ADMIN)
    return Admin("admin-1")


@pytest.fixture
def new_ticket(db_session, requester):
    return create_ticket(db_session, requester, subject="Printer offline", description="It stopped printing.", now=T0)
