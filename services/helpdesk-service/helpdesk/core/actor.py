"""
Closed set of actors that can act on a ticket.

Every permission decision is a `match` over Requester | Agent | Admin | System,
so adding a new actor kind forces each check to be revisited.
"""
from dataclasses import dataclass
from typing import Optional, Union
from sqlalchemy.orm import Session
from helpdesk.core.errors import Forbidden, NotFound
from helpdesk.models.agent import User, UserRole


@dataclass(frozen=True)
class Requester:
    user_id: str


@dataclass(frozen=True)
class Agent:
    user_id: str


@dataclass(frozen=True)
class Admin:
    user_id: str


@dataclass(frozen=True)
class System:
    name: str = "automation"

    @property
    def user_id(self) -> None:
        return None


Actor = Union[Requester, Agent, Admin, System]

SYSTEM = System()


def actor_for_user(user: User) -> Actor:
    if user.role == UserRole.ADMIN:
        return Admin(user.id)
    if user.role == UserRole.AGENT:
        return Agent(user.id)
    if user.role == UserRole.USER:
        return Requester(user.id)
    raise ValueError(f"Unknown role {user.role!r} for user {user.id}")


def load_actor(db: Session, user_id: str) -> Actor:
    user = db.get(User, user_id)
    if user is None:
        raise NotFound("User not found", {"user_id": user_id})
    return actor_for_user(user)


def actor_user_id(actor: Actor) -> Optional[str]:
    match actor:
        case Requester(user_id=uid) | Agent(user_id=uid) | Admin(user_id=uid):
            return uid
        case System():
            return None


def actor_role(actor: Actor) -> str:
    match actor:
        case Requester():
            return UserRole.USER
        case Agent():
            return UserRole.AGENT
        case Admin():
            return UserRole.ADMIN
        case System():
            return "SYSTEM"


def is_staff(actor: Actor) -> bool:
    """Agents and admins: the humans who work tickets."""
    match actor:
        case Agent() | Admin():
            return True
        case Requester() | System():
            return False


def can_manage_tickets(actor: Actor) -> bool:
    match actor:
        case Agent() | Admin() | System():
            return True
        case Requester():
            return False


def require_ticket_manager(actor: Actor) -> None:
    if not can_manage_tickets(actor):
        raise Forbidden("Only agents and admins can update ticket fields")


def require_staff(actor: Actor) -> None:
    if not is_staff(actor):
        raise Forbidden("Only agents and admins can perform this action")


def require_admin(actor: Actor) -> None:
    match actor:
        case Admin() | System():
            return
        case Requester() | Agent():
            raise Forbidden("Admin role required")


def can_view_ticket(actor: Actor, requester_id: str) -> bool:
    match actor:
        case Requester(user_id=uid):
            return uid == requester_id
        case Agent() | Admin() | System():
            return True
