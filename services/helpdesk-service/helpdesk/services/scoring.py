"""
Agent contribution and performance scoring.

All figures of one report are computed from a single ScoringSnapshot, read in
one transaction, so the per-ticket split and both per-agent views agree on
who worked which ticket.

Two per-agent views are kept deliberately separate:

- assignment-based: keyed on tickets.assignee_id, with session statistics;
- contribution-based: keyed on any recorded work (a ledger entry or a
  non-system comment), regardless of assignment.
"""
import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Optional, Set
from sqlalchemy import select
from sqlalchemy.orm import Session
from helpdesk.core.errors import NotFound
from helpdesk.core.fsm import ALL_PRIORITIES, ALL_STATES, TicketState
from helpdesk.core.uow import in_unit_of_work
from helpdesk.models.agent import STAFF_ROLES, AgentSession, TimeEntry, User, UserRole
from helpdesk.models.ticket import Comment, Ticket

TIME_WEIGHT = 0.6
REPLY_WEIGHT = 0.4


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


@dataclass(frozen=True)
class AgentRef:
    id: str
    email: str
    name: Optional[str]
    role: str


@dataclass(frozen=True)
class TicketRow:
    id: int
    ticket_number: int
    subject: str
    status: str
    priority: str
    requester_id: str
    assignee_id: Optional[str]
    created_at: datetime
    solved_at: Optional[datetime]


@dataclass(frozen=True)
class TimeRow:
    ticket_id: int
    agent_id: str
    duration: int


@dataclass(frozen=True)
class CommentRow:
    ticket_id: int
    author_id: str
    author_role: str
    is_internal: bool
    is_system: bool


@dataclass(frozen=True)
class SessionRow:
    agent_id: str
    login_at: datetime
    logout_at: Optional[datetime]
    duration: Optional[int]
    reply_count: int


@dataclass
class ScoringSnapshot:
    users: Dict[str, AgentRef]
    tickets: Dict[int, TicketRow]
    time_entries: List[TimeRow]
    comments: List[CommentRow]
    sessions: List[SessionRow]

    @property
    def agents(self) -> List[AgentRef]:
        return sorted((u for u in self.users.values() if u.role in STAFF_ROLES), key=lambda u: u.email)

    @classmethod
    def load(cls, db: Session, ticket_id: Optional[int] = None) -> "ScoringSnapshot":
        """
        Read everything a report needs inside one transaction. On PostgreSQL
        the transaction runs at REPEATABLE READ so every query sees the same
        committed state.

        Must be called outside a unit of work and with no unflushed changes:
        the snapshot opens its own transaction and rolls it back afterwards.
        A read-only transaction left open by earlier queries is discarded.
        """
        if in_unit_of_work(db) or db.new or db.dirty or db.deleted:
            raise RuntimeError("ScoringSnapshot.load needs a session with no pending work")
        if db.in_transaction():
            db.rollback()
        if db.get_bind().dialect.name == "postgresql":
            db.connection(execution_options={"isolation_level": "REPEATABLE READ"})

        try:
            ticket_query = select(Ticket)
            time_query = select(TimeEntry)
            comment_query = select(Comment)
            if ticket_id is not None:
                ticket_query = ticket_query.where(Ticket.id == ticket_id)
                time_query = time_query.where(TimeEntry.ticket_id == ticket_id)
                comment_query = comment_query.where(Comment.ticket_id == ticket_id)

            users = {
                u.id: AgentRef(id=u.id, email=u.email, name=u.name, role=u.role)
                for u in db.execute(select(User)).scalars()
            }
            tickets = {
                t.id: TicketRow(
                    id=t.id,
                    ticket_number=t.ticket_number,
                    subject=t.subject,
                    status=t.status,
                    priority=t.priority,
                    requester_id=t.requester_id,
                    assignee_id=t.assignee_id,
                    created_at=t.created_at,
                    solved_at=t.solved_at,
                )
                for t in db.execute(ticket_query).scalars()
            }
            if ticket_id is not None and ticket_id not in tickets:
                raise NotFound("Ticket not found", {"ticket_id": ticket_id})

            time_entries = [
                TimeRow(ticket_id=e.ticket_id, agent_id=e.agent_id, duration=e.duration or 0)
                for e in db.execute(time_query.order_by(TimeEntry.id)).scalars()
            ]
            comments = [
                CommentRow(
                    ticket_id=c.ticket_id,
                    author_id=c.author_id,
                    author_role=c.author_role,
                    is_internal=bool(c.is_internal),
                    is_system=bool(c.is_system),
                )
                for c in db.execute(comment_query.order_by(Comment.created_at, Comment.id)).scalars()
            ]
            sessions = [
                SessionRow(
                    agent_id=s.agent_id,
                    login_at=s.login_at,
                    logout_at=s.logout_at,
                    duration=s.duration,
                    reply_count=s.reply_count or 0,
                )
                for s in db.execute(select(AgentSession).order_by(AgentSession.login_at.desc(), AgentSession.id.desc())).scalars()
            ]
        finally:
            db.rollback()

        return cls(users=users, tickets=tickets, time_entries=time_entries, comments=comments, sessions=sessions)


@dataclass
class AgentContribution:
    agent_id: str
    agent: Optional[AgentRef]
    time_spent: int = 0
    reply_count: int = 0
    contribution_percent: int = 0


@dataclass
class TicketContributionSummary:
    ticket_id: int
    ticket_number: int
    subject: str
    status: str
    priority: str
    created_at: datetime
    solved_at: Optional[datetime]
    requester_id: str
    assignee_id: Optional[str]
    total_time: int
    total_replies: int
    agent_contributions: List[AgentContribution]


@dataclass
class SessionStats:
    total: int
    total_duration: int
    avg_duration: int
    last_login: Optional[datetime]
    is_online: bool


@dataclass
class AssignmentStats:
    assigned: int
    solved: int
    solve_rate: float


@dataclass
class ReplyStats:
    total: int
    avg_per_session: float


@dataclass
class AssignmentPerformance:
    agent: AgentRef
    sessions: SessionStats
    tickets: AssignmentStats
    replies: ReplyStats


@dataclass
class ContributionPerformance:
    agent: AgentRef
    total_time_spent: int
    total_replies: int
    total_tickets: int
    solved_tickets: int
    solve_rate: int
    avg_time_per_ticket: int


@dataclass
class PerformanceReport:
    generated_at: datetime
    assignment: List[AssignmentPerformance] = field(default_factory=list)
    contribution: List[ContributionPerformance] = field(default_factory=list)


@dataclass
class RecentTicket:
    id: int
    ticket_number: int
    subject: str
    status: str
    priority: str
    created_at: datetime
    requester: Optional[AgentRef]
    assignee: Optional[AgentRef]


@dataclass
class SystemOverview:
    total_tickets: int
    total_users: int
    total_agents: int
    by_status: Dict[str, int]
    by_priority: Dict[str, int]
    recent: List[RecentTicket]


class ContributionScorer:
    def __init__(self, snapshot: ScoringSnapshot):
        self.snapshot = snapshot

    @classmethod
    def from_db(cls, db: Session, ticket_id: Optional[int] = None) -> "ContributionScorer":
        return cls(ScoringSnapshot.load(db, ticket_id=ticket_id))

    def ticket_contributions(self, ticket_id: int) -> List[AgentContribution]:
        """
        60/40 time/reply split among the agents who touched one ticket.
        Every staff comment counts as a reply, internal notes included.
        """
        if ticket_id not in self.snapshot.tickets:
            raise NotFound("Ticket not found", {"ticket_id": ticket_id})

        contributions: Dict[str, AgentContribution] = {}

        def entry_for(agent_id: str) -> AgentContribution:
            if agent_id not in contributions:
                contributions[agent_id] = AgentContribution(agent_id=agent_id, agent=self.snapshot.users.get(agent_id))
            return contributions[agent_id]

        for entry in self.snapshot.time_entries:
            if entry.ticket_id == ticket_id:
                entry_for(entry.agent_id).time_spent += entry.duration

        for comment in self.snapshot.comments:
            if comment.ticket_id == ticket_id and comment.author_role in STAFF_ROLES:
                entry_for(comment.author_id).reply_count += 1

        total_time = sum(c.time_spent for c in contributions.values())
        total_replies = sum(c.reply_count for c in contributions.values())

        time_weight, reply_weight = TIME_WEIGHT, REPLY_WEIGHT
        # With only one kind of work recorded, it carries the whole ticket.
        if total_time == 0 and total_replies > 0:
            time_weight, reply_weight = 0.0, 1.0
        elif total_replies == 0 and total_time > 0:
            time_weight, reply_weight = 1.0, 0.0

        for contrib in contributions.values():
            time_share = contrib.time_spent / total_time if total_time > 0 else 0
            reply_share = contrib.reply_count / total_replies if total_replies > 0 else 0
            contrib.contribution_percent = round_half_up((time_share * time_weight + reply_share * reply_weight) * 100)

        return sorted(contributions.values(), key=lambda c: (-c.contribution_percent, c.agent_id))

    def all_ticket_contributions(self) -> List[TicketContributionSummary]:
        summaries = []
        tickets = sorted(self.snapshot.tickets.values(), key=lambda t: (t.created_at, t.id), reverse=True)
        for ticket in tickets:
            contributions = self.ticket_contributions(ticket.id)
            summaries.append(
                TicketContributionSummary(
                    ticket_id=ticket.id,
                    ticket_number=ticket.ticket_number,
                    subject=ticket.subject,
                    status=ticket.status,
                    priority=ticket.priority,
                    created_at=ticket.created_at,
                    solved_at=ticket.solved_at,
                    requester_id=ticket.requester_id,
                    assignee_id=ticket.assignee_id,
                    total_time=sum(c.time_spent for c in contributions),
                    total_replies=sum(c.reply_count for c in contributions),
                    agent_contributions=contributions,
                )
            )
        return summaries

    def assignment_performance(self) -> List[AssignmentPerformance]:
        """Performance keyed on formal assignment, plus login session statistics."""
        results = []
        for agent in self.snapshot.agents:
            sessions = [s for s in self.snapshot.sessions if s.agent_id == agent.id]
            completed = [s for s in sessions if s.logout_at is not None]
            total_duration = sum(s.duration or 0 for s in completed)
            total_replies = sum(s.reply_count for s in sessions)

            assigned = [t for t in self.snapshot.tickets.values() if t.assignee_id == agent.id]
            solved = [t for t in assigned if t.status == TicketState.SOLVED]

            results.append(
                AssignmentPerformance(
                    agent=agent,
                    sessions=SessionStats(
                        total=len(sessions),
                        total_duration=total_duration,
                        avg_duration=round_half_up(total_duration / len(completed)) if completed else 0,
                        last_login=max((s.login_at for s in sessions), default=None),
                        is_online=any(s.logout_at is None for s in sessions),
                    ),
                    tickets=AssignmentStats(
                        assigned=len(assigned),
                        solved=len(solved),
                        solve_rate=(len(solved) / len(assigned)) * 100 if assigned else 0.0,
                    ),
                    replies=ReplyStats(
                        total=total_replies,
                        avg_per_session=total_replies / len(sessions) if sessions else 0.0,
                    ),
                )
            )
        return results

    def contribution_performance(self) -> List[ContributionPerformance]:
        """Performance keyed on any recorded work: a ledger entry or a non-system comment."""
        time_by_agent: Dict[str, int] = defaultdict(int)
        replies_by_agent: Dict[str, int] = defaultdict(int)
        tickets_by_agent: Dict[str, Set[int]] = defaultdict(set)

        for entry in self.snapshot.time_entries:
            time_by_agent[entry.agent_id] += entry.duration
            tickets_by_agent[entry.agent_id].add(entry.ticket_id)

        for comment in self.snapshot.comments:
            if comment.is_system:
                continue
            replies_by_agent[comment.author_id] += 1
            tickets_by_agent[comment.author_id].add(comment.ticket_id)

        results = []
        for agent in self.snapshot.agents:
            ticket_ids = tickets_by_agent.get(agent.id, set())
            total_tickets = len(ticket_ids)
            solved_tickets = sum(
                1 for tid in ticket_ids if tid in self.snapshot.tickets and self.snapshot.tickets[tid].status == TicketState.SOLVED
            )
            total_time = time_by_agent.get(agent.id, 0)
            results.append(
                ContributionPerformance(
                    agent=agent,
                    total_time_spent=total_time,
                    total_replies=replies_by_agent.get(agent.id, 0),
                    total_tickets=total_tickets,
                    solved_tickets=solved_tickets,
                    solve_rate=round_half_up(solved_tickets / total_tickets * 100) if total_tickets else 0,
                    avg_time_per_ticket=round_half_up(total_time / total_tickets) if total_tickets else 0,
                )
            )

        results.sort(key=lambda r: -r.total_tickets)
        return results

    def report(self, generated_at: datetime) -> PerformanceReport:
        return PerformanceReport(
            generated_at=generated_at,
            assignment=self.assignment_performance(),
            contribution=self.contribution_performance(),
        )

    def system_overview(self, recent_limit: int = 10) -> SystemOverview:
        """
        Ticket and user totals. Status and priority counts are keyed by the
        lowercased value and include zero counts.
        """
        tickets = list(self.snapshot.tickets.values())
        by_status = {state.lower(): 0 for state in ALL_STATES}
        by_priority = {priority.lower(): 0 for priority in ALL_PRIORITIES}
        for ticket in tickets:
            by_status[ticket.status.lower()] = by_status.get(ticket.status.lower(), 0) + 1
            by_priority[ticket.priority.lower()] = by_priority.get(ticket.priority.lower(), 0) + 1

        newest = sorted(tickets, key=lambda t: (t.created_at, t.id), reverse=True)[:recent_limit]
        users = self.snapshot.users
        return SystemOverview(
            total_tickets=len(tickets),
            total_users=sum(1 for u in users.values() if u.role == UserRole.USER),
            total_agents=sum(1 for u in users.values() if u.role in STAFF_ROLES),
            by_status=by_status,
            by_priority=by_priority,
            recent=[
                RecentTicket(
                    id=t.id,
                    ticket_number=t.ticket_number,
                    subject=t.subject,
                    status=t.status,
                    priority=t.priority,
                    created_at=t.created_at,
                    requester=users.get(t.requester_id),
                    assignee=users.get(t.assignee_id) if t.assignee_id else None,
                )
                for t in newest
            ],
        )
