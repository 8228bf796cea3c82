import pytest
from helpdesk.core.errors import NotFound
from helpdesk.core.uow import UnitOfWork, in_unit_of_work
from helpdesk.services.comments import create_comment
from helpdesk.services.scoring import (
    AgentRef,
    CommentRow,
    ContributionScorer,
    ScoringSnapshot,
    TicketRow,
    TimeRow,
    round_half_up,
)
from helpdesk.services.sessions import SessionTracker
from helpdesk.services.tickets import create_ticket, update_ticket
from helpdesk.services.time_tracking import TimeTrackingLedger
from conftest import T0, at


def snapshot_for(time_rows, comment_rows, agents=("a", "b", "c")):
    users = {a: AgentRef(id=a, email=f"{a}@example.com", name=a, role="AGENT") for a in agents}
    ticket = TicketRow(
        id=1,
        ticket_number=1,
        subject="Printer",
        status="OPEN",
        priority="NORMAL",
        requester_id="r",
        assignee_id=None,
        created_at=T0,
        solved_at=None,
    )
    return ScoringSnapshot(users=users, tickets={1: ticket}, time_entries=time_rows, comments=comment_rows, sessions=[])


def reply(author, internal=False):
    return CommentRow(ticket_id=1, author_id=author, author_role="AGENT", is_internal=internal, is_system=False)


def test_round_half_up():
    assert round_half_up(65.5) == 66
    assert round_half_up(34.4999) == 34
    assert round_half_up(0.5) == 1


def test_sixty_forty_split():
    snapshot = snapshot_for(
        [TimeRow(1, "a", 600), TimeRow(1, "b", 400)],
        [reply("a"), reply("a", internal=True), reply("a"), reply("b")],
    )
    contributions = ContributionScorer(snapshot).ticket_contributions(1)

    assert [(c.agent_id, c.time_spent, c.reply_count, c.contribution_percent) for c in contributions] == [
        ("a", 600, 3, 66),
        ("b", 400, 1, 34),
    ]


def test_replies_only_split():
    snapshot = snapshot_for([], [reply("a"), reply("b"), reply("c")])
    contributions = ContributionScorer(snapshot).ticket_contributions(1)

    percents = [c.contribution_percent for c in contributions]
    assert percents == [33, 33, 33]
    assert [c.agent_id for c in contributions] == ["a", "b", "c"]
    assert all(c.time_spent == 0 for c in contributions)


@pytest.mark.parametrize(
    "time_rows, comment_rows",
    [
        ([TimeRow(1, "a", 100), TimeRow(1, "b", 100), TimeRow(1, "c", 100)], [reply("a"), reply("b"), reply("c")]),
        ([TimeRow(1, "a", 1), TimeRow(1, "b", 2)], [reply("a"), reply("a"), reply("c")]),
        ([TimeRow(1, "a", 3599)], [reply("b")]),
    ],
)
def test_percentages_sum_to_one_hundred(time_rows, comment_rows):
    contributions = ContributionScorer(snapshot_for(time_rows, comment_rows)).ticket_contributions(1)
    assert abs(sum(c.contribution_percent for c in contributions) - 100) <= 1


def test_no_recorded_work_scores_zero():
    snapshot = snapshot_for([TimeRow(1, "a", 0)], [])
    contributions = ContributionScorer(snapshot).ticket_contributions(1)
    assert [(c.agent_id, c.contribution_percent) for c in contributions] == [("a", 0)]
    assert ContributionScorer(snapshot_for([], [])).ticket_contributions(1) == []


def test_unknown_ticket(db_session, new_ticket):
    with pytest.raises(NotFound):
        ContributionScorer.from_db(db_session, ticket_id=999)
    with pytest.raises(NotFound):
        ContributionScorer(snapshot_for([], [])).ticket_contributions(2)


@pytest.fixture
def worked_tickets(db_session, new_ticket, requester, agent_a, agent_b):
    """
    Ticket 1: A logs 600s and 3 replies (one internal), B logs 400s and 1 reply.
    Ticket 2: A adds only a system comment, B replies once.
    A has one finished 7h session and one open session.
    """
    second = create_ticket(db_session, requester, subject="Email", description="Bounces", now=T0)
    tracker = SessionTracker(db_session)
    ledger = TimeTrackingLedger(db_session)

    session = tracker.start(agent_a, now=at(0))
    ledger.record(new_ticket.id, agent_a, 600, now=at(1))
    ledger.record(new_ticket.id, agent_b, 400, now=at(1))
    create_comment(db_session, new_ticket.id, agent_a, "Reboot please", now=at(2))
    create_comment(db_session, new_ticket.id, requester, "Done", now=at(2, 30))
    create_comment(db_session, new_ticket.id, agent_a, "Vendor notified", is_internal=True, now=at(3))
    create_comment(db_session, new_ticket.id, agent_a, "Try now", now=at(4))
    create_comment(db_session, new_ticket.id, agent_b, "Driver updated", now=at(5))
    create_comment(db_session, second.id, agent_a, "Imported from mailbox", is_system=True, now=at(6))
    create_comment(db_session, second.id, agent_b, "Checking the MX record", now=at(6))
    tracker.end(session.id, agent_a, now=at(7))
    tracker.start(agent_a, now=at(8))
    update_ticket(
        db_session, new_ticket.id, agent_a, {"assignee_id": "agent-a", "status": "SOLVED"}, now=at(9)
    )
    return new_ticket, second


def test_ticket_contributions_from_db(db_session, worked_tickets):
    first, _ = worked_tickets
    contributions = ContributionScorer.from_db(db_session, ticket_id=first.id).ticket_contributions(first.id)

    assert [(c.agent_id, c.contribution_percent) for c in contributions] == [("agent-a", 66), ("agent-b", 34)]
    assert contributions[0].agent.email == "agent-a@example.com"


def test_all_ticket_contributions(db_session, worked_tickets):
    first, second = worked_tickets
    summaries = ContributionScorer.from_db(db_session).all_ticket_contributions()

    by_id = {s.ticket_id: s for s in summaries}
    assert set(by_id) == {first.id, second.id}
    assert by_id[first.id].total_time == 1000
    assert by_id[first.id].total_replies == 4
    assert by_id[first.id].assignee_id == "agent-a"


def test_assignment_performance(db_session, worked_tickets):
    results = {r.agent.id: r for r in ContributionScorer.from_db(db_session).assignment_performance()}

    a = results["agent-a"]
    assert a.sessions.total == 2
    assert a.sessions.total_duration == 7 * 3600
    assert a.sessions.avg_duration == 7 * 3600
    assert a.sessions.last_login == at(8)
    assert a.sessions.is_online is True
    assert (a.tickets.assigned, a.tickets.solved, a.tickets.solve_rate) == (1, 1, 100.0)
    assert a.replies.total == 4
    assert a.replies.avg_per_session == 2.0

    b = results["agent-b"]
    assert b.sessions.total == 0
    assert b.sessions.last_login is None
    assert b.sessions.is_online is False
    assert b.tickets.solve_rate == 0.0
    assert b.replies.avg_per_session == 0.0
    assert "req-1" not in results


def test_contribution_performance(db_session, worked_tickets):
    results = ContributionScorer.from_db(db_session).contribution_performance()

    assert [r.agent.id for r in results] == ["agent-b", "agent-a"]
    b, a = results
    assert (b.total_time_spent, b.total_replies, b.total_tickets, b.solved_tickets) == (400, 2, 2, 1)
    assert b.solve_rate == 50
    assert b.avg_time_per_ticket == 200
    # The system comment on ticket 2 earns agent A nothing.
    assert (a.total_time_spent, a.total_replies, a.total_tickets, a.solved_tickets) == (600, 3, 1, 1)
    assert a.solve_rate == 100
    assert a.avg_time_per_ticket == 600


def test_report_carries_both_views(db_session, worked_tickets):
    report = ContributionScorer.from_db(db_session).report(generated_at=at(10))

    assert report.generated_at == at(10)
    assert {r.agent.id for r in report.assignment} == {"agent-a", "agent-b"}
    assert {r.agent.id for r in report.contribution} == {"agent-a", "agent-b"}


def test_system_overview(db_session, worked_tickets):
    first, second = worked_tickets
    overview = ContributionScorer.from_db(db_session).system_overview()

    assert overview.total_tickets == 2
    assert overview.total_users == 1
    assert overview.total_agents == 2
    assert overview.by_status == {"new": 0, "open": 0, "pending": 1, "on_hold": 0, "solved": 1, "closed": 0}
    assert overview.by_priority == {"low": 0, "normal": 2, "high": 0, "urgent": 0}

    assert [t.id for t in overview.recent] == [second.id, first.id]
    assert overview.recent[1].assignee.id == "agent-a"
    assert overview.recent[0].assignee is None
    assert overview.recent[0].requester.id == "req-1"


def test_recent_tickets_are_capped(db_session, requester):
    for hour in range(3):
        create_ticket(db_session, requester, subject=f"Ticket {hour}", description="...", now=at(hour))

    recent = ContributionScorer.from_db(db_session).system_overview(recent_limit=2).recent
    assert [t.subject for t in recent] == ["Ticket 2", "Ticket 1"]


def test_snapshot_refuses_to_run_inside_a_unit_of_work(db_session, new_ticket):
    with pytest.raises(RuntimeError):
        with UnitOfWork(db_session):
            ScoringSnapshot.load(db_session)
    assert not in_unit_of_work(db_session)

    # Unflushed changes are not silently discarded either.
    new_ticket.subject = "Edited"
    with pytest.raises(RuntimeError):
        ScoringSnapshot.load(db_session)
    db_session.rollback()

    assert ScoringSnapshot.load(db_session).tickets[new_ticket.id].subject == "Printer offline"
