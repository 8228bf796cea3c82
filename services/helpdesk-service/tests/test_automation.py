from datetime import timedelta
import pytest
from sqlalchemy import select
from helpdesk.core.errors import ValidationError
from helpdesk.core.fsm import ActivityAction, TicketState
from helpdesk.models.ticket import ActivityLog, Attachment, Notification, Ticket
from helpdesk.services.automation import AutomationScheduler, Rule
from helpdesk.services.comments import create_comment
from helpdesk.services.settings import SettingsService
from helpdesk.services.tickets import create_ticket, update_ticket
from conftest import T0, at


class RecordingBlobStore:
    def __init__(self, failing_keys=()):
        self.deleted = []
        self.failing_keys = set(failing_keys)

    def delete(self, storage_key):
        if storage_key in self.failing_keys:
            raise RuntimeError(f"storage unavailable for {storage_key}")
        self.deleted.append(storage_key)


def enable(db, **changes):
    return SettingsService(db).update(changes)


def entries(db, ticket_id):
    return list(
        db.execute(
            select(ActivityLog).where(ActivityLog.ticket_id == ticket_id).order_by(ActivityLog.created_at, ActivityLog.sequence)
        ).scalars()
    )


def notifications_of(db, type):
    return list(db.execute(select(Notification).where(Notification.type == type)).scalars())


def test_disabled_rules_do_nothing(db_session, new_ticket, agent_a):
    create_comment(db_session, new_ticket.id, agent_a, "Please confirm", now=at(1))

    report = AutomationScheduler(db_session).run_sweep(now=at(500))

    assert report.to_dict() == {
        "reminded": 0,
        "auto_solved": 0,
        "auto_closed": 0,
        "attachments_deleted": 0,
        "failures": [],
    }
    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.PENDING


def test_auto_solve_after_threshold_writes_one_entry(db_session, new_ticket, agent_a):
    enable(db_session, auto_solve_enabled=True, auto_solve_hours=48)
    create_comment(db_session, new_ticket.id, agent_a, "Please confirm the fix", now=at(1))
    before = len(entries(db_session, new_ticket.id))

    scheduler = AutomationScheduler(db_session)
    assert scheduler.run_sweep(now=at(48, 59)).auto_solved == 0

    report = scheduler.run_sweep(now=at(49, 1))
    assert report.auto_solved == 1

    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.SOLVED
    assert new_ticket.solved_at == at(49, 1)

    log = entries(db_session, new_ticket.id)
    assert len(log) == before + 1
    assert log[-1].action == ActivityAction.STATUS_CHANGED
    assert log[-1].user_id is None
    assert log[-1].details == {"oldStatus": "PENDING", "newStatus": "SOLVED", "automation": Rule.AUTO_SOLVE}

    solved_notices = notifications_of(db_session, "TICKET_AUTO_SOLVED")
    assert [n.user_id for n in solved_notices] == ["req-1"]


def test_sweep_is_idempotent(db_session, new_ticket, agent_a):
    enable(db_session, auto_solve_enabled=True, send_pending_ticket_reminder=True)
    create_comment(db_session, new_ticket.id, agent_a, "Please confirm the fix", now=at(1))

    scheduler = AutomationScheduler(db_session)
    first = scheduler.run_sweep(now=at(50))
    count = len(entries(db_session, new_ticket.id))
    second = scheduler.run_sweep(now=at(50))

    assert first.auto_solved == 1
    assert first.reminded == 1
    assert second.auto_solved == 0
    assert second.reminded == 0
    assert len(entries(db_session, new_ticket.id)) == count


def test_requester_reply_after_anchor_blocks_auto_solve(db_session, new_ticket, requester, agent_a):
    enable(db_session, auto_solve_enabled=True)
    create_comment(db_session, new_ticket.id, agent_a, "Please try again", now=at(1))
    create_comment(db_session, new_ticket.id, requester, "Did not help", now=at(2))
    # Agent parks it in PENDING without replying again.
    update_ticket(db_session, new_ticket.id, agent_a, {"status": TicketState.PENDING}, now=at(3))

    report = AutomationScheduler(db_session).run_sweep(now=at(100))

    assert report.auto_solved == 0
    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.PENDING


def test_anchor_falls_back_to_move_into_pending(db_session, new_ticket, agent_a):
    enable(db_session, auto_solve_enabled=True, auto_solve_hours=48)
    update_ticket(db_session, new_ticket.id, agent_a, {"status": TicketState.PENDING}, now=at(5))

    scheduler = AutomationScheduler(db_session)
    assert scheduler.run_sweep(now=at(52)).auto_solved == 0
    assert scheduler.run_sweep(now=at(53)).auto_solved == 1


def test_reminder_is_sent_once_per_pending_episode(db_session, new_ticket, requester, agent_a):
    enable(db_session, send_pending_ticket_reminder=True, pending_ticket_reminder_hours=24)
    create_comment(db_session, new_ticket.id, agent_a, "Can you reboot?", now=at(1))
    db_session.refresh(new_ticket)
    updated_at = new_ticket.updated_at

    scheduler = AutomationScheduler(db_session)
    assert scheduler.run_sweep(now=at(24)).reminded == 0
    assert scheduler.run_sweep(now=at(25, 1)).reminded == 1
    assert scheduler.run_sweep(now=at(26)).reminded == 0

    db_session.refresh(new_ticket)
    assert new_ticket.last_reminded_at == at(25, 1)
    assert new_ticket.updated_at == updated_at
    assert new_ticket.status == TicketState.PENDING

    # A new agent reply starts a new waiting window.
    create_comment(db_session, new_ticket.id, requester, "Rebooted, still broken", now=at(27))
    create_comment(db_session, new_ticket.id, agent_a, "Try the other cable", now=at(28))
    assert scheduler.run_sweep(now=at(52, 30)).reminded == 1

    reminders = notifications_of(db_session, "PENDING_REMINDER")
    assert len(reminders) == 2
    assert {n.user_id for n in reminders} == {"req-1"}


def test_auto_close_after_threshold(db_session, new_ticket, agent_a):
    enable(db_session, auto_close_enabled=True, auto_close_hours=72)
    update_ticket(db_session, new_ticket.id, agent_a, {"status": TicketState.SOLVED}, now=at(1))

    scheduler = AutomationScheduler(db_session)
    assert scheduler.run_sweep(now=at(72)).auto_closed == 0
    assert scheduler.run_sweep(now=at(73)).auto_closed == 1
    assert scheduler.run_sweep(now=at(74)).auto_closed == 0

    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.CLOSED
    assert new_ticket.solved_at == at(1)

    last = entries(db_session, new_ticket.id)[-1]
    assert last.details == {"oldStatus": "SOLVED", "newStatus": "CLOSED", "automation": Rule.AUTO_CLOSE}


def test_reopened_ticket_is_not_closed(db_session, new_ticket, requester, agent_a):
    enable(db_session, auto_close_enabled=True, auto_close_hours=72)
    update_ticket(db_session, new_ticket.id, agent_a, {"status": TicketState.SOLVED}, now=at(1))
    update_ticket(db_session, new_ticket.id, agent_a, {"status": TicketState.OPEN}, now=at(2))

    report = AutomationScheduler(db_session).run_sweep(now=at(200))

    assert report.auto_closed == 0
    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.OPEN


def add_attachment(db, ticket, key, age):
    attachment = Attachment(
        ticket_id=ticket.id,
        filename=f"{key}.png",
        storage_key=key,
        size_bytes=1024,
        created_at=T0 - age,
    )
    db.add(attachment)
    db.commit()
    return attachment


def test_attachment_retention_clears_old_blobs(db_session, new_ticket):
    enable(db_session, auto_delete_attachments_enabled=True, auto_delete_attachments_days=90)
    old = add_attachment(db_session, new_ticket, "old-blob", timedelta(days=91))
    fresh = add_attachment(db_session, new_ticket, "fresh-blob", timedelta(days=10))
    store = RecordingBlobStore()

    scheduler = AutomationScheduler(db_session, blob_store=store)
    assert scheduler.run_sweep(now=T0).attachments_deleted == 1
    assert scheduler.run_sweep(now=T0).attachments_deleted == 0

    assert store.deleted == ["old-blob"]
    db_session.refresh(old)
    db_session.refresh(fresh)
    assert old.blob_deleted_at == T0
    assert fresh.blob_deleted_at is None
    # Metadata rows are kept.
    assert db_session.get(Attachment, old.id) is not None


def test_attachment_retention_waits_for_a_blob_store(db_session, new_ticket):
    enable(db_session, auto_delete_attachments_enabled=True)
    old = add_attachment(db_session, new_ticket, "old-blob", timedelta(days=100))

    report = AutomationScheduler(db_session).run_sweep(now=T0)

    assert report.attachments_deleted == 0
    assert report.failures == []
    db_session.refresh(old)
    assert old.blob_deleted_at is None

    # Once a store is available the same row is picked up.
    store = RecordingBlobStore()
    assert AutomationScheduler(db_session, blob_store=store).run_sweep(now=T0).attachments_deleted == 1
    assert store.deleted == ["old-blob"]


def test_failing_item_does_not_stop_the_sweep(db_session, new_ticket):
    enable(db_session, auto_delete_attachments_enabled=True)
    broken = add_attachment(db_session, new_ticket, "broken-blob", timedelta(days=100))
    healthy = add_attachment(db_session, new_ticket, "healthy-blob", timedelta(days=100))
    store = RecordingBlobStore(failing_keys={"broken-blob"})

    report = AutomationScheduler(db_session, blob_store=store).run_sweep(now=T0)

    assert report.attachments_deleted == 1
    assert len(report.failures) == 1
    failure = report.failures[0]
    assert failure.rule == Rule.ATTACHMENT_RETENTION
    assert failure.attachment_id == broken.id
    assert "storage unavailable" in failure.error

    db_session.refresh(broken)
    db_session.refresh(healthy)
    assert broken.blob_deleted_at is None
    assert healthy.blob_deleted_at == T0


def test_failing_ticket_is_rolled_back_and_reported(db_session, new_ticket, requester, agent_a):
    enable(db_session, auto_solve_enabled=True)
    second = create_ticket(db_session, requester, subject="Email", description="Bounces", now=T0)
    create_comment(db_session, new_ticket.id, agent_a, "Fixed?", now=at(1))
    create_comment(db_session, second.id, agent_a, "Fixed?", now=at(1))

    scheduler = AutomationScheduler(db_session)
    original = scheduler.fsm.transition_if

    def flaky_transition(ticket_id, *args, **kwargs):
        if ticket_id == new_ticket.id:
            raise RuntimeError("lock timeout")
        return original(ticket_id, *args, **kwargs)

    scheduler.fsm.transition_if = flaky_transition
    report = scheduler.run_sweep(now=at(60))

    assert report.auto_solved == 1
    assert [(f.rule, f.ticket_id) for f in report.failures] == [(Rule.AUTO_SOLVE, new_ticket.id)]
    statuses = dict(db_session.execute(select(Ticket.id, Ticket.status)).all())
    assert statuses[new_ticket.id] == TicketState.PENDING
    assert statuses[second.id] == TicketState.SOLVED


@pytest.mark.parametrize(
    "changes",
    [
        {"auto_solve_hours": 0},
        {"pending_ticket_reminder_hours": -5},
        {"auto_delete_attachments_days": True},
        {"auto_close_enabled": "yes"},
        {"unknown_rule": True},
    ],
)
def test_invalid_settings_are_rejected(db_session, changes):
    with pytest.raises(ValidationError):
        SettingsService(db_session).update(changes)
    current = SettingsService(db_session).get()
    assert current.auto_solve_hours == 48
    assert current.pending_ticket_reminder_hours == 24


def test_full_lifecycle_ends_in_auto_solve(db_session, new_ticket, requester, agent_a):
    enable(db_session, auto_solve_enabled=True, auto_solve_hours=48)

    create_comment(db_session, new_ticket.id, agent_a, "Which model is it?", now=at(1))
    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.PENDING
    assert new_ticket.first_response_at == at(1)

    create_comment(db_session, new_ticket.id, requester, "LaserJet 4000", now=at(2))
    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.OPEN

    create_comment(db_session, new_ticket.id, agent_a, "Driver pushed, please retry", now=at(3))
    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.PENDING
    before = len(entries(db_session, new_ticket.id))

    report = AutomationScheduler(db_session).run_sweep(now=at(51))

    assert report.auto_solved == 1
    db_session.refresh(new_ticket)
    assert new_ticket.status == TicketState.SOLVED
    assert new_ticket.solved_at == at(51)
    assert new_ticket.first_response_at == at(1)
    assert len(entries(db_session, new_ticket.id)) == before + 1
