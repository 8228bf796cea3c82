from sqlalchemy import DDL, Column, Integer, String, Boolean, DateTime, ForeignKey, Text, JSON, UniqueConstraint, Index, event
from helpdesk.core.db import Base
from helpdesk.core.timeutil import utcnow

class Ticket(Base):
    __tablename__ = "tickets"

    id = Column(Integer, primary_key=True, index=True)
    ticket_number = Column(Integer, nullable=False, unique=True, index=True)
    subject = Column(String(500), nullable=False)
    description = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="NEW", index=True)
    priority = Column(String(20), nullable=False, default="NORMAL")

    requester_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    assignee_id = Column(String(64), ForeignKey("users.id"), nullable=True, index=True)
    category_id = Column(String(64), nullable=True, index=True)

    created_at = Column(DateTime, default=utcnow, index=True)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    first_response_at = Column(DateTime, nullable=True)
    solved_at = Column(DateTime, nullable=True)

    # When the last pending reminder was queued; a later agent reply starts a new episode
    last_reminded_at = Column(DateTime, nullable=True)

class TicketCounter(Base):
    """
    Single-row allocator for ticket numbers. Incrementing the row takes its
    lock, so concurrent creates are handed distinct numbers in commit order.
    """
    __tablename__ = "ticket_counters"

    id = Column(Integer, primary_key=True)
    last_number = Column(Integer, nullable=False, default=0)

event.listen(
    TicketCounter.__table__,
    "after_create",
    DDL("INSERT INTO ticket_counters (id, last_number) VALUES (1, 0)"),
)

class Comment(Base):
    """
    Immutable message on a ticket. author_role is the author's role when the comment was written.
    """
    __tablename__ = "comments"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(String(64), ForeignKey("users.id"), nullable=False, index=True)
    author_role = Column(String(20), nullable=False)
    body = Column(Text, nullable=False)
    is_internal = Column(Boolean, nullable=False, default=False)
    is_system = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, index=True)

class Mention(Base):
    __tablename__ = "mentions"
    __table_args__ = (UniqueConstraint("comment_id", "user_id", name="uq_mentions_comment_user"),)

    id = Column(Integer, primary_key=True, index=True)
    comment_id = Column(Integer, ForeignKey("comments.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    created_at = Column(DateTime, default=utcnow)

class ActivityLog(Base):
    """
    Append-only record of ticket-affecting events, ordered by (created_at, sequence).
    """
    __tablename__ = "activity_logs"
    __table_args__ = (
        UniqueConstraint("ticket_id", "sequence", name="uq_activity_logs_ticket_sequence"),
        Index("ix_activity_logs_ticket_order", "ticket_id", "created_at", "sequence"),
    )

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String(64), nullable=True)
    action = Column(String(100), nullable=False, index=True)
    details = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    sequence = Column(Integer, nullable=False)

class Attachment(Base):
    """
    Metadata for a blob kept in external storage. The retention sweep only clears the blob.
    """
    __tablename__ = "attachments"

    id = Column(Integer, primary_key=True, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=False, index=True)
    comment_id = Column(Integer, ForeignKey("comments.id", ondelete="SET NULL"), nullable=True)
    filename = Column(String(255), nullable=False)
    storage_key = Column(String(512), nullable=False)
    size_bytes = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, default=utcnow, index=True)
    blob_deleted_at = Column(DateTime, nullable=True)

class Notification(Base):
    """
    Outbox of events for the external notifier. Rows are written in the same
    transaction as the change that caused them.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    ticket_id = Column(Integer, ForeignKey("tickets.id", ondelete="CASCADE"), nullable=True, index=True)
    comment_id = Column(Integer, ForeignKey("comments.id", ondelete="SET NULL"), nullable=True)
    type = Column(String(50), nullable=False)
    title = Column(String(255), nullable=False)
    message = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, index=True)
