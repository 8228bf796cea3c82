from sqlalchemy import Column, Integer, Boolean, DateTime
from helpdesk.core.db import Base
from helpdesk.core.timeutil import utcnow

class AutomationSettings(Base):
    """
    Singleton row holding the automation rule toggles and thresholds.
    """
    __tablename__ = "automation_settings"

    id = Column(Integer, primary_key=True)

    send_pending_ticket_reminder = Column(Boolean, nullable=False, default=False)
    pending_ticket_reminder_hours = Column(Integer, nullable=False, default=24)

    auto_solve_enabled = Column(Boolean, nullable=False, default=False)
    auto_solve_hours = Column(Integer, nullable=False, default=48)

    auto_close_enabled = Column(Boolean, nullable=False, default=False)
    auto_close_hours = Column(Integer, nullable=False, default=72)

    auto_delete_attachments_enabled = Column(Boolean, nullable=False, default=False)
    auto_delete_attachments_days = Column(Integer, nullable=False, default=90)

    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
