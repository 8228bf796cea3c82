from typing import Any, Dict
import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session
from helpdesk.core.errors import ValidationError
from helpdesk.core.uow import UnitOfWork
from helpdesk.models.automation import AutomationSettings

logger = structlog.get_logger()

TOGGLE_FIELDS = (
    "send_pending_ticket_reminder",
    "auto_solve_enabled",
    "auto_close_enabled",
    "auto_delete_attachments_enabled",
)

THRESHOLD_FIELDS = (
    "pending_ticket_reminder_hours",
    "auto_solve_hours",
    "auto_close_hours",
    "auto_delete_attachments_days",
)


class SettingsService:
    def __init__(self, db: Session):
        self.db = db

    def get(self) -> AutomationSettings:
        """Return the singleton, creating it with defaults on first read."""
        current = self.db.execute(select(AutomationSettings).order_by(AutomationSettings.id)).scalars().first()
        if current is not None:
            return current
        with UnitOfWork(self.db):
            current = AutomationSettings(id=1)
            self.db.add(current)
        self.db.refresh(current)
        return current

    def update(self, changes: Dict[str, Any]) -> AutomationSettings:
        unknown = set(changes) - set(TOGGLE_FIELDS) - set(THRESHOLD_FIELDS)
        if unknown:
            raise ValidationError("Unknown settings", {"fields": sorted(unknown)})

        for field in THRESHOLD_FIELDS:
            if field not in changes:
                continue
            value = changes[field]
            if isinstance(value, bool) or not isinstance(value, int) or value < 1:
                raise ValidationError(f"{field} must be an integer of at least 1", {"field": field, "value": value})

        for field in TOGGLE_FIELDS:
            if field in changes and not isinstance(changes[field], bool):
                raise ValidationError(f"{field} must be a boolean", {"field": field})

        current = self.get()
        with UnitOfWork(self.db):
            for field, value in changes.items():
                setattr(current, field, value)

        self.db.refresh(current)
        logger.info("automation_settings_updated", fields=sorted(changes))
        return current
