from pydantic import BaseModel, ConfigDict
from typing import Optional, List

class AutomationSettingsResponse(BaseModel):
    send_pending_ticket_reminder: bool
    pending_ticket_reminder_hours: int
    auto_solve_enabled: bool
    auto_solve_hours: int
    auto_close_enabled: bool
    auto_close_hours: int
    auto_delete_attachments_enabled: bool
    auto_delete_attachments_days: int

    model_config = ConfigDict(from_attributes=True)

class AutomationSettingsUpdate(BaseModel):
    # Threshold bounds are enforced by SettingsService so they surface as 400s.
    send_pending_ticket_reminder: Optional[bool] = None
    pending_ticket_reminder_hours: Optional[int] = None
    auto_solve_enabled: Optional[bool] = None
    auto_solve_hours: Optional[int] = None
    auto_close_enabled: Optional[bool] = None
    auto_close_hours: Optional[int] = None
    auto_delete_attachments_enabled: Optional[bool] = None
    auto_delete_attachments_days: Optional[int] = None

class SweepFailureResponse(BaseModel):
    rule: str
    error: str
    ticket_id: Optional[int] = None
    attachment_id: Optional[int] = None

    model_config = ConfigDict(from_attributes=True)

class SweepReportResponse(BaseModel):
    reminded: int
    auto_solved: int
    auto_closed: int
    attachments_deleted: int
    failures: List[SweepFailureResponse] = []

    model_config = ConfigDict(from_attributes=True)
