from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from helpdesk.api.deps import get_admin_actor
from helpdesk.core.actor import Actor
from helpdesk.core.db import get_db
from helpdesk.schemas.automation import AutomationSettingsResponse, AutomationSettingsUpdate, SweepReportResponse
from helpdesk.services.automation import AutomationScheduler
from helpdesk.services.settings import SettingsService
from helpdesk.services.storage import resolve_blob_store

router = APIRouter(tags=["Automation"])

@router.get("/settings", response_model=AutomationSettingsResponse)
def get_settings(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Automation rule toggles and thresholds. Defaults are created on first read.
    """
    return SettingsService(db).get()


@router.patch("/settings", response_model=AutomationSettingsResponse)
def update_settings(update_data: AutomationSettingsUpdate, db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Update rule toggles and thresholds. Thresholds below 1 are rejected with 400.
    """
    return SettingsService(db).update(update_data.model_dump(exclude_unset=True))


@router.post("/automation/sweep", response_model=SweepReportResponse)
def run_sweep(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Run one automation sweep now instead of waiting for the scheduler.
    Per-ticket failures are reported in the body, not raised.
    """
    return AutomationScheduler(db, blob_store=resolve_blob_store()).run_sweep()
