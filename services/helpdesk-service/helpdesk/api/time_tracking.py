from typing import List, Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from helpdesk.api.deps import get_current_actor
from helpdesk.core.actor import Actor, require_staff
from helpdesk.core.db import get_db
from helpdesk.schemas.agent import TimeEntryResponse, TimeRecord, TimerStart
from helpdesk.services.time_tracking import TimeTrackingLedger

router = APIRouter(prefix="/time-tracking", tags=["Time Tracking"])

@router.post("/start", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def start_timer(request: TimerStart, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return TimeTrackingLedger(db).start_timer(request.ticket_id, actor)


@router.post("/{entry_id}/stop", response_model=TimeEntryResponse)
def stop_timer(entry_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return TimeTrackingLedger(db).stop_timer(entry_id, actor)


@router.post("/record", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def record_time(request: TimeRecord, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """
    Add a finished span of work without running a timer.
    """
    return TimeTrackingLedger(db).record(request.ticket_id, actor, request.duration)


@router.get("/ticket/{ticket_id}", response_model=List[TimeEntryResponse])
def ticket_entries(ticket_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    require_staff(actor)
    return TimeTrackingLedger(db).entries_for_ticket(ticket_id)


@router.get("/active/{ticket_id}", response_model=Optional[TimeEntryResponse])
def active_timer(ticket_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    require_staff(actor)
    return TimeTrackingLedger(db).active_timer(ticket_id, actor.user_id)
