from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.orm import Session
from helpdesk.api.deps import get_admin_actor
from helpdesk.core.actor import Actor
from helpdesk.core.db import get_db
from helpdesk.models.ticket import ActivityLog
from helpdesk.schemas.ticket import ActivityLogResponse

router = APIRouter(prefix="/audit", tags=["Audit"])

@router.get("", response_model=List[ActivityLogResponse])
def get_activity_logs(
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=1000),
    ticket_id: Optional[int] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_admin_actor),
):
    """
    Retrieve the immutable activity log across tickets, newest first, with optional filtering.
    """
    query = select(ActivityLog)

    if ticket_id is not None:
        query = query.where(ActivityLog.ticket_id == ticket_id)
    if user_id is not None:
        query = query.where(ActivityLog.user_id == user_id)
    if action is not None:
        query = query.where(ActivityLog.action == action)

    query = query.order_by(ActivityLog.created_at.desc(), ActivityLog.ticket_id, ActivityLog.sequence.desc())
    return list(db.execute(query.offset(skip).limit(limit)).scalars())
