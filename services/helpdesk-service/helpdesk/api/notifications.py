from typing import List
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
from helpdesk.api.deps import get_current_actor
from helpdesk.core.actor import Actor, actor_user_id
from helpdesk.core.db import get_db
from helpdesk.schemas.ticket import NotificationResponse
from helpdesk.services import notifications

router = APIRouter(prefix="/notifications", tags=["Notifications"])

@router.get("", response_model=List[NotificationResponse])
def my_notifications(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """
    Events queued for the caller. Delivery (push, email) is handled outside this service.
    """
    return notifications.list_for_user(db, actor_user_id(actor))
