from typing import Optional
from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from helpdesk.api.deps import get_admin_actor, get_current_actor
from helpdesk.core.actor import Actor, require_staff
from helpdesk.core.db import get_db
from helpdesk.schemas.agent import CleanupResponse, SessionResponse
from helpdesk.services.sessions import SessionTracker

router = APIRouter(prefix="/sessions", tags=["Sessions"])

@router.post("/start", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def start_session(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    """
    Open a working session for the calling agent. A session left open from an
    earlier login is closed first.
    """
    return SessionTracker(db).start(actor)


@router.post("/{session_id}/end", response_model=SessionResponse)
def end_session(session_id: int, db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    return SessionTracker(db).end(session_id, actor)


@router.get("/current", response_model=Optional[SessionResponse])
def current_session(db: Session = Depends(get_db), actor: Actor = Depends(get_current_actor)):
    require_staff(actor)
    return SessionTracker(db).current(actor.user_id)


@router.post("/cleanup-old", response_model=CleanupResponse)
def cleanup_old_sessions(db: Session = Depends(get_db), actor: Actor = Depends(get_admin_actor)):
    """
    Force-close sessions whose logout signal never arrived.
    """
    return CleanupResponse(closed_count=SessionTracker(db).cleanup_old())
