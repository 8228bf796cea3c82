from typing import Optional
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session
from helpdesk.core.actor import Actor, load_actor, require_admin
from helpdesk.core.db import get_db
from helpdesk.core.errors import NotFound

def get_current_actor(
    x_user_id: Optional[str] = Header(None, description="User id set by the authenticating gateway."),
    db: Session = Depends(get_db),
) -> Actor:
    """
    Resolve the caller from the X-User-Id header. Authentication happens upstream;
    this only maps the mirrored user to an Actor.
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    try:
        return load_actor(db, x_user_id)
    except NotFound:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unknown user")

def get_admin_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    require_admin(actor)
    return actor
