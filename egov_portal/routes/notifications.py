from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..auth.security import get_current_actor
from ..db import get_db
from ..services.notifications import list_notifications
from ..services.permissions import Actor
from .serializers import serialize_notification


router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
def my_notifications(
    limit: Optional[int] = 50,
    db: Session = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Notifications for the signed-in user, newest first."""
    limit = min(max(1, limit or 50), 200)
    rows = list_notifications(db, actor.id, limit=limit)
    return {"notifications": [serialize_notification(n) for n in rows]}
