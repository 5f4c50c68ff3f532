"""
Request history service.
Append-only log of lifecycle transitions, written in the caller's transaction.
"""
import uuid
from typing import List, Optional

from sqlalchemy.orm import Session

from ..models.models import RequestAction, RequestEvent


def record_event(
    db: Session,
    request_id: uuid.UUID,
    action: RequestAction,
    actor_id: Optional[uuid.UUID] = None,
    detail: Optional[str] = None,
) -> RequestEvent:
    """
    Append a history entry for a request.

    Args:
        db: Database session (not committed here)
        request_id: Request the transition applies to
        action: Transition performed
        actor_id: User who performed it
        detail: Free text such as officer notes or a rejection reason

    Returns:
        The pending RequestEvent
    """
    event = RequestEvent(request_id=request_id, action=action, actor_id=actor_id, detail=detail)
    db.add(event)
    return event


def get_history(db: Session, request_id: uuid.UUID) -> List[RequestEvent]:
    return (
        db.query(RequestEvent)
        .filter(RequestEvent.request_id == request_id)
        .order_by(RequestEvent.created_at.asc())
        .all()
    )
