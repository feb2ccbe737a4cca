from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from marketplace.application.inbox import InboxService
from marketplace.application.schemas import Actor, NotificationRead, ReadUpdate
from marketplace.infrastructure.db import get_db
from .auth import current_user

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("/me", response_model=list[NotificationRead])
def my_notifications(unread_only: bool = False, limit: int = Query(20, ge=1, le=100),
                     actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    return InboxService(db).list_for(actor.id, unread_only, limit)


@router.patch("/read-all", response_model=ReadUpdate)
def mark_all_read(actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    return ReadUpdate(updated=InboxService(db).mark_read(actor.id))


@router.patch("/{notification_id}/read", response_model=ReadUpdate)
def mark_read(notification_id: int, actor: Actor = Depends(current_user), db: Session = Depends(get_db)):
    return ReadUpdate(updated=InboxService(db).mark_read(actor.id, notification_id))
