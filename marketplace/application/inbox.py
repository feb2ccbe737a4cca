from sqlalchemy import select, update
from sqlalchemy.orm import Session
from typing import Optional

from marketplace.domain.models import Notification


class InboxService:
    """In-app notifications of one user, as stored by the notification sink."""

    def __init__(self, db: Session):
        self.db = db

    def list_for(self, user_id: int, unread_only: bool = False, limit: int = 20) -> list[Notification]:
        query = (
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc(), Notification.id.desc())
            .limit(limit)
        )
        if unread_only:
            query = query.where(Notification.read.is_(False))
        return list(self.db.execute(query).scalars())

    def mark_read(self, user_id: int, notification_id: Optional[int] = None) -> int:
        """Mark one notification (or all of them) read. Returns the rows changed."""
        query = update(Notification).where(Notification.user_id == user_id, Notification.read.is_(False))
        if notification_id is not None:
            query = query.where(Notification.id == notification_id)
        result = self.db.execute(query.values(read=True))
        self.db.commit()
        return result.rowcount
