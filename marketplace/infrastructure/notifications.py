from sqlalchemy.orm import sessionmaker

from marketplace.application.side_effects import Notice
from marketplace.domain.models import Notification


class DatabaseNotificationSink:
    """Stores in-app notifications. Uses its own session since it runs after the request's session is gone."""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def notify(self, user_id: int, notice: Notice) -> None:
        with self.session_factory() as db:
            db.add(Notification(
                user_id=user_id,
                type=notice.type,
                title=notice.title,
                message=notice.message,
                data=notice.data or None,
            ))
            db.commit()
