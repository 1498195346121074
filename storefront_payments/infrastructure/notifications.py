"""Fan-out of payment events to every administrator's notification feed"""

import logging

from sqlalchemy.orm import Session

from storefront_payments.domain.models import AdminNotification
from storefront_payments.infrastructure.database.repositories import NotificationRepository, UserRepository

logger = logging.getLogger(__name__)


class NotificationSink:
    """Writes one notification row per admin and commits it on its own"""

    def __init__(self, db: Session):
        self.db = db

    def notify_admins(self, notification: AdminNotification) -> int:
        admin_ids = UserRepository(self.db).get_admin_ids()
        if not admin_ids:
            logger.info("No administrators to notify", extra={"type": notification.type})
            return 0

        NotificationRepository(self.db).create_many(
            admin_ids,
            type=notification.type,
            title=notification.title,
            body=notification.body,
            link=notification.link,
            payload=notification.payload,
        )
        self.db.commit()
        return len(admin_ids)
