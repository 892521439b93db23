"""
Notification & Audit Service

Best-effort sinks used after a decision has been persisted:
- MongoNotifier: in-app notification documents (email/SMS fan-out is
  done by the delivery workers that read this collection)
- MongoAuditLog: append-only audit trail

A failure here is logged and dropped. It must never undo a score
or a round decision that has already been written.
"""

import logging

from pymongo.collection import Collection
from pymongo.errors import PyMongoError

from assessment_engine.db.mongodb import get_collection, COLLECTIONS
from assessment_engine.services.interfaces import AuditLog, Notifier
from assessment_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)


class MongoNotifier(Notifier):

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["notifications"])

    def notify(self, recipient_id: str, title: str, message: str, type: str = "system", link: str = "") -> None:
        try:
            self.collection.insert_one({
                "recipient_id": recipient_id,
                "title": title,
                "message": message,
                "type": type,
                "link": link,
                "read": False,
                "created_at": utcnow()
            })
        except PyMongoError:
            logger.exception("Notify error for user %s", recipient_id)


class MongoAuditLog(AuditLog):

    def __init__(self):
        self.collection: Collection = get_collection(COLLECTIONS["audit_logs"])

    def record(self, action: str, actor_id: str, detail: str) -> None:
        try:
            self.collection.insert_one({
                "action": action.upper(),
                "performed_by": actor_id,
                "details": detail,
                "created_at": utcnow()
            })
        except PyMongoError:
            logger.exception("Audit log write failed for action %s", action)


def notify_safely(notifier: Notifier, recipient_id: str, title: str, message: str, type: str = "system") -> None:
    """Call any Notifier without letting its failure reach the caller."""
    try:
        notifier.notify(recipient_id, title, message, type=type)
    except Exception:
        logger.exception("Notification to %s dropped", recipient_id)


def audit_safely(audit: AuditLog, action: str, actor_id: str, detail: str) -> None:
    """Call any AuditLog without letting its failure reach the caller."""
    try:
        audit.record(action, actor_id, detail)
    except Exception:
        logger.exception("Audit record %s dropped", action)
