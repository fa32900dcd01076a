import logging

from sqlalchemy.exc import SQLAlchemyError

from negotiation.extensions import db
from negotiation.models.notification import Notification

logger = logging.getLogger(__name__)


def notify(user_id, event, title, message, details=None, sender_id=None):
    """Fire-and-forget: persist a notification, never raise into the caller.

    Call only after the business transaction has been committed.
    """
    return notify_many([user_id], event, title, message, details, sender_id)


def notify_many(user_ids, event, title, message, details=None, sender_id=None):
    recipients = [uid for uid in dict.fromkeys(user_ids) if uid]
    if not recipients:
        return 0

    try:
        for uid in recipients:
            db.session.add(Notification(
                sender_id=sender_id,
                user_id=uid,
                type=event,
                title=title,
                message=message,
                details=details,
            ))
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Failed to dispatch %s notification to %s", event, recipients)
        return 0

    logger.debug("Dispatched %s to %d user(s)", event, len(recipients))
    return len(recipients)


def list_notifications(user_id, is_read=None):
    q = Notification.query.filter_by(user_id=user_id)
    if is_read is not None:
        q = q.filter_by(is_read=is_read)
    return q.order_by(Notification.created_at.desc())


def mark_all_read_for_user(user_id):
    updated = Notification.query.filter_by(user_id=user_id, is_read=False).update({"is_read": True})
    db.session.commit()
    return updated
