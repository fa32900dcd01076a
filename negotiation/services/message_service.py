import logging
from datetime import timedelta

from flask import current_app

from negotiation import events
from negotiation.extensions import db
from negotiation.models.message import Message
from negotiation.services import chat_service
from negotiation.services.moderation import classify, risk_at_least, sanitize_message, WARNING_MESSAGE
from negotiation.services.notification_service import notify_many
from negotiation.utils.dates import utcnow
from negotiation.utils.db import retry_read_once
from negotiation.utils.exceptions import Forbidden, NotFound, ValidationError
from negotiation.utils.pagination import decode_cursor, encode_cursor

logger = logging.getLogger(__name__)

DIRECTIONS = ("older", "newer")


# ---------------------------------------
# Helpers
# ---------------------------------------

def writable_chat(chat_id, user):
    """Chat the user may post into: participants, or staff on support chats."""
    chat = chat_service.get_chat_for(chat_id, user)
    if chat.is_participant(user.id):
        return chat
    if chat.kind == "support" and user.is_admin:
        chat_service.claim_support_chat(chat, user)
        return chat
    raise Forbidden("Only conversation participants can do this")


def _clean_attachments(attachments):
    if attachments is None:
        return []
    if not isinstance(attachments, (list, tuple)):
        raise ValidationError("attachments must be a list of URLs", {"field": "attachments"})
    cleaned = []
    for a in attachments:
        if not isinstance(a, str) or not a.strip():
            raise ValidationError("attachments must be a list of URLs", {"field": "attachments"})
        cleaned.append(a.strip())
    return cleaned


def _moderate(chat, msg, text):
    """Raise the chat warning when ``text`` pushes its sender's recent messages to medium+ risk.

    Only the sender's own messages are considered, so one participant's text is
    never held against the other. A warning is raised when the new text raises
    the window's risk or is risky on its own; a harmless follow-up to an already
    flagged window leaves a cleared warning cleared.

    Advisory only: a classifier failure is logged and the message still goes out.
    """
    window = current_app.config.get("MODERATION_WINDOW", 25)
    earlier = [
        m.content for m in (
            Message.query
            .filter(Message.chat_id == chat.id, Message.sender_id == msg.sender_id, Message.id != msg.id)
            .order_by(Message.id.desc())
            .limit(max(window - 1, 0))
            .all()[::-1]
        )
        if m.content
    ]
    text = text or ""

    try:
        before = classify(" ".join(earlier))["risk"] if earlier else "none"
        result = classify(" ".join(earlier + [text]))
        alone = classify(text)["risk"] if earlier else result["risk"]
    except Exception:
        logger.exception("Moderation classifier failed for chat %s", chat.id)
        return None

    risk = result["risk"]
    if not risk_at_least(risk, "medium"):
        return None
    if risk_at_least(before, risk) and not risk_at_least(alone, "medium"):
        return None

    ttl = current_app.config.get("WARNING_TTL_DAYS", 7)
    chat.warning_active = True
    chat.warning_risk = risk
    chat.warning_message = result.get("message") or WARNING_MESSAGE
    chat.warning_expires_at = utcnow() + timedelta(days=ttl)
    chat.warning_for_user_id = msg.sender_id

    logger.info("Chat %s flagged %s after message %s from %s", chat.id, risk, msg.id, msg.sender_id)
    return chat.warning_dict()


def _recipients(chat, sender_id):
    return [uid for uid in chat.participant_ids if uid != sender_id]


# ---------------------------------------
# Feed operations
# ---------------------------------------

def send_message(chat_id, sender, content=None, attachments=None):
    """Persist a message. Returns ``(message, warning)``."""
    chat = writable_chat(chat_id, sender)

    content = (content or "").strip()
    attachments = _clean_attachments(attachments)
    if not content and not attachments:
        raise ValidationError("Message content or at least one attachment is required", {"field": "content"})

    msg = Message(
        chat_id=chat.id,
        sender_id=sender.id,
        content=sanitize_message(content) if content else None,
        attachments=attachments,
    )
    db.session.add(msg)
    db.session.flush()

    warning = _moderate(chat, msg, content)
    db.session.commit()

    events.message_sent.send(chat, message=msg)

    notify_many(
        _recipients(chat, sender.id),
        "new_message",
        "New message",
        f"{sender.full_name or 'Someone'} sent you a message",
        details={"chat_id": chat.id, "message_id": msg.id, "order_id": chat.order_id},
        sender_id=sender.id,
    )
    return msg, warning


def _own_message(chat, message_id, user, allow_admin=False):
    msg = Message.query.filter_by(id=message_id, chat_id=chat.id).first()
    if not msg:
        raise NotFound("Message not found")
    if msg.sender_id != user.id and not (allow_admin and user.is_admin):
        raise Forbidden("You can only change your own messages")
    return msg


def edit_message(chat_id, message_id, user, new_content):
    chat = chat_service.get_chat_for(chat_id, user)
    msg = _own_message(chat, message_id, user)

    new_content = (new_content or "").strip()
    if not new_content and not msg.attachments:
        raise ValidationError("content is required", {"field": "content"})

    msg.content = sanitize_message(new_content) if new_content else None
    msg.edited = True
    msg.edited_at = utcnow()
    db.session.flush()

    warning = _moderate(chat, msg, new_content)
    db.session.commit()

    events.message_edited.send(chat, message_id=msg.id)
    return msg, warning


def delete_message(chat_id, message_id, user):
    chat = chat_service.get_chat_for(chat_id, user)
    msg = _own_message(chat, message_id, user, allow_admin=True)

    db.session.delete(msg)
    db.session.commit()

    logger.info("Message %s in chat %s deleted by %s", message_id, chat.id, user.id)
    events.message_deleted.send(chat, message_id=message_id)
    return True


def mark_read(chat_id, reader):
    chat = writable_chat(chat_id, reader)

    updated = Message.query.filter(
        Message.chat_id == chat.id,
        Message.sender_id != reader.id,
        Message.is_read.is_(False)
    ).update({"is_read": True}, synchronize_session=False)

    db.session.commit()

    events.marked_read.send(chat, reader_id=reader.id)
    return updated


@retry_read_once
def _fetch_page(chat_id, anchor_id, direction, limit):
    q = Message.query.filter(Message.chat_id == chat_id)

    if direction == "older":
        if anchor_id is not None:
            q = q.filter(Message.id < anchor_id)
        rows = q.order_by(Message.id.desc()).limit(limit + 1).all()
        has_more = len(rows) > limit
        return list(reversed(rows[:limit])), has_more

    if anchor_id is not None:
        q = q.filter(Message.id > anchor_id)
    rows = q.order_by(Message.id.asc()).limit(limit + 1).all()
    return rows[:limit], len(rows) > limit


def list_messages(chat_id, user, cursor=None, limit=None, direction="older"):
    """One page of history, items oldest -> newest.

    ``older`` pages walk back from the newest message; ``newer`` pages walk
    forward and are what a polling client uses. Cursors pin a message id,
    so concurrent inserts or deletes never shift a page.
    """
    chat = chat_service.get_chat_for(chat_id, user)
    chat_service.expire_warning(chat)

    max_limit = current_app.config.get("MESSAGES_PAGE_MAX", 100)
    if limit is None:
        limit = current_app.config.get("MESSAGES_PAGE_DEFAULT", 50)
    limit = min(max(int(limit), 1), max_limit)

    anchor_id = None
    if cursor:
        anchor_id, direction = decode_cursor(cursor, chat.id)
    elif direction not in DIRECTIONS:
        raise ValidationError("direction must be 'older' or 'newer'", {"field": "direction"})

    items, has_more = _fetch_page(chat.id, anchor_id, direction, limit)

    if direction == "older":
        next_cursor = encode_cursor(chat.id, items[0].id, "older") if has_more else None
    else:
        newest = items[-1].id if items else (anchor_id or 0)
        next_cursor = encode_cursor(chat.id, newest, "newer")

    page = {
        "items": [m.to_dict() for m in items],
        "pagination": {
            "cursor": next_cursor,
            "has_more": has_more,
            "limit": limit,
            "direction": direction,
        },
        "warning": chat.warning_dict(),
    }

    if cursor is None and direction == "older":
        newest = items[-1].id if items else 0
        page["poll_cursor"] = encode_cursor(chat.id, newest, "newer")

    return page
