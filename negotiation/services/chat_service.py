import logging

from sqlalchemy import func, or_
from sqlalchemy.exc import IntegrityError

from negotiation import events
from negotiation.extensions import db
from negotiation.models.chat import Chat, order_pair_key, support_pair_key
from negotiation.models.message import Message
from negotiation.models.order import Order
from negotiation.models.user import User
from negotiation.utils.dates import utcnow, isoformat
from negotiation.utils.db import retry_read_once
from negotiation.utils.exceptions import Conflict, Forbidden, NotFound, ValidationError

logger = logging.getLogger(__name__)


def _find_chat(pair_key):
    return Chat.query.filter_by(pair_key=pair_key).first()


def find_order_chat(order_id, client_id, writer_id):
    return _find_chat(order_pair_key(order_id, client_id, writer_id))


def _insert_chat(chat, commit=True):
    """Insert ``chat``; if another request won the race, return its row.

    With ``commit=False`` the insert runs in a savepoint so a lost race
    leaves the caller's pending work intact.
    """
    try:
        if commit:
            db.session.add(chat)
            db.session.commit()
        else:
            with db.session.begin_nested():
                db.session.add(chat)
    except IntegrityError:
        if commit:
            db.session.rollback()
        existing = _find_chat(chat.pair_key)
        if existing is None:
            raise Conflict("Conversation could not be created, please retry")
        logger.info("Chat %s created concurrently, reusing %s", chat.pair_key, existing.id)
        return existing

    logger.info("Created %s chat %s (%s)", chat.kind, chat.id, chat.pair_key)
    if commit:
        events.chat_created.send(chat)
    return chat


# ---------------------------------------
# Order conversations
# ---------------------------------------

def get_or_create_chat(order_id, client_id, writer_id, commit=True):
    """Idempotent upsert of the conversation for (order, client, writer)."""
    key = order_pair_key(order_id, client_id, writer_id)
    chat = _find_chat(key)
    if chat:
        return chat

    order = db.session.get(Order, order_id)
    if not order:
        raise NotFound("Order not found")
    if order.client_id != client_id:
        raise ValidationError("client_id does not own this order", {"field": "client_id"})

    writer = db.session.get(User, writer_id)
    if not writer or writer.role != "writer":
        raise ValidationError("writer_id must reference a writer", {"field": "writer_id"})

    return _insert_chat(Chat(
        kind="order",
        pair_key=key,
        order_id=order_id,
        client_id=client_id,
        writer_id=writer_id,
    ), commit=commit)


# ---------------------------------------
# Support conversations
# ---------------------------------------

def pick_support_staff():
    """Least-loaded admin by open support chats; ties broken by id."""
    load = func.count(Chat.id)
    row = (
        db.session.query(User.id, load)
        .outerjoin(Chat, (Chat.staff_id == User.id) & (Chat.kind == "support"))
        .filter(User.role == "admin")
        .group_by(User.id)
        .order_by(load.asc(), User.id.asc())
        .first()
    )
    return row[0] if row else None


def get_or_create_support_chat(user):
    if user.role == "admin":
        raise ValidationError("Staff members cannot open support chats")

    key = support_pair_key(user.id)
    chat = _find_chat(key)
    if chat:
        return chat

    staff_id = pick_support_staff()
    if staff_id is None:
        logger.warning("No staff available, support chat for %s left unassigned", user.id)

    return _insert_chat(Chat(
        kind="support",
        pair_key=key,
        client_id=user.id if user.role == "client" else None,
        writer_id=user.id if user.role == "writer" else None,
        staff_id=staff_id,
    ))


def claim_support_chat(chat, staff):
    """First admin to act on an unassigned support chat becomes its staff."""
    if chat.kind == "support" and chat.staff_id is None and staff.is_admin:
        chat.staff_id = staff.id
        logger.info("Support chat %s claimed by %s", chat.id, staff.id)


# ---------------------------------------
# Access & reads
# ---------------------------------------

def get_chat_for(chat_id, user):
    chat = db.session.get(Chat, chat_id)
    if not chat:
        raise NotFound("Chat not found")
    if chat.is_participant(user.id):
        return chat
    if user.is_admin:
        return chat
    raise Forbidden("You are not a participant in this chat")


def expire_warning(chat):
    if chat.warning_active and chat.warning_expires_at and chat.warning_expires_at < utcnow():
        chat.clear_warning()
        db.session.commit()


def unread_count(chat_id, user_id):
    return Message.query.filter(
        Message.chat_id == chat_id,
        Message.sender_id != user_id,
        Message.is_read.is_(False)
    ).count()


def participant_filter(user_id):
    return or_(Chat.client_id == user_id, Chat.writer_id == user_id, Chat.staff_id == user_id)


def total_unread(user_id):
    chat_ids = db.session.query(Chat.id).filter(participant_filter(user_id))
    return Message.query.filter(
        Message.chat_id.in_(chat_ids),
        Message.sender_id != user_id,
        Message.is_read.is_(False)
    ).count()


def last_message(chat_id):
    return (
        Message.query.filter_by(chat_id=chat_id)
        .order_by(Message.id.desc())
        .first()
    )


def serialize_chat(chat, viewer_id):
    expire_warning(chat)
    last_msg = last_message(chat.id)
    other_user = chat.other_participant(viewer_id)

    return {
        "id": chat.id,
        "kind": chat.kind,
        "order_id": chat.order_id,
        "order_title": chat.order.title if chat.order else None,
        "client_id": chat.client_id,
        "writer_id": chat.writer_id,
        "staff_id": chat.staff_id,
        "created_at": isoformat(chat.created_at),
        "other_user": other_user.public_dict() if other_user else None,
        "warning": chat.warning_dict(),
        "last_message": {
            "id": last_msg.id,
            "content": last_msg.content,
            "sent_at": isoformat(last_msg.created_at),
            "is_read": last_msg.is_read,
            "sender_id": last_msg.sender_id,
        } if last_msg else None,
        "unread_count": unread_count(chat.id, viewer_id),
    }


@retry_read_once
def _chat_page(q, page, limit):
    total = q.count()
    chats = q.offset((page - 1) * limit).limit(limit).all()
    return chats, {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
        "has_more": page * limit < total,
    }


def list_chats(user_id, page, limit):
    q = (
        Chat.query
        .filter(participant_filter(user_id))
        .order_by(Chat.created_at.desc(), Chat.id.desc())
    )
    # serialize_chat may commit an expired warning, so it runs outside the retried read
    chats, pagination = _chat_page(q, page, limit)
    return [serialize_chat(c, user_id) for c in chats], pagination


def clear_warning(chat_id, actor):
    if not actor.is_admin:
        raise Forbidden("Only staff can clear chat warnings")

    chat = db.session.get(Chat, chat_id)
    if not chat:
        raise NotFound("Chat not found")

    chat.clear_warning()
    db.session.commit()
    logger.info("Warning on chat %s cleared by %s", chat.id, actor.id)
    return chat


def list_support_chats(actor, page, limit):
    """Staff inbox: every support conversation, newest first."""
    if not actor.is_admin:
        raise Forbidden("Admins only")

    q = Chat.query.filter(Chat.kind == "support").order_by(Chat.created_at.desc(), Chat.id.desc())
    chats, pagination = _chat_page(q, page, limit)
    return [serialize_chat(c, actor.id) for c in chats], pagination
