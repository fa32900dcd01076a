"""Cross-ledger flows: the bid-to-conversation handshake and chat opening."""
import logging

from negotiation import events
from negotiation.extensions import db
from negotiation.models.bid import Bid
from negotiation.models.user import User
from negotiation.services import bid_service, chat_service, message_service
from negotiation.services.notification_service import notify
from negotiation.services.order_service import can_view, get_order_or_404
from negotiation.utils.exceptions import Forbidden, ValidationError

logger = logging.getLogger(__name__)


def submit_bid(order_id, writer, amount, message=None, deadline=None):
    """Place a bid, open its conversation and post the proposal.

    The bid, the chat and the bid's chat link commit together, so a failure
    leaves no half-linked bid behind.

    Returns ``(bid, chat, warning)``; ``warning`` is set when the proposal
    itself tripped moderation.
    """
    try:
        bid = bid_service.place_bid(order_id, writer, amount, message=message, deadline=deadline, commit=False)
        order = bid.order
        known = chat_service.find_order_chat(order.id, order.client_id, writer.id)
        chat = chat_service.get_or_create_chat(order.id, order.client_id, writer.id, commit=False)
        bid.chat_id = chat.id
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    if known is None:
        events.chat_created.send(chat)

    warning = None
    if bid.message:
        _, warning = message_service.send_message(chat.id, writer, content=bid.message)

    notify(
        order.client_id,
        "new_bid",
        "New Bid Received",
        f"{writer.full_name or 'A writer'} placed a bid of {bid.amount} on {order.id} ({order.title}).",
        details={"order_id": order.id, "bid_id": bid.id, "chat_id": chat.id},
        sender_id=writer.id,
    )
    return bid, chat, warning


def open_conversation(user, order_id, client_id=None, writer_id=None):
    """Resolve the (client, writer) pair from the caller's role and upsert the chat."""
    if not order_id:
        raise ValidationError("order_id is required", {"field": "order_id"})

    order = get_order_or_404(order_id)

    if user.role == "client":
        client_id = user.id
        if not writer_id:
            raise ValidationError("writer_id is required when client starts chat", {"field": "writer_id"})
    elif user.role == "writer":
        # a writer may only talk about orders they can see or have bid on
        if not can_view(order, user) and not Bid.query.filter_by(order_id=order.id, user_id=user.id).first():
            raise Forbidden("You cannot start a conversation on this order")
        writer_id = user.id
        client_id = client_id or order.client_id
    elif user.is_admin:
        client_id = client_id or order.client_id
        if not writer_id:
            raise ValidationError("writer_id is required", {"field": "writer_id"})
    else:
        raise Forbidden("We could not sufficiently identify you")

    if not db.session.get(User, client_id):
        raise ValidationError("client_id does not reference a user", {"field": "client_id"})

    return chat_service.get_or_create_chat(order.id, client_id, writer_id)
