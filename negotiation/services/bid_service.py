import logging
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from negotiation import events
from negotiation.extensions import db
from negotiation.models.bid import Bid, ACTIVE_BID_STATUSES
from negotiation.models.declined_order import DeclinedOrder
from negotiation.models.order import Order
from negotiation.services.moderation import sanitize_message
from negotiation.services.notification_service import notify, notify_many
from negotiation.services.order_service import get_order_or_404, is_declined, require_owner
from negotiation.services.state_machine import BidStatus, OrderStatus, bid_machine
from negotiation.utils.dates import utcnow, parse_datetime
from negotiation.utils.exceptions import Forbidden, InvalidState, NotFound, ValidationError
from negotiation.utils.pagination import paginate_query

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Validation
# ------------------------------------------------------------

def parse_amount(value):
    try:
        amount = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Bid amount must be numeric", {"field": "amount"})
    if not amount.is_finite():
        raise ValidationError("Bid amount must be numeric", {"field": "amount"})
    return amount


def validate_terms(order, amount, deadline=None):
    """Check bid terms against the order as it stands now."""
    if amount <= 0:
        raise ValidationError("Bid amount must be greater than zero", {"field": "amount"})
    if amount > order.budget:
        raise ValidationError(
            "Bid exceeds client budget",
            {"field": "amount", "max": float(order.budget)},
        )

    if deadline is not None:
        if deadline <= utcnow():
            raise ValidationError("Proposed deadline must be in the future", {"field": "deadline"})
        if deadline > order.deadline:
            raise ValidationError(
                "Proposed deadline is later than the order deadline",
                {"field": "deadline"},
            )


def _parse_deadline(value):
    try:
        return parse_datetime(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError("Invalid deadline format (use ISO 8601)", {"field": "deadline"})


def _require_open_order(order):
    if order.status != OrderStatus.IN_PROGRESS or order.writer_id is not None:
        raise InvalidState("This order is not open for bids", code="ORDER_NOT_OPEN")
    if order.deadline <= utcnow():
        raise InvalidState("This order's deadline has passed", code="ORDER_EXPIRED")


def get_bid_or_404(bid_id, for_update=False):
    q = Bid.query.filter_by(id=bid_id)
    if for_update:
        q = q.with_for_update()
    bid = q.first()
    if not bid:
        raise NotFound("Bid not found")
    return bid


def _own_bid(bid_id, writer):
    bid = get_bid_or_404(bid_id)
    if bid.user_id != writer.id:
        raise Forbidden("You can only change your own bids")
    return bid


def active_bid_for(order_id, writer_id):
    return Bid.query.filter(
        Bid.order_id == order_id,
        Bid.user_id == writer_id,
        Bid.status.in_(ACTIVE_BID_STATUSES),
    ).first()


# ------------------------------------------------------------
# Writer operations
# ------------------------------------------------------------

def _clean_message(message):
    return sanitize_message(message.strip()) if message and message.strip() else message


def place_bid(order_id, writer, amount, message=None, deadline=None, commit=True):
    """Insert a writer's bid. Conversation and notifications are the caller's job.

    With ``commit=False`` the bid is only flushed, so the caller can finish
    its own work in the same transaction.
    """
    if writer.role != "writer":
        raise Forbidden("Only writers can place bids")

    order = get_order_or_404(order_id)
    _require_open_order(order)

    amount = parse_amount(amount)
    deadline = _parse_deadline(deadline)
    validate_terms(order, amount, deadline)

    if is_declined(order.id, writer.id):
        raise ValidationError(
            "You declined or withdrew from this order and cannot bid on it again",
            code="ORDER_DECLINED",
        )

    if active_bid_for(order.id, writer.id):
        raise ValidationError("You already have an active bid on this order", code="DUPLICATE_BID")

    bid = Bid(
        order_id=order.id,
        user_id=writer.id,
        amount=amount,
        deadline=deadline,
        message=_clean_message(message),
    )
    db.session.add(bid)
    try:
        if commit:
            db.session.commit()
        else:
            db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ValidationError("You already have an active bid on this order", code="DUPLICATE_BID")

    logger.info("Bid %s placed on %s by %s (%s)", bid.id, order.id, writer.id, amount)
    return bid


def edit_bid(bid_id, writer, patch):
    bid = _own_bid(bid_id, writer)
    if not bid.is_active:
        raise InvalidState("Cannot modify bid after it's closed")

    order = bid.order
    _require_open_order(order)

    amount = parse_amount(patch["amount"]) if patch.get("amount") is not None else bid.amount
    deadline = _parse_deadline(patch["deadline"]) if "deadline" in patch else bid.deadline
    validate_terms(order, amount, deadline)

    bid.amount = amount
    bid.deadline = deadline
    if patch.get("message") is not None:
        bid.message = _clean_message(patch["message"])

    if bid.status == BidStatus.UNCONFIRMED:
        bid_machine.apply(bid, BidStatus.OPEN)

    db.session.commit()
    return bid


def confirm_bid(bid_id, writer):
    bid = _own_bid(bid_id, writer)
    if bid.status != BidStatus.UNCONFIRMED:
        raise InvalidState("This bid does not require confirmation")

    order = bid.order
    _require_open_order(order)
    validate_terms(order, bid.amount, bid.deadline)

    bid_machine.apply(bid, BidStatus.OPEN)
    db.session.commit()
    return bid


def cancel_bid(bid_id, writer):
    bid = _own_bid(bid_id, writer)
    if not bid.is_active:
        raise InvalidState("Only open bids can be withdrawn")

    bid_machine.apply(bid, BidStatus.CANCELLED)

    if not is_declined(bid.order_id, writer.id):
        db.session.add(DeclinedOrder(order_id=bid.order_id, writer_id=writer.id, reason="Bid withdrawn"))

    db.session.commit()
    logger.info("Bid %s withdrawn by %s", bid.id, writer.id)
    return bid


# ------------------------------------------------------------
# Client operations
# ------------------------------------------------------------

def accept_bid(bid_id, client):
    """Accept a bid and assign its writer. Returns ``(bid, rejected_siblings)``.

    Claim, acceptance and sibling rejection commit together. Of two racing
    accepts only one can claim the order; the other raises ``InvalidState``.
    """
    # order row first, then bids: the same lock order as edit_order and cancel_order
    order_id = get_bid_or_404(bid_id).order_id
    order = get_order_or_404(order_id, for_update=True)
    bid = get_bid_or_404(bid_id, for_update=True)
    require_owner(order, client)

    if bid.status == BidStatus.UNCONFIRMED:
        raise InvalidState("Cannot accept an unconfirmed bid", code="BID_UNCONFIRMED")
    if bid.status != BidStatus.OPEN:
        raise InvalidState("Bid already processed")

    claimed = (
        Order.query
        .filter(
            Order.id == order.id,
            Order.writer_id.is_(None),
            Order.status == OrderStatus.IN_PROGRESS.value,
        )
        .update({"writer_id": bid.user_id, "updated_at": utcnow()}, synchronize_session=False)
    )
    if claimed != 1:
        db.session.rollback()
        raise InvalidState("This order already has an accepted bid", code="ALREADY_ASSIGNED")

    bid_machine.apply(bid, BidStatus.ACCEPTED)

    siblings = Bid.query.filter(
        Bid.order_id == order.id,
        Bid.id != bid.id,
        Bid.status.in_(ACTIVE_BID_STATUSES),
    ).all()
    for b in siblings:
        bid_machine.apply(b, BidStatus.REJECTED)

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise InvalidState("This order already has an accepted bid", code="ALREADY_ASSIGNED")

    logger.info("Bid %s accepted on %s; %d sibling(s) rejected", bid.id, bid.order_id, len(siblings))
    events.bid_accepted.send(bid, rejected=siblings)

    notify(
        bid.user_id,
        "bid_update",
        "Your Bid Was Accepted",
        f"Your bid for {order.id} ({order.title}) has been accepted. "
        "You have been assigned as the writer.",
        details={"order_id": order.id, "bid_id": bid.id, "status": "accepted"},
        sender_id=client.id,
    )
    notify_many(
        [b.user_id for b in siblings],
        "bid_update",
        "Your Bid Was Rejected",
        f"Another writer was assigned to {order.id} ({order.title}).",
        details={"order_id": order.id, "status": "rejected"},
        sender_id=client.id,
    )
    return bid, siblings


def reject_bid(bid_id, client):
    bid = get_bid_or_404(bid_id)
    require_owner(bid.order, client)

    if not bid.is_active:
        raise InvalidState("Bid already processed")

    bid_machine.apply(bid, BidStatus.REJECTED)
    db.session.commit()

    notify(
        bid.user_id,
        "bid_update",
        "Your Bid Was Rejected",
        f"Your bid for {bid.order.id} ({bid.order.title}) has been rejected by the client.",
        details={"order_id": bid.order_id, "bid_id": bid.id, "status": "rejected"},
        sender_id=client.id,
    )
    return bid


# ------------------------------------------------------------
# Reads
# ------------------------------------------------------------

def get_bid_for(bid_id, user):
    bid = get_bid_or_404(bid_id)
    if bid.user_id == user.id or bid.order.client_id == user.id or user.is_admin:
        return bid
    raise Forbidden("You do not have access to this bid")


def _status_filter(q, status):
    if not status or status == "all":
        return q
    if status == "declined":
        return q.filter(Bid.status == BidStatus.REJECTED.value)
    if status == "active":
        return q.filter(Bid.status.in_(ACTIVE_BID_STATUSES))
    return q.filter(Bid.status == status)


def list_bids_for_writer(writer, status=None, date_from=None, date_to=None, page=1, limit=10):
    q = Bid.query.filter(Bid.user_id == writer.id)
    q = _status_filter(q, status)

    if date_from:
        q = q.filter(Bid.submitted_at >= date_from)
    if date_to:
        q = q.filter(Bid.submitted_at <= date_to)

    items, pagination = paginate_query(q.order_by(Bid.submitted_at.desc(), Bid.id.desc()), page, limit)
    return [b.serialize() for b in items], pagination


def list_bids_for_client(client, status=None, page=1, limit=10):
    q = (
        Bid.query.join(Order, Order.id == Bid.order_id)
        .filter(Order.client_id == client.id)
        .filter(Bid.status != BidStatus.CANCELLED.value)
        # hide bids on assigned orders unless accepted
        .filter(or_(Order.writer_id.is_(None), Bid.status == BidStatus.ACCEPTED.value))
    )
    q = _status_filter(q, status)

    items, pagination = paginate_query(q.order_by(Bid.submitted_at.desc(), Bid.id.desc()), page, limit)
    return [b.serialize(include_user_info=True) for b in items], pagination


def list_bids_for_order(order_id, viewer, status=None, page=1, limit=10):
    order = get_order_or_404(order_id)
    require_owner(order, viewer, allow_admin=True)

    q = Bid.query.filter(Bid.order_id == order.id, Bid.status != BidStatus.CANCELLED.value)
    if order.writer_id:
        q = q.filter(Bid.status == BidStatus.ACCEPTED.value)
    q = _status_filter(q, status)

    items, pagination = paginate_query(q.order_by(Bid.submitted_at.desc(), Bid.id.desc()), page, limit)
    return [b.serialize(include_user_info=True) for b in items], pagination


# ------------------------------------------------------------
# Order event receivers (run inside the order's transaction)
# ------------------------------------------------------------

def demote_open_bids(order, **_):
    """Material order change: open bids need the writer's confirmation again."""
    bids = Bid.query.filter_by(order_id=order.id, status=BidStatus.OPEN.value).all()
    for b in bids:
        bid_machine.apply(b, BidStatus.UNCONFIRMED)
    if bids:
        logger.info("Order %s revised; %d bid(s) now unconfirmed", order.id, len(bids))
    return bids


def close_active_bids(order, **_):
    bids = Bid.query.filter(
        Bid.order_id == order.id,
        Bid.status.in_(ACTIVE_BID_STATUSES),
    ).all()
    for b in bids:
        bid_machine.apply(b, BidStatus.REJECTED)
    return bids


events.order_revised.connect(demote_open_bids)
events.order_cancelled.connect(close_active_bids)
