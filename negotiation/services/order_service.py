import logging
from datetime import timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from sqlalchemy import cast, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.types import String

from negotiation import events
from negotiation.extensions import db
from negotiation.models.bid import Bid
from negotiation.models.declined_order import DeclinedOrder
from negotiation.models.order import Order
from negotiation.models.order_invitation import OrderInvitation
from negotiation.models.user import User
from negotiation.services.notification_service import notify_many
from negotiation.services.state_machine import OrderStatus, order_machine
from negotiation.utils.dates import utcnow, parse_datetime, isoformat
from negotiation.utils.db import retry_read_once
from negotiation.utils.pagination import paginate_query
from negotiation.utils.exceptions import Conflict, Forbidden, InvalidState, NotFound, ValidationError

logger = logging.getLogger(__name__)


NON_PAGE_ORDER_TYPES = {
    "coding-project",
    "data-analysis",
    "software-development",
    "programming-assignment",
}

NON_PAGE_BASE_PRICE = {
    "coding-project": 100,
    "data-analysis": 100,
}

BASE_PRICES = {
    # category: base$/page
    "literature": 12,
    "english": 12,
    "art": 12,
    "psychology": 12,
    "philosophy": 12,
    "history": 12,
    "science": 15,
    "mathematics": 18,
    "business": 13,
    "technology": 18,
    "engineering": 18,
    "law": 13,
    "medicine": 14,
    "nursing": 13,
    "healthcare": 13,
    "geography": 12,
    "political-science": 12,
    "economics": 14,
    "physics": 15,
    "biology": 15,
    "environmental-science": 12,
    "finance": 14,
    "other": 15,
}

ORDER_TYPE_MULTIPLIER = {
    "essay": 1.0,
    "research-paper": 1.2,
    "thesis": 1.5,
    "dissertation": 1.5,
    "case-study": 1.2,
    "lab-report": 1.3,
    "presentation": 0.7,
    "coding-project": 1.6,
    "data-analysis": 1.4,
    "software-development": 1.6,
    "programming-assignment": 1.5,
    "other": 1.7,
    "discussion-post": 1.0,
    "editing": 0.8,
    "rewriting": 0.9,
    "admission-essay": 1.0,
    "resume": 1.2,
    "cover-letter": 1.2,
}

SUBJECTS = frozenset(BASE_PRICES)
WORK_TYPES = frozenset(ORDER_TYPE_MULTIPLIER)

DEADLINE_MULTIPLIER = [
    (3, 1.8),
    (6, 1.65),
    (12, 1.5),
    (24, 1.35),
    (48, 1.2),
    (72, 1.1),
    (9999, 1.0),
]

EDITABLE_FIELDS = {
    "title",
    "subject",
    "type",
    "pages",
    "budget",
    "description",
    "requirements",
    "detailed_requirements",
    "additional_notes",
    "deadline",
    "format",
    "citation_style",
    "language",
    "attachments",
}

# Changing any of these after bids exist forces writers to re-confirm
REVISION_FIELDS = {"budget", "deadline", "pages", "requirements", "detailed_requirements"}

CLIENT_STATUS_FILTERS = {
    "in_progress": [OrderStatus.IN_PROGRESS, OrderStatus.IN_REVIEW, OrderStatus.IN_REVISION],
    "in-progress": [OrderStatus.IN_PROGRESS, OrderStatus.IN_REVIEW, OrderStatus.IN_REVISION],
    "in-progress-only": [OrderStatus.IN_PROGRESS],
    "in-review": [OrderStatus.IN_REVIEW],
    "in-revision": [OrderStatus.IN_REVISION],
    "draft": [OrderStatus.DRAFT],
    "completed": [OrderStatus.COMPLETED],
    "cancelled": [OrderStatus.CANCELLED],
}


def format_money(value):
    if value is None:
        return None
    return float(
        Decimal(value).quantize(Decimal("0.00"), rounding=ROUND_HALF_UP)
    )


# ------------------------------------------------------------
# Pricing
# ------------------------------------------------------------

def compute_deadline_multiplier(deadline, now):
    if deadline.tzinfo is None:
        deadline = deadline.replace(tzinfo=timezone.utc)

    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    hours = (deadline - now).total_seconds() / 3600

    for max_hours, mult in DEADLINE_MULTIPLIER:
        if hours <= max_hours:
            return mult

    return 1.0

def calculate_minimum_price(category, order_type, pages, deadline, now):
    """Suggested floor for a client budget. Advisory: never enforced."""
    if order_type in NON_PAGE_BASE_PRICE:
        base = NON_PAGE_BASE_PRICE[order_type]
    else:
        base = BASE_PRICES.get(category, 5)

    type_mult = ORDER_TYPE_MULTIPLIER.get(order_type, 1)

    urgency_mult = compute_deadline_multiplier(deadline, now) if deadline else 1.0

    # If this order type should NOT use pages, treat pages as 1 unit
    if order_type in NON_PAGE_ORDER_TYPES:
        effective_units = 1
    else:
        effective_units = pages if pages else 1

    return round(base * effective_units * type_mult * urgency_mult, 2)


# ------------------------------------------------------------
# Field validation
# ------------------------------------------------------------

def parse_budget(value):
    try:
        budget = Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError("Budget must be numeric", {"field": "budget"})
    if not budget.is_finite() or budget <= 0:
        raise ValidationError("Budget must be greater than zero", {"field": "budget"})
    return budget


def parse_future_deadline(value, field="deadline"):
    try:
        deadline = parse_datetime(value)
    except (TypeError, ValueError, OverflowError):
        raise ValidationError(f"Invalid {field} format (use ISO 8601)", {"field": field})
    if deadline is None:
        raise ValidationError(f"{field} is required", {"field": field})
    if deadline <= utcnow():
        raise ValidationError(f"{field.capitalize()} must be in the future", {"field": field})
    return deadline


def _validate_fields(data):
    """Coerce and check order fields present in ``data``."""
    clean = {}
    for key, value in data.items():
        if key == "budget":
            clean[key] = parse_budget(value)
        elif key == "deadline":
            clean[key] = parse_future_deadline(value)
        elif key == "subject":
            if value not in SUBJECTS:
                raise ValidationError("Unknown category", {"field": "category", "allowed": sorted(SUBJECTS)})
            clean[key] = value
        elif key == "type":
            if value not in WORK_TYPES:
                raise ValidationError("Unknown order type", {"field": "orderType", "allowed": sorted(WORK_TYPES)})
            clean[key] = value
        elif key == "pages":
            try:
                pages = int(value)
            except (TypeError, ValueError):
                raise ValidationError("Invalid pages value", {"field": "pages"})
            if pages < 1:
                raise ValidationError("Pages must be at least 1", {"field": "pages"})
            clean[key] = pages
        elif key == "title":
            if not value or not str(value).strip():
                raise ValidationError("Title is required", {"field": "title"})
            clean[key] = str(value).strip()
        elif key == "attachments":
            if not isinstance(value, (list, tuple)) or not all(isinstance(a, str) and a for a in value):
                raise ValidationError("attachments must be a list of URLs", {"field": "attachments"})
            clean[key] = list(value)
        else:
            clean[key] = value
    return clean


# ------------------------------------------------------------
# Lookups
# ------------------------------------------------------------

def get_order_or_404(order_id, for_update=False):
    q = Order.query.filter_by(id=order_id)
    if for_update:
        q = q.with_for_update()
    order = q.first()
    if not order:
        raise NotFound("Order not found")
    return order


def require_owner(order, user, allow_admin=False):
    if order.client_id == user.id:
        return
    if allow_admin and user.is_admin:
        return
    raise Forbidden("Only the client who created the order can do this")


def is_declined(order_id, writer_id):
    return DeclinedOrder.query.filter_by(order_id=order_id, writer_id=writer_id).first() is not None


def is_open_for_bids(order):
    return (
        order.status == OrderStatus.IN_PROGRESS
        and order.writer_id is None
        and order.deadline > utcnow()
    )


# ------------------------------------------------------------
# Ledger operations
# ------------------------------------------------------------

def create_order(client, data):
    if client.role != "client":
        raise Forbidden("Only clients can create orders")

    data = dict(data)
    preferred = data.pop("preferred_writers", None) or []
    status = data.pop("status", None) or OrderStatus.IN_PROGRESS.value
    if status not in (OrderStatus.DRAFT.value, OrderStatus.IN_PROGRESS.value):
        raise ValidationError("New orders start as draft or in_progress", {"field": "status"})

    missing = [f for f in ("title", "subject", "type", "budget", "deadline") if data.get(f) in (None, "")]
    if missing:
        raise ValidationError("Missing fields", {"fields": missing})

    fields = _validate_fields({k: v for k, v in data.items() if k in EDITABLE_FIELDS})
    fields.setdefault("pages", 1)
    fields.setdefault("attachments", [])

    order = Order(client_id=client.id, status=status, **fields)
    db.session.add(order)
    db.session.flush()

    invited = _invite_writers(order, preferred)
    db.session.commit()

    logger.info("Order %s created by %s (%s)", order.id, client.id, order.status)

    if invited and order.status == OrderStatus.IN_PROGRESS:
        _notify_invited(order, invited)
    return order


def _invite_writers(order, writer_ids):
    invited = []
    for wid in dict.fromkeys(w.strip() for w in writer_ids if isinstance(w, str) and w.strip()):
        writer = db.session.get(User, wid)
        if not writer or writer.role != "writer":
            logger.info("[ORDER_INVITE] Ignoring preferred writer %s on %s", wid, order.id)
            continue
        db.session.add(OrderInvitation(order_id=order.id, writer_id=writer.id))
        invited.append(writer.id)
    return invited


def _notify_invited(order, writer_ids):
    notify_many(
        writer_ids,
        "order_invitation",
        "You were invited to an order",
        f"You have been invited to bid on {order.id} ({order.title}).",
        details={"order_id": order.id},
        sender_id=order.client_id,
    )


def publish_order(order_id, client):
    order = get_order_or_404(order_id)
    require_owner(order, client)

    if order.deadline <= utcnow():
        raise ValidationError("Deadline must be in the future", {"field": "deadline"})

    order_machine.apply(order, OrderStatus.IN_PROGRESS)
    db.session.commit()

    _notify_invited(order, [inv.writer_id for inv in order.invitations])
    return order


def add_attachments(order, urls):
    if urls:
        order.attachments = list(order.attachments or []) + list(urls)
        db.session.commit()
    return order


def edit_order(order_id, client, patch):
    """Apply a client's patch. Returns ``(order, demoted_bids)``."""
    order = get_order_or_404(order_id, for_update=True)
    require_owner(order, client)

    if order_machine.is_terminal(order.status):
        raise InvalidState("This order is closed and cannot be edited.")
    if order.writer_id is not None and order.status != OrderStatus.DRAFT:
        raise InvalidState("This order has already been assigned and cannot be edited.")

    updates = _validate_fields({k: v for k, v in patch.items() if k in EDITABLE_FIELDS})

    changed = set()
    for field, value in updates.items():
        if getattr(order, field) != value:
            setattr(order, field, value)
            changed.add(field)

    demoted = []
    if changed & REVISION_FIELDS:
        for _, result in events.order_revised.send(order, changed=changed):
            demoted.extend(result or [])

    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("Order changed concurrently, please retry")

    logger.info("Order %s edited by %s: %s", order.id, client.id, sorted(changed))

    if demoted:
        notify_many(
            [b.user_id for b in demoted],
            "order_revised",
            "Order Updated",
            f"The client updated {order.id} ({order.title}). Please review and confirm your bid.",
            details={"order_id": order.id, "changed": sorted(changed & REVISION_FIELDS)},
            sender_id=client.id,
        )
    return order, demoted


def cancel_order(order_id, actor, reason=None):
    order = get_order_or_404(order_id, for_update=True)
    require_owner(order, actor, allow_admin=True)

    if order.status == OrderStatus.CANCELLED:
        return order

    reason = (reason or "").strip()
    if order.writer_id and not reason:
        raise ValidationError(
            "A cancellation reason is required because a writer has already been assigned.",
            {"field": "reason"},
            code="REASON_REQUIRED",
        )

    order_machine.apply(order, OrderStatus.CANCELLED)
    order.cancel_reason = reason or ("Cancelled by admin" if actor.is_admin else "Cancelled by client")
    order.cancelled_by = actor.id
    order.cancelled_at = utcnow()

    closed = []
    for _, result in events.order_cancelled.send(order, actor_id=actor.id):
        closed.extend(result or [])

    db.session.commit()
    logger.info("Order %s cancelled by %s", order.id, actor.id)

    recipients = [b.user_id for b in closed]
    if order.writer_id:
        recipients.append(order.writer_id)
    notify_many(
        recipients,
        "order_cancelled",
        "Order Cancelled",
        f"Order {order.id} has been cancelled. Reason: {order.cancel_reason}",
        details={"order_id": order.id, "reason": order.cancel_reason},
        sender_id=actor.id,
    )
    return order


def decline_order(order_id, writer, reason=None):
    if writer.role != "writer":
        raise Forbidden("Only writers can decline orders")

    order = get_order_or_404(order_id)

    if is_declined(order.id, writer.id):
        raise Conflict("You have already declined this order", code="ALREADY_DECLINED")

    active = Bid.query.filter(
        Bid.order_id == order.id,
        Bid.user_id == writer.id,
        Bid.status.in_(["open", "unconfirmed"]),
    ).first()
    if active:
        raise InvalidState("You have an active bid on this order; cancel it instead")

    db.session.add(DeclinedOrder(order_id=order.id, writer_id=writer.id, reason=reason or ""))
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise Conflict("You have already declined this order", code="ALREADY_DECLINED")
    return order


# ------------------------------------------------------------
# Reads
# ------------------------------------------------------------

def can_view(order, user):
    if user.is_admin or order.client_id == user.id or order.writer_id == user.id:
        return True
    if user.role == "writer":
        return is_open_for_bids(order)
    return False


def get_order_for(order_id, user):
    order = get_order_or_404(order_id)
    if not can_view(order, user):
        raise Forbidden("You do not have access to this order")
    return order


def serialize_order(order, viewer=None):
    data = {
        "id": order.id,
        "title": order.title,
        "subject": order.subject,
        "type": order.type,
        "pages": order.pages,
        "deadline": isoformat(order.deadline),
        "budget": format_money(order.budget),
        "status": order.status,
        "progress": order.progress,
        "description": order.description,
        "requirements": order.requirements,
        "detailed_requirements": order.detailed_requirements,
        "additional_notes": order.additional_notes,
        "created_at": isoformat(order.created_at),
        "updated_at": isoformat(order.updated_at),
        "client_id": order.client_id,
        "writer_id": order.writer_id,
        "writer_assigned": order.writer_assigned,
        "citation_style": order.citation_style,
        "format": order.format,
        "language": order.language,
        "attachments": order.attachments or [],
        "preferred_writers": [
            {
                "id": inv.writer.id,
                "name": inv.writer.full_name,
                "avatar": inv.writer.profile_image,
            }
            for inv in order.invitations
        ],
    }

    if order.status == OrderStatus.CANCELLED:
        data["cancel_reason"] = order.cancel_reason
        data["cancelled_at"] = isoformat(order.cancelled_at)

    if order.client and viewer is not None and viewer.role == "writer":
        data["client"] = {"country": order.client.country}

    return data


@retry_read_once
def list_orders(viewer, filters, page, limit):
    status = filters.get("status")
    q = Order.query

    if viewer.role == "client":
        q = q.filter(Order.client_id == viewer.id)
        if status in CLIENT_STATUS_FILTERS:
            q = q.filter(Order.status.in_([s.value for s in CLIENT_STATUS_FILTERS[status]]))

    elif viewer.role == "writer" and filters.get("assigned_to") == "me":
        q = q.filter(Order.writer_id == viewer.id)
        if status in CLIENT_STATUS_FILTERS:
            q = q.filter(Order.status.in_([s.value for s in CLIENT_STATUS_FILTERS[status]]))

    elif viewer.role == "writer":
        # Marketplace: open, unexpired, unassigned, not already bid on
        q = q.filter(
            Order.status == OrderStatus.IN_PROGRESS.value,
            Order.writer_id.is_(None),
            Order.deadline > utcnow(),
        )
        writer_bid_order_ids = db.session.query(Bid.order_id).filter(Bid.user_id == viewer.id)
        q = q.filter(~Order.id.in_(writer_bid_order_ids))

        declined_ids = db.session.query(DeclinedOrder.order_id).filter_by(writer_id=viewer.id)
        if status == "declined":
            q = q.filter(Order.id.in_(declined_ids))
        else:
            q = q.filter(~Order.id.in_(declined_ids))

        if status == "invited":
            invited_ids = db.session.query(OrderInvitation.order_id).filter_by(writer_id=viewer.id)
            q = q.filter(Order.id.in_(invited_ids))

    elif status:
        q = q.filter(Order.status == status)

    search = filters.get("search")
    if search:
        search_term = f"%{search}%"
        q = q.filter(
            or_(
                cast(Order.id, String).ilike(search_term),
                Order.title.ilike(search_term),
                Order.subject.ilike(search_term),
                Order.description.ilike(search_term),
            )
        )

    if filters.get("min_budget") is not None:
        q = q.filter(Order.budget >= filters["min_budget"])
    if filters.get("max_budget") is not None:
        q = q.filter(Order.budget <= filters["max_budget"])
    if filters.get("date_from"):
        q = q.filter(Order.created_at >= filters["date_from"])
    if filters.get("date_to"):
        q = q.filter(Order.created_at <= filters["date_to"])

    items, pagination = paginate_query(q.order_by(Order.created_at.desc(), Order.id.desc()), page, limit)
    return [serialize_order(o, viewer) for o in items], pagination
