import logging

from sqlalchemy import func

from negotiation.extensions import db
from negotiation.models.submission import Submission
from negotiation.services.notification_service import notify
from negotiation.services.order_service import get_order_or_404, get_order_for, require_owner
from negotiation.services.state_machine import OrderStatus, order_machine
from negotiation.utils.exceptions import Forbidden, InvalidState, NotFound, ValidationError

logger = logging.getLogger(__name__)


def assigned_order(order_id, writer, for_update=False):
    order = get_order_or_404(order_id, for_update=for_update)
    if order.writer_id != writer.id:
        raise Forbidden("You are not assigned to this order")
    return order


def submit_work(order_id, writer, message=None, files=None):
    order = assigned_order(order_id, writer, for_update=True)

    files = [f for f in (files or []) if isinstance(f, str) and f]
    if not files:
        raise ValidationError("At least one file is required", {"field": "files"})

    order_machine.apply(order, OrderStatus.IN_REVIEW)

    last_number = (
        db.session.query(func.max(Submission.submission_number))
        .filter_by(order_id=order.id)
        .scalar()
    ) or 0

    submission = Submission(
        order_id=order.id,
        submission_number=last_number + 1,
        writer_id=writer.id,
        message=message,
        files=files,
    )
    db.session.add(submission)
    db.session.commit()

    notify(
        order.client_id,
        "work_submitted",
        "Work Submitted",
        f"The writer submitted work for {order.id} ({order.title}).",
        details={"order_id": order.id, "submission_id": submission.id},
        sender_id=writer.id,
    )
    return submission


def request_revision(order_id, client, submission_id, message):
    order = get_order_or_404(order_id, for_update=True)
    require_owner(order, client)

    if not message or not str(message).strip():
        raise ValidationError("Revision message required", {"field": "message"})

    submission = Submission.query.filter_by(id=submission_id, order_id=order.id).first()
    if not submission:
        raise NotFound("Submission not found")

    order_machine.apply(order, OrderStatus.IN_REVISION)
    submission.status = "revision_requested"
    submission.revision_message = str(message).strip()
    db.session.commit()

    notify(
        order.writer_id,
        "revision_requested",
        "Revision Requested",
        f"The client requested a revision on {order.id} ({order.title}).",
        details={"order_id": order.id, "submission_id": submission.id},
        sender_id=client.id,
    )
    return submission


def complete_order(order_id, client):
    order = get_order_or_404(order_id, for_update=True)
    require_owner(order, client)

    if order.status == OrderStatus.COMPLETED:
        raise InvalidState("Order already completed", code="ALREADY_COMPLETED")
    if not order.writer_id:
        raise InvalidState("No writer assigned to this order", code="NO_WRITER_ASSIGNED")

    order_machine.apply(order, OrderStatus.COMPLETED)
    order.progress = 100

    latest = (
        Submission.query.filter_by(order_id=order.id)
        .order_by(Submission.submission_number.desc())
        .first()
    )
    if latest:
        latest.status = "accepted"

    db.session.commit()
    logger.info("Order %s completed", order.id)

    notify(
        order.writer_id,
        "order_completed",
        "Order Completed",
        f"The client marked {order.id} ({order.title}) as complete.",
        details={"order_id": order.id},
        sender_id=client.id,
    )
    return order



def list_submissions(order_id, user):
    order = get_order_for(order_id, user)
    if user.role == "writer" and order.writer_id != user.id:
        raise Forbidden("You are not assigned to this order")

    submissions = (
        Submission.query
        .filter_by(order_id=order.id)
        .order_by(Submission.submission_number.desc())
        .all()
    )
    return order, submissions
