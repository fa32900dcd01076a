from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required

from negotiation.schemas.order_schema import (
    OrderCreateSchema,
    OrderFieldsSchema,
    OrderListQuerySchema,
    PricingPreviewSchema,
    ReasonSchema,
)
from negotiation.services import order_service
from negotiation.services.attachment_store import save_uploads
from negotiation.utils.auth_utils import current_user
from negotiation.utils.dates import utcnow, isoformat
from negotiation.utils.pagination import page_args
from negotiation.utils.response_formatter import success_response, list_response

bp = Blueprint("orders", __name__, url_prefix="/api/v1/orders")


def _read_payload():
    """JSON body, or form fields plus uploaded files for multipart requests."""
    if request.content_type and request.content_type.startswith("multipart/form-data"):
        data = request.form.to_dict()
        preferred = [
            v.strip() for k, v in request.form.items()
            if k.startswith("preferred_writers[") and v and v.strip()
        ]
        if preferred:
            data["preferredWriters"] = preferred
        existing = request.form.getlist("existingFiles")
        if existing:
            data["attachments"] = existing
        files = request.files.getlist("attachedFiles") or list(request.files.values())
        return data, files
    return request.get_json(silent=True) or {}, []


# ------------------------------------------------------------
#  GET /orders: clients see their orders; writers see marketplace or assigned
# ------------------------------------------------------------
@bp.route("", methods=["GET"])
@jwt_required()
def list_orders():
    user = current_user()
    filters = OrderListQuerySchema().load(request.args)
    page, limit = page_args(request.args)

    items, pagination = order_service.list_orders(user, filters, page, limit)
    return list_response(items, pagination)


@bp.route("/<order_id>", methods=["GET"])
@jwt_required()
def get_order(order_id):
    user = current_user()
    order = order_service.get_order_for(order_id, user)
    return success_response(order_service.serialize_order(order, user))


# ------------------------------------------------------------
#  POST /orders: Create new order (form-data or json)
# ------------------------------------------------------------
@bp.route("", methods=["POST"])
@jwt_required()
def create_new_order():
    user = current_user()
    data, files = _read_payload()
    fields = OrderCreateSchema().load(data)

    order = order_service.create_order(user, fields)
    if files:
        order_service.add_attachments(order, save_uploads(files, "orders", order.id))

    current_app.logger.info("Order %s created (%d upload(s))", order.id, len(files))
    return success_response({
        "id": order.id,
        "title": order.title,
        "status": order.status,
        "created_at": isoformat(order.created_at),
    }, status=201)


# ------------------------------------------------------------
#  PATCH /orders/<order_id>: Update order (not allowed once assigned)
# ------------------------------------------------------------
@bp.route("/<order_id>", methods=["PATCH"])
@jwt_required()
def patch_order(order_id):
    user = current_user()
    data, files = _read_payload()
    patch = OrderFieldsSchema(partial=True).load(data)

    order, demoted = order_service.edit_order(order_id, user, patch)
    if files:
        order_service.add_attachments(order, save_uploads(files, "orders", order.id))

    payload = order_service.serialize_order(order, user)
    payload["unconfirmed_bids"] = [b.id for b in demoted]
    return success_response(payload, message="Order updated successfully")


@bp.route("/<order_id>/publish", methods=["POST"])
@jwt_required()
def publish_order(order_id):
    order = order_service.publish_order(order_id, current_user())
    return success_response({"orderId": order.id, "status": order.status})


# ------------------------------------------------------------
#  POST /orders/<order_id>/decline: Writer declines order (record)
# ------------------------------------------------------------
@bp.route("/<order_id>/decline", methods=["POST"])
@jwt_required()
def decline_order(order_id):
    data = ReasonSchema().load(request.get_json(silent=True) or {})
    order = order_service.decline_order(order_id, current_user(), data.get("reason"))

    return success_response({
        "message": "Order declined successfully",
        "order_id": order.id,
        "status": "declined"
    })


# ------------------------------------------------------------
#  POST /orders/<order_id>/cancel: Cancel an order
#  - If a writer is assigned, a reason is required
# ------------------------------------------------------------
@bp.route("/<order_id>/cancel", methods=["POST"])
@jwt_required()
def cancel_order(order_id):
    data = ReasonSchema().load(request.get_json(silent=True) or {})
    order = order_service.cancel_order(order_id, current_user(), data.get("reason"))

    return success_response({
        "orderId": order.id,
        "status": order.status,
        "message": "Order cancelled successfully",
        "cancelReason": order.cancel_reason,
        "updatedAt": isoformat(order.updated_at)
    })


# ------------------------------------------------------------
#  POST /orders/pricing/preview: suggested minimum budget
# ------------------------------------------------------------
@bp.route("/pricing/preview", methods=["POST"])
@jwt_required(optional=True)
def preview_pricing():
    data = PricingPreviewSchema().load(request.get_json(silent=True) or {})

    min_budget = order_service.calculate_minimum_price(
        data["subject"],
        data["type"],
        data.get("pages"),
        data.get("deadline"),
        utcnow(),
    )
    return success_response({"min_budget": min_budget})
