from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from negotiation.schemas.bid_schema import (
    BidCreateSchema,
    BidListQuerySchema,
    BidStatusSchema,
    BidUpdateSchema,
)
from negotiation.services import bid_service, negotiation_service
from negotiation.utils.auth_utils import current_user
from negotiation.utils.pagination import page_args
from negotiation.utils.response_formatter import success_response, list_response


bp = Blueprint("bids", __name__, url_prefix="/api/v1")

# ------------------------------------------------------------
#  GET /bids: List bids for current writer
# ------------------------------------------------------------
@bp.route("/bids", methods=["GET"])
@jwt_required()
def list_bids():
    user = current_user()
    query = BidListQuerySchema().load(request.args)
    page, limit = page_args(request.args)

    items, pagination = bid_service.list_bids_for_writer(
        user,
        status=query.get("status"),
        date_from=query.get("date_from"),
        date_to=query.get("date_to"),
        page=page,
        limit=limit,
    )
    return list_response(items, pagination)

# ------------------------------------------------------------
#  GET /bids/<bid_id>: View single bid
# ------------------------------------------------------------
@bp.route("/bids/<bid_id>", methods=["GET"])
@jwt_required()
def get_bid(bid_id):
    user = current_user()
    bid = bid_service.get_bid_for(bid_id, user)
    return success_response(bid.serialize(include_user_info=user.id != bid.user_id))

# ------------------------------------------------------------
# POST /orders/<order_id>/bids: Place a bid
# ------------------------------------------------------------
@bp.route("/orders/<order_id>/bids", methods=["POST"])
@jwt_required()
def create_bid(order_id):
    data = BidCreateSchema().load(request.get_json(silent=True) or {})

    bid, chat, warning = negotiation_service.submit_bid(
        order_id,
        current_user(),
        data["amount"],
        message=data.get("message"),
        deadline=data.get("deadline"),
    )

    payload = bid.serialize()
    payload["chat_id"] = chat.id
    payload["warning"] = warning
    return success_response(payload, status=201)

# ------------------------------------------------------------
#  PUT /bids/<bid_id>: Update bid message, amount or deadline
# ------------------------------------------------------------
@bp.route("/bids/<bid_id>", methods=["PUT"])
@jwt_required()
def update_bid(bid_id):
    patch = BidUpdateSchema().load(request.get_json(silent=True) or {})
    bid = bid_service.edit_bid(bid_id, current_user(), patch)
    return success_response(bid.serialize())


# ------------------------------------------------------------
#  DELETE /bids/<bid_id>: Withdraw bid
# ------------------------------------------------------------
@bp.route("/bids/<bid_id>", methods=["DELETE"])
@jwt_required()
def withdraw_bid(bid_id):
    bid = bid_service.cancel_bid(bid_id, current_user())
    return success_response({"bid": bid.serialize()}, message="Bid withdrawn successfully")


# ------------------------------------------------------------
#  PUT /bids/<bid_id>/confirm: Confirm updated order details
# ------------------------------------------------------------
@bp.route("/bids/<bid_id>/confirm", methods=["PUT"])
@jwt_required()
def confirm_bid(bid_id):
    bid = bid_service.confirm_bid(bid_id, current_user())
    return success_response({"bid": bid.serialize()}, message="Bid successfully confirmed")


# ------------------------------------------------------------
#  PUT /bids/<bid_id>/status: Client accepts or rejects a bid
# ------------------------------------------------------------
@bp.route("/bids/<bid_id>/status", methods=["PUT"])
@bp.route("/client/bids/<bid_id>/status", methods=["PUT"])
@jwt_required()
def update_bid_status(bid_id):
    action = BidStatusSchema().load(request.get_json(silent=True) or {})["action"]
    user = current_user()

    if action == "accept":
        bid, rejected = bid_service.accept_bid(bid_id, user)
        return success_response({
            "bid": bid.serialize(include_user_info=True),
            "rejected_bids": [b.id for b in rejected],
        }, message="Bid accepted successfully")

    bid = bid_service.reject_bid(bid_id, user)
    return success_response({"bid": bid.serialize(include_user_info=True)}, message="Bid rejected successfully")


# ------------------------------------------------------------
#  GET /client/bids: List bids on client's orders
# ------------------------------------------------------------
@bp.route("/client/bids", methods=["GET"])
@jwt_required()
def list_bids_for_client():
    page, limit = page_args(request.args)
    items, pagination = bid_service.list_bids_for_client(
        current_user(), status=request.args.get("status"), page=page, limit=limit
    )
    return list_response(items, pagination)


# ------------------------------------------------------------
#  GET /client/orders/<order_id>/bids: Bids for a specific order
# ------------------------------------------------------------
@bp.route("/client/orders/<order_id>/bids", methods=["GET"])
@jwt_required()
def list_bids_for_order(order_id):
    page, limit = page_args(request.args)
    items, pagination = bid_service.list_bids_for_order(
        order_id, current_user(), status=request.args.get("status"), page=page, limit=limit
    )
    return list_response(items, pagination)
