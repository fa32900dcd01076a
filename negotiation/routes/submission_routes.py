from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from negotiation.schemas.order_schema import RevisionRequestSchema, SubmissionCreateSchema
from negotiation.services import submission_service
from negotiation.services.attachment_store import save_uploads
from negotiation.utils.auth_utils import current_user
from negotiation.utils.response_formatter import success_response

bp = Blueprint(
    "submissions",
    __name__,
    url_prefix="/api/v1/orders"
)


# ------------------------------------------------------------
# Writer submits work
# ------------------------------------------------------------
@bp.route("/<order_id>/submissions", methods=["POST"])
@jwt_required()
def submit_work(order_id):
    user = current_user()

    if request.content_type and request.content_type.startswith("multipart/form-data"):
        files = request.files.getlist("files")
        # fallback for indexed uploads (files[0], files[1], ...)
        if not files:
            files = [f for k, f in request.files.items() if k.startswith("files")]
        data = SubmissionCreateSchema().load(request.form.to_dict())
        submission_service.assigned_order(order_id, user)
        urls = save_uploads(files, "orders", order_id) if files else []
    else:
        data = SubmissionCreateSchema().load(request.get_json(silent=True) or {})
        urls = data.get("files") or []

    submission = submission_service.submit_work(order_id, user, data.get("message"), urls)
    return success_response(submission.to_dict(), status=201)


# ------------------------------------------------------------
# Submissions for an order
# ------------------------------------------------------------
@bp.route("/<order_id>/submissions", methods=["GET"])
@jwt_required()
def get_submissions(order_id):
    order, submissions = submission_service.list_submissions(order_id, current_user())

    return success_response({
        "order_status": order.status,
        "writer_assigned": bool(order.writer_id),
        "submissions": [s.to_dict() for s in submissions]
    })


# ------------------------------------------------------------
# Client requests revision
# ------------------------------------------------------------
@bp.route("/<order_id>/submissions/<submission_id>/revision", methods=["POST"])
@jwt_required()
def revision_request_endpoint(order_id, submission_id):
    data = RevisionRequestSchema().load(request.get_json(silent=True) or {})
    submission = submission_service.request_revision(order_id, current_user(), submission_id, data["message"])

    return success_response({"message": "Revision requested", "submission": submission.to_dict()})


# ------------------------------------------------------------
# Client marks order as complete
# ------------------------------------------------------------
@bp.route("/<order_id>/complete", methods=["POST"])
@jwt_required()
def complete_order(order_id):
    order = submission_service.complete_order(order_id, current_user())
    return success_response({"orderId": order.id, "status": order.status},
                            message=f"Order {order.id} marked as complete")
