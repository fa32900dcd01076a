from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from negotiation.schemas.notification_schema import NotificationSchema
from negotiation.services.notification_service import list_notifications, mark_all_read_for_user
from negotiation.utils.auth_utils import current_user
from negotiation.utils.pagination import paginate_query, page_args
from negotiation.utils.response_formatter import success_response, list_response

bp = Blueprint("notifications", __name__, url_prefix="/api/v1/notifications")

notifications_schema = NotificationSchema(many=True)


@bp.route("", methods=["GET"])
@jwt_required()
def get_notifications():
    user = current_user()
    page, limit = page_args(request.args, default_limit=20)

    is_read = request.args.get("is_read")
    if is_read is not None:
        is_read = is_read.lower() in ("1", "true", "yes")

    items, pagination = paginate_query(list_notifications(user.id, is_read), page, limit)
    return list_response(notifications_schema.dump(items), pagination)


@bp.route("/mark-all-read", methods=["POST"])
@jwt_required()
def mark_all_read():
    updated = mark_all_read_for_user(current_user().id)
    return success_response({"updated": updated})
