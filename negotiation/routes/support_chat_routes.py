from flask import Blueprint, request, current_app
from flask_jwt_extended import jwt_required

from negotiation.services import chat_service
from negotiation.utils.auth_utils import current_user
from negotiation.utils.pagination import page_args
from negotiation.utils.response_formatter import success_response, list_response

bp = Blueprint("support_chat", __name__, url_prefix="/api/v1/support-chat")


@bp.route("", methods=["POST"])
@jwt_required()
def create_or_get():
    user = current_user()
    chat = chat_service.get_or_create_support_chat(user)

    current_app.logger.info("[SupportChat] User %s chat_id=%s", user.id, chat.id)
    return success_response({"chat": chat_service.serialize_chat(chat, user.id)})


@bp.route("", methods=["GET"])
@jwt_required()
def list_support_chats():
    page, limit = page_args(request.args, default_limit=20)
    items, pagination = chat_service.list_support_chats(current_user(), page, limit)
    return list_response(items, pagination)
