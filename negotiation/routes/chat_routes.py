from flask import Blueprint, request
from flask_jwt_extended import jwt_required

from negotiation.schemas.chat_schema import (
    ChatCreateSchema,
    MessageCreateSchema,
    MessageQuerySchema,
    MessageUpdateSchema,
)
from negotiation.services import chat_service, message_service, negotiation_service
from negotiation.services.attachment_store import save_uploads
from negotiation.services.chat_cache import get_cache
from negotiation.utils.auth_utils import current_user
from negotiation.utils.pagination import page_args
from negotiation.utils.response_formatter import success_response, list_response

bp = Blueprint("chat", __name__, url_prefix="/api/v1/chats")


# -----------------------------------------------------------
# CREATE OR GET CHAT
# -----------------------------------------------------------
@bp.route("", methods=["POST"])
@jwt_required()
def create_or_get_chat():
    user = current_user()
    data = ChatCreateSchema().load(request.get_json(silent=True) or {})

    chat = negotiation_service.open_conversation(
        user,
        data["order_id"],
        client_id=data.get("client_id"),
        writer_id=data.get("writer_id"),
    )
    return success_response({"chat": chat_service.serialize_chat(chat, user.id)})


# -----------------------------------------------------------
# LIST CHATS
# -----------------------------------------------------------
@bp.route("", methods=["GET"])
@jwt_required()
def list_chats():
    user = current_user()
    page, limit = page_args(request.args)

    items, pagination = chat_service.list_chats(user.id, page, limit)
    return list_response(items, pagination)


@bp.route("/unread", methods=["GET"])
@jwt_required()
def unread_total():
    user = current_user()
    total = get_cache().get(user.id, chat_service.total_unread)
    return success_response({"unread": total})


@bp.route("/<chat_id>", methods=["GET"])
@jwt_required()
def get_chat(chat_id):
    user = current_user()
    chat = chat_service.get_chat_for(chat_id, user)
    return success_response({"chat": chat_service.serialize_chat(chat, user.id)})


# -----------------------------------------------------------
# LIST MESSAGES
# -----------------------------------------------------------
@bp.route("/<chat_id>/messages", methods=["GET"])
@jwt_required()
def list_messages(chat_id):
    query = MessageQuerySchema().load(request.args)

    page = message_service.list_messages(
        chat_id,
        current_user(),
        cursor=query.get("cursor"),
        limit=query.get("limit"),
        direction=query["direction"],
    )
    return list_response(page.pop("items"), page.pop("pagination"), **page)


# -----------------------------------------------------------
# POST MESSAGE (json, or multipart with attachments)
# -----------------------------------------------------------
@bp.route("/<chat_id>/messages", methods=["POST"])
@jwt_required()
def post_message(chat_id):
    user = current_user()

    if request.content_type and request.content_type.startswith("multipart/form-data"):
        data = MessageCreateSchema().load(request.form.to_dict())
        files = request.files.getlist("attachments") or list(request.files.values())
        if files:
            message_service.writable_chat(chat_id, user)
            data["attachments"] = save_uploads(files, "chats", chat_id)
    else:
        data = MessageCreateSchema().load(request.get_json(silent=True) or {})

    msg, warning = message_service.send_message(
        chat_id,
        user,
        content=data.get("content"),
        attachments=data.get("attachments"),
    )

    payload = msg.to_dict()
    payload["warning"] = warning
    payload["client_token"] = data.get("client_token")
    return success_response(payload, status=201)


# -----------------------------------------------------------
# EDIT MESSAGE
# -----------------------------------------------------------
@bp.route("/<chat_id>/messages/<int:message_id>", methods=["PUT"])
@jwt_required()
def edit_message(chat_id, message_id):
    data = MessageUpdateSchema().load(request.get_json(silent=True) or {})
    msg, warning = message_service.edit_message(chat_id, message_id, current_user(), data["content"])

    return success_response({
        "message": msg.to_dict(),
        "warning": warning,
    })


# -----------------------------------------------------------
# DELETE MESSAGE
# -----------------------------------------------------------
@bp.route("/<chat_id>/messages/<int:message_id>", methods=["DELETE"])
@jwt_required()
def delete_message(chat_id, message_id):
    message_service.delete_message(chat_id, message_id, current_user())
    return success_response({"deleted": True})


# -----------------------------------------------------------
# MARK ALL MESSAGES READ
# -----------------------------------------------------------
@bp.route("/<chat_id>/mark-read", methods=["POST"])
@jwt_required()
def mark_read(chat_id):
    updated = message_service.mark_read(chat_id, current_user())
    return success_response({"updated": updated})


# -----------------------------------------------------------
# CLEAR CHAT WARNING (admin)
# -----------------------------------------------------------
@bp.route("/<chat_id>/clear-warning", methods=["POST"])
@jwt_required()
def clear_chat_warning(chat_id):
    chat_service.clear_warning(chat_id, current_user())
    return success_response({"cleared": True})
