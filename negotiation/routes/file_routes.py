from mimetypes import guess_type

from flask import Blueprint, request, send_file
from flask_jwt_extended import jwt_required

from negotiation.services import chat_service, order_service
from negotiation.services.attachment_store import get_store
from negotiation.utils.auth_utils import current_user
from negotiation.utils.exceptions import NotFound

bp = Blueprint("files", __name__, url_prefix="/api/v1/files")


# ------------------------------------------------------------
# GET /files/<scope>/<owner_id>/<filename>: download an attachment
# ------------------------------------------------------------
@bp.route("/<scope>/<owner_id>/<filename>", methods=["GET"])
@jwt_required()
def get_file(scope, owner_id, filename):
    user = current_user()

    if scope == "chats":
        chat_service.get_chat_for(owner_id, user)
    elif scope == "orders":
        order_service.get_order_for(owner_id, user)
    else:
        raise NotFound("File not found")

    path = get_store().path_for(request.path)
    mime, _ = guess_type(path)
    return send_file(path, mimetype=mime, as_attachment=False)
