from flask import current_app
from itsdangerous import URLSafeSerializer, BadSignature

from negotiation.utils.exceptions import ValidationError

CURSOR_SALT = "message-cursor"


def paginate_query(query, page, limit):
    page = max(int(page) if page else 1, 1)
    limit = max(int(limit) if limit else 10, 1)
    items = query.offset((page-1)*limit).limit(limit).all()
    total = query.order_by(None).count()
    total_pages = (total + limit - 1) // limit
    return items, {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": total_pages,
        "has_more": page < total_pages,
    }


def page_args(args, default_limit=10, max_limit=100):
    """Read ``page``/``limit`` query params, falling back to defaults on junk."""
    try:
        page = int(args.get("page", 1))
        limit = int(args.get("limit", default_limit))
    except (TypeError, ValueError):
        page, limit = 1, default_limit
    return max(page, 1), min(max(limit, 1), max_limit)


def _serializer():
    return URLSafeSerializer(current_app.config["CURSOR_SECRET"], salt=CURSOR_SALT)


def encode_cursor(chat_id, message_id, direction):
    return _serializer().dumps({"c": chat_id, "id": message_id, "d": direction})


def decode_cursor(token, chat_id):
    """Return ``(message_id, direction)`` for a cursor issued for ``chat_id``."""
    try:
        data = _serializer().loads(token)
    except BadSignature:
        raise ValidationError("Invalid pagination cursor", {"field": "cursor"})

    if data.get("c") != chat_id or not isinstance(data.get("id"), int):
        raise ValidationError("Cursor does not belong to this conversation", {"field": "cursor"})

    return data["id"], data.get("d", "older")
