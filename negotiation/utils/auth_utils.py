from flask_jwt_extended import get_jwt_identity

from negotiation.extensions import db
from negotiation.models.user import User
from negotiation.utils.exceptions import NotFound


def current_user():
    """The ``User`` behind the request's JWT identity."""
    user = db.session.get(User, get_jwt_identity())
    if not user:
        raise NotFound("User not found")
    return user
