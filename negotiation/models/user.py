from negotiation.extensions import db
from negotiation.utils.dates import utcnow, isoformat
import uuid

def gen_uuid(prefix=None):
    uid = str(uuid.uuid4())
    return f"{prefix}-{uid}" if prefix else uid

ROLES = ("client", "writer", "admin")

class User(db.Model):
    """Mirror of the identity service's user record, kept for relationships."""
    __tablename__ = "users"

    id = db.Column(db.String(50), primary_key=True, default=lambda: gen_uuid("usr"))
    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    full_name = db.Column(db.String(255))
    role = db.Column(db.String(50), nullable=False)
    profile_image = db.Column(db.String(1024), nullable=True)
    country = db.Column(db.String(100), nullable=True)
    joined_at = db.Column(db.DateTime, default=utcnow)

    @property
    def is_admin(self):
        return self.role == "admin"

    def public_dict(self):
        return {
            "id": self.id,
            "name": self.full_name,
            "avatar": self.profile_image,
            "role": self.role,
        }

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "profile_image": self.profile_image,
            "country": self.country,
            "joined_at": isoformat(self.joined_at),
        }
