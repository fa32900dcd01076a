from negotiation.extensions import db
from negotiation.utils.dates import utcnow, isoformat
import uuid

def gen_notif_id():
    return f"notif-{str(uuid.uuid4())[:8]}"

class Notification(db.Model):
    __tablename__ = "notifications"

    id = db.Column(db.String(50), primary_key=True, default=gen_notif_id)
    sender_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=True)
    user_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False, index=True)

    # Content
    type = db.Column(db.String(50), default="info")
    title = db.Column(db.String(255), nullable=False)
    message = db.Column(db.Text, nullable=False)
    details = db.Column(db.JSON, nullable=True)
    is_read = db.Column(db.Boolean, default=False)

    created_at = db.Column(db.DateTime, default=utcnow)

    # Relationships
    sender = db.relationship("User", foreign_keys=[sender_id], lazy=True)
    recipient = db.relationship("User", foreign_keys=[user_id], backref="notifications", lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "details": self.details or {},
            "is_read": self.is_read,
            "created_at": isoformat(self.created_at),
        }
