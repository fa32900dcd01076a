from negotiation.extensions import db
from negotiation.utils.dates import utcnow, isoformat
import uuid

def gen_chat_id():
    return f"chat-{str(uuid.uuid4())[:8]}"

def order_pair_key(order_id, client_id, writer_id):
    return f"order:{order_id}:{client_id}:{writer_id}"

def support_pair_key(user_id):
    return f"support:{user_id}"

class Chat(db.Model):
    __tablename__ = "chats"

    id = db.Column(db.String(50), primary_key=True, default=gen_chat_id)
    kind = db.Column(db.String(20), nullable=False, default="order")

    # Idempotency key: one row per (order, client, writer) or per support requester
    pair_key = db.Column(db.String(255), nullable=False, unique=True)

    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), nullable=True)

    client_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=True)
    writer_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=True)

    # Support chats only; None until a staff member is assigned
    staff_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow)

    # relationships
    client = db.relationship("User", foreign_keys=[client_id], lazy=True)
    writer = db.relationship("User", foreign_keys=[writer_id], lazy=True)
    staff = db.relationship("User", foreign_keys=[staff_id], lazy=True)
    order = db.relationship("Order", backref="chats", lazy=True)

    warning_risk = db.Column(db.String(20), nullable=True)
    warning_message = db.Column(db.Text, nullable=True)
    warning_expires_at = db.Column(db.DateTime, nullable=True)
    warning_active = db.Column(db.Boolean, default=False)
    warning_for_user_id = db.Column(db.String(50), nullable=True)

    __table_args__ = (
        db.UniqueConstraint("order_id", "client_id", "writer_id", name="uq_chat_order_client_writer"),
    )

    @property
    def participant_ids(self):
        return [uid for uid in (self.client_id, self.writer_id, self.staff_id) if uid]

    def is_participant(self, user_id):
        return user_id in self.participant_ids

    def other_participant(self, user_id):
        for u in (self.client, self.writer, self.staff):
            if u is not None and u.id != user_id:
                return u
        return None

    def clear_warning(self):
        self.warning_active = False
        self.warning_risk = None
        self.warning_message = None
        self.warning_expires_at = None
        self.warning_for_user_id = None

    def warning_dict(self):
        if not self.warning_active:
            return None
        return {
            "active": True,
            "risk": self.warning_risk,
            "message": self.warning_message,
            "expires_at": isoformat(self.warning_expires_at),
            "triggered_by": self.warning_for_user_id,
        }
