from negotiation.extensions import db
from negotiation.utils.dates import utcnow, isoformat
import uuid

def gen_bid_id():
    return f"BID-{str(uuid.uuid4())[:8]}"

ACTIVE_BID_STATUSES = ("open", "unconfirmed")

class Bid(db.Model):
    __tablename__ = "bids"

    __table_args__ = (
        # one non-terminal bid per (order, writer)
        db.Index(
            "uq_bids_active_writer", "order_id", "user_id",
            unique=True,
            sqlite_where=db.text("status IN ('open', 'unconfirmed')"),
            postgresql_where=db.text("status IN ('open', 'unconfirmed')"),
        ),
        # at most one accepted bid per order
        db.Index(
            "uq_bids_one_accepted", "order_id",
            unique=True,
            sqlite_where=db.text("status = 'accepted'"),
            postgresql_where=db.text("status = 'accepted'"),
        ),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_bid_id)
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), nullable=False, index=True)
    user_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False, index=True)

    amount = db.Column(db.Numeric(10, 2), nullable=False)
    deadline = db.Column(db.DateTime, nullable=True)
    response_deadline = db.Column(db.DateTime, nullable=True)

    status = db.Column(db.String(50), default="open", nullable=False)
    message = db.Column(db.Text, nullable=True)

    chat_id = db.Column(db.String(50), db.ForeignKey("chats.id"), nullable=True)

    submitted_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    # Relationships
    order = db.relationship("Order", backref=db.backref("bids", lazy=True))
    user = db.relationship("User", backref=db.backref("bids", lazy=True))
    chat = db.relationship("Chat", lazy=True)

    @property
    def is_active(self):
        return self.status in ACTIVE_BID_STATUSES

    def serialize(self, include_user_info=False):
        data = {
            "id": self.id,
            "order_id": self.order_id,
            "order_title": self.order.title if self.order else None,
            "amount": float(self.amount),
            "original_budget": float(self.order.budget) if self.order else None,
            "status": self.status,
            "message": self.message,
            "deadline": isoformat(self.deadline),
            "response_deadline": isoformat(self.response_deadline),
            "chat_id": self.chat_id,
            "submitted_at": isoformat(self.submitted_at),
            "updated_at": isoformat(self.updated_at),
        }

        if include_user_info and self.user:
            data.update({
                "writerId": self.user.id,
                "writerName": self.user.full_name,
                "writerAvatar": self.user.profile_image,
            })

        return data
