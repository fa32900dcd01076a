from negotiation.extensions import db
from negotiation.utils.dates import utcnow
import uuid

class OrderInvitation(db.Model):
    __tablename__ = "order_invitations"
    __table_args__ = (
        db.UniqueConstraint("order_id", "writer_id", name="uq_invitation_order_writer"),
    )

    id = db.Column(db.String(50), primary_key=True, default=lambda: f"INV-{uuid.uuid4().hex[:8]}")
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), nullable=False)
    writer_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)
    invited_at = db.Column(db.DateTime, default=utcnow)

    order = db.relationship("Order", backref=db.backref("invitations", lazy=True, cascade="all, delete-orphan"))
    writer = db.relationship("User", backref=db.backref("invitations_received", lazy=True))
