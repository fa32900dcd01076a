from negotiation.extensions import db
from negotiation.utils.dates import utcnow

class DeclinedOrder(db.Model):
    """Writers who declined an order or cancelled their bid on it."""
    __tablename__ = "declined_orders"
    __table_args__ = (
        db.UniqueConstraint("order_id", "writer_id", name="uq_declined_order_writer"),
    )

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), nullable=False)
    writer_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)
    reason = db.Column(db.String(255))
    created_at = db.Column(db.DateTime, default=utcnow)
