from negotiation.extensions import db
from negotiation.utils.dates import utcnow
import uuid

def gen_order_id():
    return f"ORD-{str(uuid.uuid4())[:8]}"

class Order(db.Model):
    __tablename__ = "orders"

    __table_args__ = (
        db.Index("idx_orders_status", "status"),
        db.Index("idx_orders_client", "client_id"),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_order_id)

    title = db.Column(db.String(255), nullable=False)
    subject = db.Column(db.String(255))
    type = db.Column(db.String(100))
    pages = db.Column(db.Integer, default=1)

    budget = db.Column(db.Numeric(10, 2), nullable=False)

    status = db.Column(db.String(50), default="in_progress", nullable=False)

    client_id = db.Column(
        db.String(50),
        db.ForeignKey("users.id"),
        nullable=False
    )

    writer_id = db.Column(
        db.String(50),
        db.ForeignKey("users.id"),
        nullable=True
    )

    progress = db.Column(db.Integer, default=0)

    description = db.Column(db.Text)
    requirements = db.Column(db.Text)
    detailed_requirements = db.Column(db.Text)
    additional_notes = db.Column(db.Text)

    format = db.Column(db.String(50))
    citation_style = db.Column(db.String(50))
    language = db.Column(db.String(20), default="en-us")

    attachments = db.Column(db.JSON, default=list)

    deadline = db.Column(db.DateTime, nullable=False)
    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, default=utcnow, onupdate=utcnow)

    cancel_reason = db.Column(db.String(500))
    cancelled_by = db.Column(db.String(50))
    cancelled_at = db.Column(db.DateTime)

    # Relationships
    client = db.relationship(
        "User",
        foreign_keys=[client_id],
        backref="client_orders",
        lazy=True
    )

    writer = db.relationship(
        "User",
        foreign_keys=[writer_id],
        backref="writer_orders",
        lazy=True
    )

    @property
    def writer_assigned(self):
        return self.writer_id is not None
