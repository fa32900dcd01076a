from negotiation.extensions import db
from negotiation.utils.dates import utcnow, isoformat
import uuid

def gen_submission_id():
    return f"SUB-{uuid.uuid4().hex[:8]}"

class Submission(db.Model):
    __tablename__ = "submissions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "submission_number", name="uq_submission_number"),
    )

    id = db.Column(db.String(50), primary_key=True, default=gen_submission_id)
    order_id = db.Column(db.String(50), db.ForeignKey("orders.id"), nullable=False)
    submission_number = db.Column(db.Integer, nullable=False)

    writer_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)

    message = db.Column(db.Text, nullable=True)
    revision_message = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(50), default="pending")
    files = db.Column(db.JSON, nullable=False, default=list)

    created_at = db.Column(db.DateTime, default=utcnow)
    updated_at = db.Column(db.DateTime, onupdate=utcnow)

    order = db.relationship("Order", backref="submissions", lazy=True)
    writer = db.relationship("User", lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "order_id": self.order_id,
            "writer_id": self.writer_id,
            "submission_number": self.submission_number,
            "message": self.message,
            "revision_message": self.revision_message,
            "status": self.status,
            "files": self.files or [],
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
            "writer_name": self.writer.full_name if self.writer else None
        }
