from negotiation.extensions import db
from negotiation.utils.dates import utcnow, isoformat

class Message(db.Model):
    __tablename__ = "messages"
    __table_args__ = (
        db.Index("idx_messages_chat_id", "chat_id", "id"),
        # ids must never be reused after a delete
        {"sqlite_autoincrement": True},
    )

    # Integer sequence: doubles as the stable pagination cursor
    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    chat_id = db.Column(db.String(50), db.ForeignKey("chats.id"), nullable=False)
    sender_id = db.Column(db.String(50), db.ForeignKey("users.id"), nullable=False)
    content = db.Column(db.Text)
    attachments = db.Column(db.JSON, default=list)
    is_read = db.Column(db.Boolean, default=False, nullable=False)
    edited = db.Column(db.Boolean, default=False, nullable=False)
    edited_at = db.Column(db.DateTime, nullable=True)
    created_at = db.Column(db.DateTime, default=utcnow)

    chat = db.relationship("Chat", backref=db.backref("messages", lazy="dynamic"), lazy=True)
    sender = db.relationship("User", backref="messages", lazy=True)

    def to_dict(self):
        return {
            "id": self.id,
            "chat_id": self.chat_id,
            "sender": {
                "id": self.sender.id,
                "name": self.sender.full_name,
                "avatar": self.sender.profile_image,
            } if self.sender else {"id": self.sender_id},
            "content": self.content,
            "attachments": self.attachments or [],
            "sent_at": isoformat(self.created_at),
            "is_read": self.is_read,
            "edited": self.edited,
            "edited_at": isoformat(self.edited_at),
        }
