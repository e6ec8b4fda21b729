from __future__ import annotations

from ..extensions import db
from ..time_utils import utcnow, to_utc_z


class Customer(db.Model):
    """
    WhatsApp customer, identified by E.164 phone ("whatsapp:+57300...").

    Created on first inbound message; orders reference it for notifications.
    """
    __tablename__ = "customers"
    __table_args__ = (
        db.UniqueConstraint("phone_e164", name="uq_customers_phone"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    phone_e164 = db.Column(db.String(64), nullable=False)
    name = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "phone_e164": self.phone_e164,
            "name": self.name,
            "created_at": to_utc_z(self.created_at),
        }


class Conversation(db.Model):
    """Chat thread with a customer. At most one is OPEN per customer at a time."""
    __tablename__ = "conversations"
    __table_args__ = (
        db.Index("ix_conversations_customer_status", "customer_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)
    status = db.Column(db.String(16), nullable=False, default="open")

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    customer = db.relationship("Customer", backref=db.backref("conversations", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "status": self.status,
            "created_at": to_utc_z(self.created_at),
        }


class Message(db.Model):
    """
    Append-only conversation log.

    Outbound notifications (payment confirmed, shipped, delivered) are recorded
    here with their delivery outcome so the chat history doubles as an audit
    trail of what the customer was told.
    """
    __tablename__ = "messages"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    conversation_id = db.Column(db.Integer, db.ForeignKey("conversations.id"), nullable=False, index=True)

    direction = db.Column(db.String(16), nullable=False)  # inbound, outbound
    role = db.Column(db.String(16), nullable=False)  # user, assistant
    body = db.Column(db.Text, nullable=True)

    provider_message_sid = db.Column(db.String(64), nullable=True)
    delivery_status = db.Column(db.String(16), nullable=True)  # sent, failed
    error = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    conversation = db.relationship("Conversation", backref=db.backref("messages", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "conversation_id": self.conversation_id,
            "direction": self.direction,
            "role": self.role,
            "body": self.body,
            "provider_message_sid": self.provider_message_sid,
            "delivery_status": self.delivery_status,
            "error": self.error,
            "created_at": to_utc_z(self.created_at),
        }
