# Overview: Customer lookup and the append-only conversation log.

from __future__ import annotations

from ..extensions import db
from ..models import Customer, Conversation, Message
from .errors import ValidationFailure

CONVERSATION_OPEN = "open"

DIRECTION_OUTBOUND = "outbound"


def get_or_create_customer(phone_e164: str, name: str | None = None) -> Customer:
    """Find a customer by WhatsApp phone identifier, creating it on first contact."""
    phone_e164 = (phone_e164 or "").strip()
    if not phone_e164:
        raise ValidationFailure("phone is required")

    customer = db.session.query(Customer).filter_by(phone_e164=phone_e164).first()
    if customer is not None:
        return customer

    customer = Customer(phone_e164=phone_e164, name=(name or "").strip() or None)
    db.session.add(customer)
    db.session.commit()
    return customer


def get_open_conversation(customer_id: int, *, create: bool = True) -> Conversation | None:
    conversation = (
        db.session.query(Conversation)
        .filter_by(customer_id=customer_id, status=CONVERSATION_OPEN)
        .order_by(Conversation.id.desc())
        .first()
    )
    if conversation is None and create:
        conversation = Conversation(customer_id=customer_id, status=CONVERSATION_OPEN)
        db.session.add(conversation)
        db.session.flush()
    return conversation


def log_outbound_message(
    customer_id: int,
    body: str,
    *,
    provider_message_sid: str | None = None,
    delivery_status: str | None = None,
    error: str | None = None,
) -> Message:
    """Append an assistant-side message to the customer's open conversation."""
    conversation = get_open_conversation(customer_id)
    message = Message(
        conversation_id=conversation.id,
        direction=DIRECTION_OUTBOUND,
        role="assistant",
        body=body,
        provider_message_sid=provider_message_sid,
        delivery_status=delivery_status,
        error=(error[:255] if error else None),
    )
    db.session.add(message)
    db.session.commit()
    return message
