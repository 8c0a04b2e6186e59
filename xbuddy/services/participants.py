from __future__ import annotations

from datetime import datetime, timezone

from ..extensions import db
from ..models import Message, Participant
from .draws import assigned_receiver
from .groups import GroupStateError, NotFoundError, ValidationError, clean_name

MAX_MESSAGE_LENGTH = 2000
MAX_WISHES = 50


def get_by_token(token: str) -> Participant:
    p = Participant.query.filter_by(access_token=token).first() if token else None
    if p is None:
        raise NotFoundError("Participant not found")
    p.last_accessed = datetime.now(timezone.utc)
    db.session.commit()
    return p


def assignment_view(participant: Participant) -> dict:
    """What a participant sees about the person they drew."""
    receiver = assigned_receiver(participant)
    if receiver is None:
        return {"drawn": False, "receiver": None}
    return {
        "drawn": True,
        "receiver": {
            "name": receiver.name,
            "wish_list": list(receiver.wish_list or []),
        },
    }


def update_wish_list(participant: Participant, wishes) -> list[str]:
    if not isinstance(wishes, list):
        raise ValidationError("wish_list must be a list.")
    cleaned = [str(w).strip() for w in wishes if str(w).strip()]
    if len(cleaned) > MAX_WISHES:
        raise ValidationError(f"At most {MAX_WISHES} wishes.")
    participant.wish_list = cleaned
    db.session.commit()
    return cleaned


def update_profile(participant: Participant, data: dict) -> Participant:
    if "name" in data:
        participant.name = clean_name(data.get("name"))
    if "phone_number" in data:
        participant.phone_number = data.get("phone_number") or None
    db.session.commit()
    return participant


def send_message(participant: Participant, content) -> Message:
    """Anonymous note from a giver to the person they drew."""
    receiver = assigned_receiver(participant)
    if receiver is None:
        raise GroupStateError("Messages are available after the draw.")

    text = content.strip() if isinstance(content, str) else ""
    if not text:
        raise ValidationError("Message content is required.")
    if len(text) > MAX_MESSAGE_LENGTH:
        raise ValidationError(f"Message is longer than {MAX_MESSAGE_LENGTH} characters.")

    msg = Message(
        group_id=participant.group_id,
        from_participant_id=participant.id,
        to_participant_id=receiver.id,
        content=text,
    )
    db.session.add(msg)
    db.session.commit()
    return msg


def inbox(participant: Participant) -> list[Message]:
    """Messages addressed to the participant; marks them read."""
    messages = (
        Message.query.filter_by(to_participant_id=participant.id)
        .order_by(Message.created_at.asc(), Message.id.asc())
        .all()
    )
    now = datetime.now(timezone.utc)
    for m in messages:
        if m.read_at is None:
            m.read_at = now
    db.session.commit()
    return messages


def sent_messages(participant: Participant) -> list[dict]:
    """Messages the participant has sent, newest first, for the organizer."""
    messages = (
        Message.query.filter_by(from_participant_id=participant.id)
        .order_by(Message.created_at.desc(), Message.id.desc())
        .all()
    )
    return [
        {
            "id": m.id,
            "content": m.content,
            "created_at": m.created_at.isoformat() if m.created_at else None,
            "recipient_name": m.recipient.name if m.recipient else None,
        }
        for m in messages
    ]
