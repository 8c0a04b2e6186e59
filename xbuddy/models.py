from __future__ import annotations

import enum
from datetime import datetime, timezone

from flask_login import UserMixin

from .extensions import db, login_manager


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GroupStatus(str, enum.Enum):
    PENDING = "pending"
    DRAWN = "drawn"
    COMPLETED = "completed"


class Organizer(UserMixin, db.Model):
    __tablename__ = "organizers"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(255), unique=True, nullable=False)

    # argon2 hash via passlib
    password_hash = db.Column(db.String(255), nullable=False)

    registered_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    groups = db.relationship("Group", back_populates="organizer", cascade="all, delete-orphan")


class Group(db.Model):
    __tablename__ = "groups"

    id = db.Column(db.Integer, primary_key=True)
    organizer_id = db.Column(db.Integer, db.ForeignKey("organizers.id", ondelete="CASCADE"), nullable=False)

    name = db.Column(db.String(128), nullable=False)
    description = db.Column(db.Text, nullable=True)
    budget = db.Column(db.Numeric(10, 2), nullable=True)
    currency = db.Column(db.String(16), default="TOMAN", nullable=False)
    draw_date = db.Column(db.Date, nullable=True)

    status = db.Column(db.Enum(GroupStatus), default=GroupStatus.PENDING, nullable=False)
    drawn_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)

    organizer = db.relationship("Organizer", back_populates="groups")
    participants = db.relationship(
        "Participant",
        back_populates="group",
        cascade="all, delete-orphan",
        order_by="Participant.id",
    )

    @property
    def is_pending(self) -> bool:
        return self.status == GroupStatus.PENDING

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "budget": str(self.budget) if self.budget is not None else None,
            "currency": self.currency,
            "draw_date": self.draw_date.isoformat() if self.draw_date else None,
            "status": self.status.value,
            "drawn_at": self.drawn_at.isoformat() if self.drawn_at else None,
        }


class Participant(db.Model):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)

    name = db.Column(db.String(64), nullable=False)
    email = db.Column(db.String(255), nullable=False)
    phone_number = db.Column(db.String(32), nullable=True)
    wish_list = db.Column(db.JSON, default=list, nullable=False)

    # Bearer token embedded in the participant's personal link.
    access_token = db.Column(db.String(64), unique=True, nullable=False)
    last_accessed = db.Column(db.DateTime(timezone=True), nullable=True)

    # Encrypted receiver id (Fernet token string); null until the draw runs.
    assigned_to_ciphertext = db.Column(db.Text, nullable=True)

    group = db.relationship("Group", back_populates="participants")

    __table_args__ = (
        db.UniqueConstraint("group_id", "email", name="uq_participant_group_email"),
    )

    def to_dict(self, include_token: bool = False) -> dict:
        data = {
            "id": self.id,
            "group_id": self.group_id,
            "name": self.name,
            "email": self.email,
            "phone_number": self.phone_number,
            "wish_list": list(self.wish_list or []),
            "assigned": self.assigned_to_ciphertext is not None,
        }
        if include_token:
            data["access_token"] = self.access_token
        return data


class Exclusion(db.Model):
    """
    Directed constraint: giver_id cannot gift to receiver_id.
    """
    __tablename__ = "exclusions"
    id = db.Column(db.Integer, primary_key=True)

    giver_id = db.Column(db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)
    receiver_id = db.Column(db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)

    giver = db.relationship("Participant", foreign_keys=[giver_id])
    receiver = db.relationship("Participant", foreign_keys=[receiver_id])

    __table_args__ = (
        db.UniqueConstraint("giver_id", "receiver_id", name="uq_exclusion_giver_receiver"),
    )


class Message(db.Model):
    """Anonymous note from a giver to the participant they drew."""
    __tablename__ = "messages"

    id = db.Column(db.Integer, primary_key=True)
    group_id = db.Column(db.Integer, db.ForeignKey("groups.id", ondelete="CASCADE"), nullable=False)
    from_participant_id = db.Column(db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)
    to_participant_id = db.Column(db.Integer, db.ForeignKey("participants.id", ondelete="CASCADE"), nullable=False)

    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow, nullable=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    recipient = db.relationship("Participant", foreign_keys=[to_participant_id], viewonly=True)

    def to_dict(self) -> dict:
        # Sender is deliberately omitted.
        return {
            "id": self.id,
            "content": self.content,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "read_at": self.read_at.isoformat() if self.read_at else None,
        }


@login_manager.user_loader
def load_user(user_id: str):
    return db.session.get(Organizer, int(user_id))
