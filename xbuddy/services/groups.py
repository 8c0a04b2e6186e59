from __future__ import annotations

from datetime import date
from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..logging_config import get_logger
from ..models import Exclusion, Group, GroupStatus, Message, Participant
from ..security import generate_access_token

logger = get_logger(__name__)

UPDATABLE_FIELDS = ("name", "description", "budget", "currency", "draw_date")


class GroupStateError(RuntimeError):
    """Operation not allowed in the group's current status."""


class ValidationError(ValueError):
    pass


class NotFoundError(LookupError):
    pass


def require_pending(group: Group, action: str) -> None:
    if not group.is_pending:
        raise GroupStateError(f"Cannot {action} after the draw has been performed.")


def clean_name(value, field: str = "name") -> str:
    name = value.strip() if isinstance(value, str) else ""
    if not name:
        raise ValidationError(f"{field.capitalize()} is required.")
    return name


def _parse_budget(value) -> Decimal | None:
    if value in (None, ""):
        return None
    try:
        budget = Decimal(str(value))
    except InvalidOperation as e:
        raise ValidationError("Budget must be a number.") from e
    if budget < 0:
        raise ValidationError("Budget cannot be negative.")
    return budget


def _parse_date(value) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError as e:
        raise ValidationError("draw_date must be an ISO date (YYYY-MM-DD).") from e


def get_group_for_organizer(organizer_id: int, group_id: int) -> Group:
    group = Group.query.filter_by(id=group_id, organizer_id=organizer_id).first()
    if group is None:
        raise NotFoundError("Group not found")
    return group


def get_participant_in_group(group: Group, participant_id: int) -> Participant:
    p = Participant.query.filter_by(id=participant_id, group_id=group.id).first()
    if p is None:
        raise NotFoundError("Participant not found")
    return p


def create_group(organizer, data: dict) -> Group:
    group = Group(
        organizer_id=organizer.id,
        name=clean_name(data.get("name")),
        description=(data.get("description") or None),
        budget=_parse_budget(data.get("budget")),
        currency=(data.get("currency") or "TOMAN").strip().upper(),
        draw_date=_parse_date(data.get("draw_date")),
    )
    db.session.add(group)
    db.session.commit()
    logger.info("Group created: id=%s, organizer=%s", group.id, organizer.id, extra={"group_id": group.id})
    return group


def update_group(group: Group, data: dict) -> Group:
    for key in UPDATABLE_FIELDS:
        if key not in data:
            continue
        value = data[key]
        if key == "name":
            value = clean_name(value)
        elif key == "budget":
            value = _parse_budget(value)
        elif key == "draw_date":
            value = _parse_date(value)
        elif key == "currency":
            value = (value or "TOMAN").strip().upper()
        setattr(group, key, value)
    db.session.commit()
    return group


def complete_group(group: Group) -> Group:
    """Close a drawn group once the exchange has happened."""
    if group.status != GroupStatus.DRAWN:
        raise GroupStateError("Only a drawn group can be completed.")
    group.status = GroupStatus.COMPLETED
    db.session.commit()
    logger.info("Group completed", extra={"group_id": group.id})
    return group


def delete_group(group: Group) -> None:
    group_id = group.id
    participant_ids = [p.id for p in group.participants]
    if participant_ids:
        Exclusion.query.filter(
            Exclusion.giver_id.in_(participant_ids) | Exclusion.receiver_id.in_(participant_ids)
        ).delete(synchronize_session=False)
    Message.query.filter_by(group_id=group_id).delete(synchronize_session=False)
    db.session.delete(group)
    db.session.commit()
    logger.info("Group deleted: id=%s", group_id, extra={"group_id": group_id})


def _new_participant(group: Group, data: dict) -> Participant:
    email = (data.get("email") or "").strip().lower()
    if "@" not in email:
        raise ValidationError("A valid email is required.")
    wish_list = data.get("wish_list") or []
    if not isinstance(wish_list, list):
        raise ValidationError("wish_list must be a list.")
    return Participant(
        group_id=group.id,
        name=clean_name(data.get("name")),
        email=email,
        phone_number=(data.get("phone_number") or None),
        wish_list=[str(item) for item in wish_list],
        access_token=generate_access_token(),
    )


def add_participants(group: Group, rows: list[dict]) -> list[Participant]:
    """Enroll one or more participants. All-or-nothing."""
    require_pending(group, "add participants")
    if not isinstance(rows, list) or not rows:
        raise ValidationError("Participants must be a non-empty list.")

    existing = {p.email for p in group.participants}
    created = []
    for row in rows:
        if not isinstance(row, dict):
            raise ValidationError("Each participant must be an object.")
        p = _new_participant(group, row)
        if p.email in existing:
            raise ValidationError(f"{p.email} is already in this group.")
        existing.add(p.email)
        created.append(p)

    db.session.add_all(created)
    db.session.commit()
    logger.info("Enrolled %d participants", len(created), extra={"group_id": group.id})
    return created


def add_participant(group: Group, data: dict) -> Participant:
    return add_participants(group, [data])[0]


def remove_participant(group: Group, participant: Participant) -> None:
    require_pending(group, "remove participants")
    Exclusion.query.filter(
        (Exclusion.giver_id == participant.id) | (Exclusion.receiver_id == participant.id)
    ).delete(synchronize_session=False)
    Message.query.filter(
        (Message.from_participant_id == participant.id) | (Message.to_participant_id == participant.id)
    ).delete(synchronize_session=False)
    db.session.delete(participant)
    db.session.commit()


def get_exclusions(participant: Participant) -> set[int]:
    """Ids this participant must not gift to."""
    return {e.receiver_id for e in Exclusion.query.filter_by(giver_id=participant.id).all()}


def set_exclusions(participant: Participant, receiver_ids) -> set[int]:
    """
    Replace the participant's exclusion set.

    Ids outside the group (and the participant itself) are dropped.
    """
    group = participant.group
    require_pending(group, "change exclusions")

    try:
        wanted = {int(x) for x in receiver_ids or []}
    except (TypeError, ValueError) as e:
        raise ValidationError("Exclusions must be a list of participant ids.") from e

    valid_ids = {p.id for p in group.participants if p.id != participant.id}
    wanted &= valid_ids

    Exclusion.query.filter_by(giver_id=participant.id).delete()
    for rid in wanted:
        db.session.add(Exclusion(giver_id=participant.id, receiver_id=rid))
    db.session.commit()
    return wanted


def exclusion_map(group: Group) -> dict[int, set[int]]:
    ids = {p.id for p in group.participants}
    excluded = {pid: set() for pid in ids}
    if not ids:
        return excluded
    for e in Exclusion.query.filter(Exclusion.giver_id.in_(ids)).all():
        if e.receiver_id in ids:
            excluded[e.giver_id].add(e.receiver_id)
    return excluded
