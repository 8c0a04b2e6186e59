from __future__ import annotations

import random
from datetime import datetime, timezone

from flask import current_app

from ..extensions import db
from ..logging_config import get_logger
from ..models import Group, GroupStatus, Participant
from ..security import decrypt_assignment_recipient, encrypt_assignment_recipient
from . import engine
from .groups import GroupStateError, exclusion_map
from .mailer import participant_url, render_assignment_email
from .notifications import DeliveryStatus, NotificationBatch, NotificationDispatcher, NotificationTask

logger = get_logger(__name__)

MIN_PARTICIPANTS = 3


def build_roster(group: Group) -> list[engine.RosterEntry]:
    excluded = exclusion_map(group)
    return [
        engine.RosterEntry(id=p.id, exclusions=frozenset(excluded.get(p.id, ())))
        for p in group.participants
    ]


def assigned_receiver(participant: Participant) -> Participant | None:
    if not participant.assigned_to_ciphertext:
        return None
    receiver_id = decrypt_assignment_recipient(participant.assigned_to_ciphertext)
    return db.session.get(Participant, receiver_id)


def build_notification_tasks(group: Group, pairings: list[engine.Pairing]) -> list[NotificationTask]:
    people = {p.id: p for p in group.participants}
    frontend_url = current_app.config["FRONTEND_URL"]

    tasks = []
    for pairing in pairings:
        giver = people[pairing.giver_id]
        receiver = people[pairing.receiver_id]
        tasks.append(NotificationTask(
            group_id=group.id,
            giver_id=giver.id,
            receiver_id=receiver.id,
            message=render_assignment_email(giver, receiver, group, participant_url(frontend_url, giver)),
        ))
    return tasks


def run_draw(
    group: Group,
    dispatcher: NotificationDispatcher | None,
    max_attempts: int | None = None,
    rng: random.Random | None = None,
) -> tuple[list[engine.Pairing], NotificationBatch | None]:
    """
    Draw, persist and notify.

    Engine errors (InvalidRosterError, InfeasibleDrawError) propagate and
    nothing is written. Notification problems are logged only.
    """
    if group.status != GroupStatus.PENDING:
        raise GroupStateError("Draw has already been performed.")

    participants = list(group.participants)
    if len(participants) < MIN_PARTICIPANTS:
        raise GroupStateError(f"Need at least {MIN_PARTICIPANTS} participants to run the draw.")

    if max_attempts is None:
        max_attempts = current_app.config["DRAW_MAX_ATTEMPTS"]

    roster = build_roster(group)
    pairings = engine.draw(roster, max_attempts=max_attempts, rng=rng)

    # Claim the group in the same transaction that stores the result; a
    # concurrent draw that got here first leaves no pending row to update.
    now = datetime.now(timezone.utc)
    claimed = Group.query.filter_by(id=group.id, status=GroupStatus.PENDING).update(
        {"status": GroupStatus.DRAWN, "drawn_at": now},
        synchronize_session=False,
    )
    if claimed != 1:
        db.session.rollback()
        logger.warning("Draw lost to a concurrent draw", extra={"group_id": group.id})
        raise GroupStateError("Draw has already been performed.")

    people = {p.id: p for p in participants}
    for pairing in pairings:
        people[pairing.giver_id].assigned_to_ciphertext = encrypt_assignment_recipient(pairing.receiver_id)

    group.status = GroupStatus.DRAWN
    group.drawn_at = now
    db.session.commit()
    logger.info("Draw completed for %d participants", len(pairings), extra={"group_id": group.id})

    batch = None
    if dispatcher is None:
        logger.warning("No notification dispatcher configured; skipping e-mails", extra={"group_id": group.id})
        return pairings, batch

    try:
        batch = dispatcher.enqueue(build_notification_tasks(group, pairings))
    except Exception:
        # draw is committed at this point
        logger.exception("Could not queue draw notifications", extra={"group_id": group.id})
    return pairings, batch


def resend_assignment(
    participant: Participant,
    dispatcher: NotificationDispatcher,
    timeout: float | None = None,
) -> NotificationTask:
    """
    Send one participant's draw e-mail again.

    Goes through the dispatcher queue and waits up to ``timeout`` seconds
    (NOTIFY_WAIT_TIMEOUT by default) for the outcome.
    """
    receiver = assigned_receiver(participant)
    if receiver is None:
        raise GroupStateError("This participant has not been assigned yet.")

    group = participant.group
    link = participant_url(current_app.config["FRONTEND_URL"], participant)
    task = NotificationTask(
        group_id=group.id,
        giver_id=participant.id,
        receiver_id=receiver.id,
        message=render_assignment_email(participant, receiver, group, link),
    )
    if timeout is None:
        timeout = current_app.config["NOTIFY_WAIT_TIMEOUT"]
    dispatcher.deliver(task, timeout=timeout)
    if task.status == DeliveryStatus.FAILED:
        logger.warning("Resend failed: participant=%s", participant.id, extra={"group_id": group.id})
    return task
