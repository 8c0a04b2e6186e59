from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask_login import current_user

from ..policies import OrganizerRequiredMixin, get_dispatcher
from ..services import groups as group_service
from ..services import participants as participant_service
from ..services.draws import resend_assignment, run_draw
from ..services.notifications import DeliveryStatus

groups_bp = Blueprint("groups", __name__, url_prefix="/api/groups")


def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def _own_group(group_id: int):
    return group_service.get_group_for_organizer(current_user.id, group_id)


def _group_detail(group) -> dict:
    excluded = group_service.exclusion_map(group)
    data = group.to_dict()
    data["participants"] = [
        {**p.to_dict(include_token=True), "exclusions": sorted(excluded.get(p.id, ()))}
        for p in group.participants
    ]
    return data


class GroupListView(OrganizerRequiredMixin):
    def get(self):
        groups = sorted(current_user.groups, key=lambda g: g.id)
        return jsonify([g.to_dict() for g in groups])

    def post(self):
        group = group_service.create_group(current_user, _json())
        return jsonify(group.to_dict()), 201


class GroupDetailView(OrganizerRequiredMixin):
    def get(self, group_id: int):
        return jsonify(_group_detail(_own_group(group_id)))

    def put(self, group_id: int):
        group = group_service.update_group(_own_group(group_id), _json())
        return jsonify(group.to_dict())

    def delete(self, group_id: int):
        group_service.delete_group(_own_group(group_id))
        return "", 204


class ParticipantListView(OrganizerRequiredMixin):
    def get(self, group_id: int):
        group = _own_group(group_id)
        return jsonify([p.to_dict(include_token=True) for p in group.participants])

    def post(self, group_id: int):
        group = _own_group(group_id)
        data = request.get_json(silent=True)
        # Either a single participant object or {"participants": [...]}
        if isinstance(data, dict) and "participants" in data:
            created = group_service.add_participants(group, data["participants"])
            return jsonify({
                "message": f"Successfully added {len(created)} participants",
                "participants": [p.to_dict(include_token=True) for p in created],
            }), 201
        p = group_service.add_participant(group, data if isinstance(data, dict) else {})
        return jsonify(p.to_dict(include_token=True)), 201


class ParticipantDetailView(OrganizerRequiredMixin):
    def delete(self, group_id: int, participant_id: int):
        group = _own_group(group_id)
        p = group_service.get_participant_in_group(group, participant_id)
        group_service.remove_participant(group, p)
        return "", 204


class ExclusionView(OrganizerRequiredMixin):
    def get(self, group_id: int, participant_id: int):
        group = _own_group(group_id)
        p = group_service.get_participant_in_group(group, participant_id)
        return jsonify({"exclusions": sorted(group_service.get_exclusions(p))})

    def put(self, group_id: int, participant_id: int):
        group = _own_group(group_id)
        p = group_service.get_participant_in_group(group, participant_id)
        saved = group_service.set_exclusions(p, _json().get("exclusions"))
        return jsonify({"exclusions": sorted(saved)})


class DrawView(OrganizerRequiredMixin):
    def post(self, group_id: int):
        group = _own_group(group_id)
        pairings, batch = run_draw(group, get_dispatcher())

        people = {p.id: p for p in group.participants}
        return jsonify({
            "message": "Draw completed successfully",
            "note": "E-mails are being sent in the background. Some participants may receive "
                    "their assignments with a slight delay.",
            "notifications_queued": len(batch.tasks) if batch else 0,
            "assignments": [
                {
                    "giver": {"id": pr.giver_id, "name": people[pr.giver_id].name},
                    "receiver": {"id": pr.receiver_id, "name": people[pr.receiver_id].name},
                }
                for pr in pairings
            ],
        })


class ResendEmailView(OrganizerRequiredMixin):
    def post(self, group_id: int, participant_id: int):
        dispatcher = get_dispatcher()
        if dispatcher is None:
            return jsonify({"error": "Notifications are not configured."}), 503

        group = _own_group(group_id)
        p = group_service.get_participant_in_group(group, participant_id)
        task = resend_assignment(p, dispatcher)
        if task.status == DeliveryStatus.FAILED:
            return jsonify({"error": "Failed to send email"}), 502
        if task.status != DeliveryStatus.DELIVERED:
            return jsonify({"message": "Assignment email queued", "task_id": task.id}), 202
        return jsonify({"message": "Assignment email sent successfully"})


class CompleteGroupView(OrganizerRequiredMixin):
    def post(self, group_id: int):
        group = group_service.complete_group(_own_group(group_id))
        return jsonify(group.to_dict())


class SentMessagesView(OrganizerRequiredMixin):
    """Messages a participant has sent, with recipient names."""

    def get(self, group_id: int, participant_id: int):
        group = _own_group(group_id)
        p = group_service.get_participant_in_group(group, participant_id)
        return jsonify(participant_service.sent_messages(p))


groups_bp.add_url_rule("", view_func=GroupListView.as_view("list"), methods=["GET", "POST"])
groups_bp.add_url_rule("/<int:group_id>", view_func=GroupDetailView.as_view("detail"), methods=["GET", "PUT", "DELETE"])
groups_bp.add_url_rule(
    "/<int:group_id>/participants",
    view_func=ParticipantListView.as_view("participants"),
    methods=["GET", "POST"],
)
groups_bp.add_url_rule(
    "/<int:group_id>/participants/<int:participant_id>",
    view_func=ParticipantDetailView.as_view("participant"),
    methods=["DELETE"],
)
groups_bp.add_url_rule(
    "/<int:group_id>/participants/<int:participant_id>/exclusions",
    view_func=ExclusionView.as_view("exclusions"),
    methods=["GET", "PUT"],
)
groups_bp.add_url_rule("/<int:group_id>/draw", view_func=DrawView.as_view("draw"), methods=["POST"])
groups_bp.add_url_rule(
    "/<int:group_id>/participants/<int:participant_id>/resend-email",
    view_func=ResendEmailView.as_view("resend_email"),
    methods=["POST"],
)
groups_bp.add_url_rule(
    "/<int:group_id>/participants/<int:participant_id>/messages",
    view_func=SentMessagesView.as_view("sent_messages"),
    methods=["GET"],
)
groups_bp.add_url_rule("/<int:group_id>/complete", view_func=CompleteGroupView.as_view("complete"), methods=["POST"])
