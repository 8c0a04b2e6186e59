from __future__ import annotations

from flask import Blueprint, jsonify, request
from flask.views import MethodView

from ..services import groups as group_service
from ..services import participants as participant_service

participants_bp = Blueprint("participants", __name__, url_prefix="/api/participants/<token>")


def _json() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


class ParticipantHomeView(MethodView):
    """A participant's own page, reached through their personal link."""

    def get(self, token: str):
        p = participant_service.get_by_token(token)
        group = p.group
        return jsonify({
            "participant": p.to_dict(),
            "group": group.to_dict(),
            "assignment": participant_service.assignment_view(p),
        })

    def put(self, token: str):
        p = participant_service.get_by_token(token)
        participant_service.update_profile(p, _json())
        return jsonify(p.to_dict())


class WishListView(MethodView):
    def put(self, token: str):
        p = participant_service.get_by_token(token)
        wishes = participant_service.update_wish_list(p, _json().get("wish_list"))
        return jsonify({"wish_list": wishes})


class OwnExclusionsView(MethodView):
    def get(self, token: str):
        p = participant_service.get_by_token(token)
        others = [
            {"id": o.id, "name": o.name}
            for o in p.group.participants
            if o.id != p.id
        ]
        return jsonify({
            "exclusions": sorted(group_service.get_exclusions(p)),
            "candidates": others,
            "locked": not p.group.is_pending,
        })

    def put(self, token: str):
        p = participant_service.get_by_token(token)
        saved = group_service.set_exclusions(p, _json().get("exclusions"))
        return jsonify({"exclusions": sorted(saved)})


class MessagesView(MethodView):
    def get(self, token: str):
        p = participant_service.get_by_token(token)
        return jsonify([m.to_dict() for m in participant_service.inbox(p)])

    def post(self, token: str):
        p = participant_service.get_by_token(token)
        msg = participant_service.send_message(p, _json().get("content"))
        return jsonify(msg.to_dict()), 201


participants_bp.add_url_rule("", view_func=ParticipantHomeView.as_view("home"), methods=["GET", "PUT"])
participants_bp.add_url_rule("/wishlist", view_func=WishListView.as_view("wishlist"), methods=["PUT"])
participants_bp.add_url_rule("/exclusions", view_func=OwnExclusionsView.as_view("exclusions"), methods=["GET", "PUT"])
participants_bp.add_url_rule("/messages", view_func=MessagesView.as_view("messages"), methods=["GET", "POST"])
