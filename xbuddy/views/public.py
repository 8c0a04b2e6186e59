from __future__ import annotations

from flask import Blueprint, jsonify
from flask.views import MethodView

from ..models import Group, GroupStatus, Participant
from ..policies import get_dispatcher


public_bp = Blueprint("public", __name__)


class LandingView(MethodView):
    def get(self):
        dispatcher = get_dispatcher()
        return jsonify({
            "service": "xbuddy",
            "groups": Group.query.count(),
            "groups_drawn": Group.query.filter_by(status=GroupStatus.DRAWN).count(),
            "participants": Participant.query.count(),
            "notifications_queued": dispatcher.queue_size if dispatcher else 0,
        })


public_bp.add_url_rule("/", view_func=LandingView.as_view("landing"))
