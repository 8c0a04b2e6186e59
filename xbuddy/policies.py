from __future__ import annotations

from functools import wraps

from flask import current_app, jsonify
from flask.views import MethodView
from flask_login import current_user

from .services.notifications import NotificationDispatcher


def get_dispatcher() -> NotificationDispatcher | None:
    """The dispatcher built by create_app()."""
    return current_app.extensions.get("notifications")


def unauthorized():
    return jsonify({"error": "Not authorized"}), 401


# --------- Function-view decorators ----------

def organizer_required(fn):
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not current_user.is_authenticated:
            return unauthorized()
        return fn(*args, **kwargs)
    return wrapper


# --------- Class-based view Mixins ----------

class OrganizerRequiredMixin(MethodView):
    def dispatch_request(self, *args, **kwargs):
        if not current_user.is_authenticated:
            return unauthorized()
        return super().dispatch_request(*args, **kwargs)
