from __future__ import annotations

from flask import Blueprint, current_app, jsonify, request
from flask.views import MethodView
from flask_login import current_user, login_user, logout_user

from ..extensions import db
from ..models import Organizer
from ..policies import OrganizerRequiredMixin, get_dispatcher, organizer_required
from ..security import hash_password, verify_password
from ..services.notifications import DeliveryStatus, NotificationTask, OutboundEmail


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")

MIN_PASSWORD_LENGTH = 8


def _organizer_dict(o: Organizer) -> dict:
    return {"id": o.id, "name": o.name, "email": o.email}


class RegisterView(MethodView):
    def post(self):
        if not current_app.config.get("ORGANIZER_REGISTRATION_OPEN", True) and Organizer.query.count() > 0:
            return jsonify({"error": "Registration is closed."}), 403

        data = request.get_json(silent=True) or {}
        name = (data.get("name") or "").strip()
        email = (data.get("email") or "").strip().lower()
        password = data.get("password") or ""

        if not name:
            return jsonify({"error": "Name is required."}), 400
        if "@" not in email:
            return jsonify({"error": "A valid email is required."}), 400
        if len(password) < MIN_PASSWORD_LENGTH:
            return jsonify({"error": f"Password must be at least {MIN_PASSWORD_LENGTH} characters."}), 400
        if Organizer.query.filter_by(email=email).first():
            return jsonify({"error": "That email is already registered."}), 409

        o = Organizer(name=name, email=email, password_hash=hash_password(password))
        db.session.add(o)
        db.session.commit()

        login_user(o)
        return jsonify(_organizer_dict(o)), 201


class LoginView(MethodView):
    def post(self):
        data = request.get_json(silent=True) or {}
        email = (data.get("email") or "").strip().lower()
        password = data.get("password") or ""

        o = Organizer.query.filter_by(email=email).first() if email else None
        if not o or not password or not verify_password(password, o.password_hash):
            return jsonify({"error": "Invalid email or password."}), 401

        login_user(o)
        return jsonify(_organizer_dict(o))


class LogoutView(MethodView):
    def post(self):
        if current_user.is_authenticated:
            logout_user()
        return jsonify({"ok": True})


class ProfileView(OrganizerRequiredMixin):
    def get(self):
        return jsonify(_organizer_dict(current_user))


@auth_bp.route("/test-email", methods=["POST"])
@organizer_required
def send_test_email():
    """Send a one-off message to the organizer to check the mail setup."""
    dispatcher = get_dispatcher()
    if dispatcher is None:
        return jsonify({"error": "Notifications are not configured."}), 503

    task = NotificationTask(
        group_id=None,
        giver_id=None,
        receiver_id=None,
        message=OutboundEmail(
            to=current_user.email,
            subject="X Buddy test e-mail",
            html="<p>Your X Buddy e-mail settings work.</p>",
            text="Your X Buddy e-mail settings work.",
        ),
    )
    dispatcher.deliver(task, timeout=current_app.config["NOTIFY_WAIT_TIMEOUT"])
    if task.status == DeliveryStatus.FAILED:
        return jsonify({"error": "Failed to send e-mail", "detail": task.last_error}), 502
    if task.status != DeliveryStatus.DELIVERED:
        return jsonify({"message": "Test e-mail queued", "task_id": task.id}), 202
    return jsonify({"message": "Test e-mail sent"})


auth_bp.add_url_rule("/register", view_func=RegisterView.as_view("register"), methods=["POST"])
auth_bp.add_url_rule("/login", view_func=LoginView.as_view("login"), methods=["POST"])
auth_bp.add_url_rule("/logout", view_func=LogoutView.as_view("logout"), methods=["POST"])
auth_bp.add_url_rule("/me", view_func=ProfileView.as_view("me"), methods=["GET"])
