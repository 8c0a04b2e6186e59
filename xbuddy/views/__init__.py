from __future__ import annotations

from flask import Flask, jsonify

from ..services.engine import InfeasibleDrawError, InvalidRosterError
from ..services.groups import GroupStateError, NotFoundError, ValidationError


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ValidationError)
    def _validation(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(NotFoundError)
    def _not_found(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(GroupStateError)
    def _state(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(InvalidRosterError)
    def _invalid_roster(e):
        return jsonify({"error": str(e), "kind": "invalid_input"}), 422

    @app.errorhandler(InfeasibleDrawError)
    def _infeasible(e):
        return jsonify({"error": str(e), "kind": "infeasible", "attempts": e.attempts}), 422

    @app.errorhandler(404)
    def _route_not_found(e):
        return jsonify({"error": "Not found"}), 404
