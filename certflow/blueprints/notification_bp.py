"""
Notification blueprint.

Endpoints:
    GET   /api/v1/notifications               — list for the acting user
    GET   /api/v1/notifications/unread-count  — badge count
    POST  /api/v1/notifications/<id>/read     — mark one as read
    POST  /api/v1/notifications/read-all      — mark all as read
"""

from flask import Blueprint, g, jsonify, request

from certflow.blueprints import json_body, register_error_handlers
from certflow.middleware.identity import login_required
from certflow.services.notification import NotificationService

notification_bp = Blueprint("notification", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


@notification_bp.route("/notifications", methods=["GET"])
@login_required
def list_notifications():
    """
    Query params:
        project_id  — filter to one project
        unread_only — "true" to show only unread
        limit       — max items (default 50, clamped to 1..200)
        offset      — pagination offset
    """
    project_id = request.args.get("project_id", type=int)
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    limit = max(1, min(request.args.get("limit", 50, type=int), 200))
    offset = max(request.args.get("offset", 0, type=int), 0)

    items, total = NotificationService.list_for_recipient(
        g.current_user.id, project_id=project_id, unread_only=unread_only,
        limit=limit, offset=offset,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.current_user.id, project_id),
    }), 200


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@login_required
def unread_count():
    project_id = request.args.get("project_id", type=int)
    return jsonify({"unread_count": NotificationService.unread_count(g.current_user.id, project_id)}), 200


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
@login_required
def mark_read(notification_id):
    notif = NotificationService.mark_read(notification_id, g.current_user)
    return jsonify(notif.to_dict()), 200


@notification_bp.route("/notifications/read-all", methods=["POST"])
@login_required
def mark_all_read():
    project_id = json_body().get("project_id")
    count = NotificationService.mark_all_read(g.current_user.id, project_id)
    return jsonify({"marked_read": count}), 200
