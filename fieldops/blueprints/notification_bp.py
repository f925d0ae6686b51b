"""
Notification blueprint: the calling actor's in-app inbox.

Endpoints:
    GET   /api/v1/notifications                 - own notifications, newest first
    PATCH /api/v1/notifications/<id>/read       - mark one as read

Query parameters for the list: ``unread_only`` (bool) and ``limit``
(capped at MAX_PAGE_SIZE).
"""

import logging

from flask import Blueprint, current_app, jsonify, request

from fieldops.auth import require_actor
from fieldops.blueprints import int_arg, register_error_handlers
from fieldops.core.exceptions import NotFoundError
from fieldops.services.notification import NotificationService
from fieldops.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")
register_error_handlers(notification_bp)


# ═══════════════════════════════════════════════════════════════════════════
#  INBOX
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    actor = require_actor()
    max_size = int(current_app.config.get("MAX_PAGE_SIZE", 100))
    limit = min(max(int_arg("limit", 50), 1), max_size)
    items = NotificationService.list_for_recipient(
        actor.id,
        unread_only=parse_bool(request.args.get("unread_only")),
        limit=limit,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": len(items),
        "unread_count": NotificationService.unread_count(actor.id),
    })


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["PATCH"])
def mark_notification_read(notification_id):
    actor = require_actor()
    notif = NotificationService.mark_read(notification_id, actor.id)
    if notif is None:
        raise NotFoundError(resource="Notification", resource_id=notification_id)
    return jsonify(notif.to_dict())
