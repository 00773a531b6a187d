# Overview: Flask API route for searching the audit trail.

from flask import Blueprint, jsonify, request

from ..decorators import privileged
from ..services import audit_service


audit_bp = Blueprint("audit", __name__, url_prefix="/api/admin/audit")


@audit_bp.get("")
@privileged("VIEW_AUDIT_LOGS")
def list_audit_logs_route():
    """
    Query params: action, user_id, user_email, resource_type, resource_id,
    from, to (ISO-8601), page, limit (max 100).
    """
    filters = {
        key: request.args.get(key)
        for key in ("action", "user_id", "user_email", "resource_type", "resource_id", "from", "to")
    }
    result = audit_service.query_audit_logs(
        filters,
        page=request.args.get("page"),
        limit=request.args.get("limit"),
    )
    return jsonify(result), 200
