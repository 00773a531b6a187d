# Overview: Flask API routes for admin account management; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import privileged
from ..services import auth_service
from ..services.audit_service import AuditAction
from ..validation import require_json_object


admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")


@admin_bp.get("/users")
@privileged("VIEW_USERS")
def list_users_route():
    users = auth_service.list_users()
    return jsonify({"users": [u.to_dict() for u in users]}), 200


@admin_bp.post("/users")
@privileged("MANAGE_USERS", action=AuditAction.USER_CREATED, resource_type="admin_user", detail_fields=("email", "role"))
def create_user_route():
    data = require_json_object(request.get_json(silent=True))
    user = auth_service.create_user(
        data.get("email"),
        data.get("password"),
        name=data.get("name"),
        role=data.get("role") or "business_processing",
    )
    g.audit_resource_id = user.id
    return jsonify({"success": True, "user": user.to_dict()}), 201


@admin_bp.put("/users/<int:user_id>")
@privileged("MANAGE_USERS", action=AuditAction.USER_UPDATED, resource_type="admin_user")
def update_user_route(user_id: int):
    """
    Edit an account: role, is_active, name, email, password.

    SECURITY: no self role change, no self deactivation, and the last active
    website_admin stays a website_admin.
    """
    data = require_json_object(request.get_json(silent=True))
    result = auth_service.update_user(g.current_user.id, user_id, data)

    g.audit_action = result.action
    g.audit_resource_id = result.user.id
    # Password values never reach the audit trail; only the fact of the change.
    g.audit_details = {"changes": result.changes, "target_email": result.user.email}
    return jsonify({"success": True, "user": result.user.to_dict()}), 200


@admin_bp.delete("/users/<int:user_id>")
@privileged("MANAGE_USERS", action=AuditAction.USER_DEACTIVATED, resource_type="admin_user")
def deactivate_user_route(user_id: int):
    user = auth_service.deactivate_user(g.current_user.id, user_id)
    g.audit_resource_id = user.id
    g.audit_details = {"target_email": user.email}
    return jsonify({"success": True, "user": user.to_dict()}), 200
