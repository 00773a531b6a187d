# Overview: Flask API routes for site configuration; parses input and returns JSON responses.

from flask import Blueprint, g, jsonify, request

from ..decorators import privileged
from ..services import settings_service
from ..services.audit_service import AuditAction
from ..validation import require_json_object


settings_bp = Blueprint("settings", __name__, url_prefix="/api/admin/settings")


@settings_bp.get("")
@privileged("VIEW_SETTINGS")
def get_settings_route():
    return jsonify(settings_service.get_settings()), 200


@settings_bp.put("")
@privileged("EDIT_SETTINGS", action=AuditAction.SETTINGS_UPDATED, resource_type="settings")
def update_settings_route():
    data = require_json_object(request.get_json(silent=True))
    settings, updated_fields = settings_service.update_settings(data, g.current_user.email)
    g.audit_details = {"updatedFields": updated_fields}
    return jsonify({"success": True, "settings": settings}), 200


@settings_bp.delete("")
@privileged("EDIT_SETTINGS", action=AuditAction.SETTINGS_RESET, resource_type="settings")
def reset_settings_route():
    return jsonify({"success": True, "settings": settings_service.reset_settings()}), 200
