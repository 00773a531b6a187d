# Overview: Flask API routes for orders; PII fields are sealed on write and opened on read.

from flask import Blueprint, g, jsonify, request

from ..decorators import privileged
from ..services import order_service
from ..services.audit_service import AuditAction
from ..validation import require_json_object


orders_bp = Blueprint("orders", __name__, url_prefix="/api/admin/orders")


@orders_bp.get("")
@privileged("VIEW_ALL_ORDERS")
def list_orders_route():
    result = order_service.list_orders(
        status=request.args.get("status"),
        page=request.args.get("page"),
        limit=request.args.get("limit"),
    )
    return jsonify(result), 200


@orders_bp.get("/<int:order_id>")
@privileged("VIEW_ALL_ORDERS")
def get_order_route(order_id: int):
    order = order_service.get_order(order_id)
    return jsonify({"order": order_service.serialize_order(order)}), 200


@orders_bp.post("")
@privileged("UPDATE_ORDER_STATUS", action=AuditAction.ORDER_CREATED, resource_type="order")
def create_order_route():
    order = order_service.create_order(require_json_object(request.get_json(silent=True)))
    g.audit_resource_id = order.id
    # Contact details stay out of the audit trail.
    g.audit_details = {"order_number": order.order_number}
    return jsonify({"success": True, "order": order_service.serialize_order(order)}), 201


@orders_bp.put("/<int:order_id>")
@privileged("UPDATE_ORDER_STATUS", action=AuditAction.ORDER_STATUS_UPDATED, resource_type="order")
def update_order_route(order_id: int):
    order, changes = order_service.update_order(order_id, require_json_object(request.get_json(silent=True)))
    g.audit_resource_id = order.id
    g.audit_details = {"order_number": order.order_number, "changes": changes}
    return jsonify({"success": True, "order": order_service.serialize_order(order)}), 200
