# library_system/controllers/admin_controller.py

from flask import Blueprint, current_app, jsonify, request

from library_system.services.admin_service import AdminService
from library_system.services.user_service import UserService
from library_system.utils import validators as v
from library_system.utils.clock import now
from library_system.utils.decorators import authorize, current_user

admin_bp = Blueprint("admin", __name__)


@admin_bp.get("/users")
@authorize("admin:users")
def list_users():
    pager = AdminService.list_users(request.args)
    return jsonify({
        "success": True,
        "data": {
            "users": [u.to_dict() for u in pager.items],
            "pagination": v.pagination_meta(pager, "total_users"),
        },
    })


@admin_bp.get("/users/<int:user_id>")
@authorize("admin:users")
def get_user(user_id: int):
    user, recent = AdminService.user_detail(user_id)
    at = now()
    return jsonify({
        "success": True,
        "data": {"user": user.to_dict(), "recent_transactions": [tx.to_dict(at) for tx in recent]},
    })


@admin_bp.put("/users/<int:user_id>")
@authorize("admin:users")
def update_user(user_id: int):
    data = request.get_json(silent=True) or {}
    user = UserService.admin_update(current_user(), user_id, data)
    return jsonify({"success": True, "message": "User updated successfully", "data": user.to_dict()})


@admin_bp.delete("/users/<int:user_id>")
@authorize("admin:users")
def delete_user(user_id: int):
    UserService.admin_deactivate(current_user(), user_id)
    return jsonify({"success": True, "message": "User deactivated successfully"})


@admin_bp.get("/dashboard")
@authorize("admin:dashboard")
def dashboard():
    return jsonify({"success": True, "data": AdminService.dashboard()})


@admin_bp.get("/analytics")
@authorize("admin:dashboard")
def analytics():
    return jsonify({"success": True, "data": AdminService.analytics(request.args.get("period"))})


@admin_bp.get("/reports/monthly")
@authorize("admin:dashboard")
def monthly_report():
    return jsonify({"success": True, "data": AdminService.monthly_report()})


@admin_bp.post("/notify-all")
@authorize("admin:notify")
def notify_all():
    data = request.get_json(silent=True) or {}
    count = AdminService.notify_all(data.get("subject"), data.get("message"), data.get("type") or "both")
    return jsonify({
        "success": True,
        "message": f"Notification sent to {count} users",
        "data": {"recipients": count},
    })


@admin_bp.post("/jobs/<name>/run")
@authorize("admin:jobs")
def run_job(name: str):
    result = current_app.extensions["job_scheduler"].run_job(name)
    return jsonify({"success": True, "message": f"Job {name} finished", "data": result})
