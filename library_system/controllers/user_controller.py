# library_system/controllers/user_controller.py

from flask import Blueprint, jsonify, request

from library_system.services.user_service import UserService
from library_system.utils import validators as v
from library_system.utils.clock import now
from library_system.utils.decorators import authorize, current_user

user_bp = Blueprint("users", __name__)


@user_bp.get("/profile")
@authorize("profile:manage")
def get_profile():
    return jsonify({"success": True, "data": current_user().to_dict()})


@user_bp.put("/profile")
@authorize("profile:manage")
def update_profile():
    data = request.get_json(silent=True) or {}
    user = UserService.update_profile(current_user(), data)
    return jsonify({"success": True, "message": "Profile updated successfully", "data": user.to_dict()})


@user_bp.put("/change-password")
@authorize("profile:manage")
def change_password():
    data = request.get_json(silent=True) or {}
    UserService.change_password(current_user(), data.get("current_password"), data.get("new_password"))
    return jsonify({"success": True, "message": "Password changed successfully"})


@user_bp.get("/borrowing-history")
@authorize("transaction:list_own")
def borrowing_history():
    pager = UserService.borrowing_history(current_user(), request.args)
    at = now()
    return jsonify({
        "success": True,
        "data": {
            "transactions": [tx.to_dict(at) for tx in pager.items],
            "pagination": v.pagination_meta(pager, "total_transactions"),
        },
    })


@user_bp.get("/current-books")
@authorize("transaction:list_own")
def current_books():
    at = now()
    return jsonify({
        "success": True,
        "data": [tx.to_dict(at) for tx in UserService.current_books(current_user())],
    })


@user_bp.get("/stats")
@authorize("profile:manage")
def stats():
    return jsonify({"success": True, "data": UserService.stats(current_user())})


@user_bp.delete("/account")
@authorize("profile:manage")
def deactivate_account():
    data = request.get_json(silent=True) or {}
    UserService.deactivate_account(current_user(), data.get("password"))
    return jsonify({"success": True, "message": "Account deactivated successfully"})
