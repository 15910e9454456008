# library_system/controllers/auth_controller.py

from flask import Blueprint, jsonify, request
from flask_jwt_extended import get_jwt, get_jwt_identity, jwt_required

from library_system.services.auth_service import AuthService
from library_system.utils.decorators import authorize, current_user

auth_bp = Blueprint("auth", __name__)


@auth_bp.post("/register")
def register():
    data = request.get_json(silent=True) or {}
    user = AuthService.register(data)
    return jsonify({
        "success": True,
        "message": "User registered successfully. Please verify your email and phone number.",
        "data": {"user_id": user.id, "email": user.email, "phone": user.phone},
    }), 201


@auth_bp.post("/login")
def login():
    data = request.get_json(silent=True) or {}
    tokens, user = AuthService.login(
        (data.get("email_or_phone") or data.get("email") or "").strip(),
        data.get("password") or "",
    )
    return jsonify({
        "success": True,
        "message": "Login successful",
        "data": {**tokens, "user": user.to_dict()},
    })


@auth_bp.post("/refresh")
@jwt_required(refresh=True)
def refresh():
    token = AuthService.refresh(int(get_jwt_identity()))
    return jsonify({"success": True, "data": {"token": token}})


@auth_bp.post("/verify-email")
def verify_email():
    data = request.get_json(silent=True) or {}
    AuthService.verify_email(data.get("token"))
    return jsonify({"success": True, "message": "Email verified successfully"})


@auth_bp.post("/verify-phone")
def verify_phone():
    data = request.get_json(silent=True) or {}
    AuthService.verify_phone(data.get("phone"), data.get("otp"))
    return jsonify({"success": True, "message": "Phone number verified successfully"})


@auth_bp.post("/resend-email-verification")
def resend_email_verification():
    data = request.get_json(silent=True) or {}
    AuthService.resend_email_verification(data.get("email"))
    return jsonify({"success": True, "message": "Verification email sent successfully"})


@auth_bp.post("/resend-phone-verification")
def resend_phone_verification():
    data = request.get_json(silent=True) or {}
    AuthService.resend_phone_verification(data.get("phone"))
    return jsonify({"success": True, "message": "Verification SMS sent successfully"})


@auth_bp.post("/forgot-password")
def forgot_password():
    data = request.get_json(silent=True) or {}
    AuthService.forgot_password(data.get("email"))
    return jsonify({
        "success": True,
        "message": "If the email is registered, a password reset link has been sent",
    })


@auth_bp.post("/reset-password")
def reset_password():
    data = request.get_json(silent=True) or {}
    AuthService.reset_password(data.get("token"), data.get("password"))
    return jsonify({"success": True, "message": "Password reset successfully"})


@auth_bp.get("/me")
@authorize()
def me():
    return jsonify({"success": True, "data": current_user().to_dict()})


@auth_bp.post("/logout")
@authorize()
def logout():
    AuthService.revoke(get_jwt()["jti"])
    return jsonify({"success": True, "message": "Logout successful"})
