# library_system/errors.py
from flask import jsonify
from sqlalchemy.exc import SQLAlchemyError

from library_system.extensions import db, jwt


class LibraryError(Exception):
    status_code = 500

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.message = message
        self.errors = errors

    def to_dict(self) -> dict:
        payload = {"success": False, "message": self.message}
        if self.errors:
            payload["errors"] = self.errors
        return payload


class ValidationError(LibraryError):
    status_code = 400


class Unauthorized(LibraryError):
    status_code = 401


class Forbidden(LibraryError):
    status_code = 403


class NotFound(LibraryError):
    status_code = 404


class Conflict(LibraryError):
    """Business rule violation: the request is well formed but not allowed now."""
    status_code = 409


class AccountLocked(LibraryError):
    status_code = 423


class InfrastructureError(LibraryError):
    """Database (or other backing service) unavailable."""
    status_code = 503


def register_error_handlers(app):
    @app.errorhandler(LibraryError)
    def _library_error(e: LibraryError):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(SQLAlchemyError)
    def _db_error(e: SQLAlchemyError):
        db.session.rollback()
        app.logger.exception(f"[db] Unhandled database error: {e}")
        return jsonify({"success": False, "message": "Database unavailable"}), 503

    @app.errorhandler(404)
    def _not_found(_e):
        return jsonify({"success": False, "message": "Route not found"}), 404

    @app.errorhandler(405)
    def _not_allowed(_e):
        return jsonify({"success": False, "message": "Method not allowed"}), 405

    @jwt.unauthorized_loader
    def _missing_token(reason):
        return jsonify({"success": False, "message": reason}), 401

    @jwt.invalid_token_loader
    def _invalid_token(reason):
        return jsonify({"success": False, "message": reason}), 401

    @jwt.expired_token_loader
    def _expired_token(_header, _payload):
        return jsonify({"success": False, "message": "Token has expired"}), 401

    @jwt.revoked_token_loader
    def _revoked_token(_header, _payload):
        return jsonify({"success": False, "message": "Token has been revoked"}), 401
