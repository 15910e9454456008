from flask import Flask, jsonify

from library_system.config import Config
from library_system.errors import register_error_handlers
from library_system.extensions import db, jwt, mail, migrate
from library_system.utils.clock import SystemClock


def create_app(config_object=Config, clock=None):
    app = Flask(__name__)
    app.config.from_object(config_object)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # 1) Extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    mail.init_app(app)

    # 2) Time source for every due date, fine and job window
    app.extensions["clock"] = clock or SystemClock()

    # 3) Models must be imported before create_all / migrations see them
    from library_system.models import book, notification_log, token_blocklist, transaction, user  # noqa: F401

    register_error_handlers(app)

    from library_system.services.auth_service import AuthService

    @jwt.token_in_blocklist_loader
    def _token_revoked(_header, payload):
        return AuthService.is_revoked(payload["jti"])

    # 4) API blueprints
    from library_system.controllers.admin_controller import admin_bp
    from library_system.controllers.auth_controller import auth_bp
    from library_system.controllers.book_controller import book_bp
    from library_system.controllers.transaction_controller import transaction_bp
    from library_system.controllers.user_controller import user_bp
    app.register_blueprint(auth_bp, url_prefix="/api/auth")
    app.register_blueprint(book_bp, url_prefix="/api/books")
    app.register_blueprint(transaction_bp, url_prefix="/api/transactions")
    app.register_blueprint(user_bp, url_prefix="/api/users")
    app.register_blueprint(admin_bp, url_prefix="/api/admin")

    @app.get("/health")
    def health():
        return jsonify({"ok": True})

    from library_system.cli import register_commands
    register_commands(app)

    # 5) Maintenance jobs
    from library_system.tasks.scheduler import start_scheduler
    start_scheduler(app)

    return app
