import logging
import os

from flask import Flask
from marshmallow import ValidationError as SchemaValidationError

from .config import DevelopmentConfig, ProductionConfig, TestingConfig
from .extensions import db, migrate, jwt, ma, cors, limiter

CONFIGS = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestingConfig,
}

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def create_app(config_name=None):
    app = Flask(__name__, instance_relative_config=False)
    env = config_name or os.getenv("FLASK_ENV", "development")
    app.config.from_object(CONFIGS.get(env, DevelopmentConfig))

    logging.basicConfig(level=app.config["LOG_LEVEL"], format=LOG_FORMAT)
    app.logger.setLevel(app.config["LOG_LEVEL"])

    # initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    jwt.init_app(app)
    ma.init_app(app)
    origins = [o.strip() for o in app.config["CORS_ORIGINS"].split(",")]
    cors.init_app(
        app,
        resources={r"/api/*": {"origins": origins}},
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization"],
        methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    )
    limiter.init_app(app)

    from negotiation.services import attachment_store, chat_cache
    attachment_store.init_app(app)
    chat_cache.init_app(app)

    # registers the order event receivers
    from negotiation.services import bid_service  # noqa: F401

    # models must be imported before create_all / migrations
    from negotiation.models import (  # noqa: F401
        user, order, bid, declined_order, order_invitation, submission, chat, message, notification,
    )

    # register blueprints
    from negotiation.routes.order_routes import bp as order_bp
    from negotiation.routes.bid_routes import bp as bid_bp
    from negotiation.routes.submission_routes import bp as submission_bp
    from negotiation.routes.chat_routes import bp as chat_bp
    from negotiation.routes.support_chat_routes import bp as support_chat_bp
    from negotiation.routes.notification_routes import bp as notification_bp
    from negotiation.routes.file_routes import bp as file_bp

    app.register_blueprint(order_bp)
    app.register_blueprint(bid_bp)
    app.register_blueprint(submission_bp)
    app.register_blueprint(chat_bp)
    app.register_blueprint(support_chat_bp)
    app.register_blueprint(notification_bp)
    app.register_blueprint(file_bp)

    register_error_handlers(app)
    return app


def register_error_handlers(app):
    # error handlers to match required error format
    from negotiation.utils.exceptions import ServiceError
    from negotiation.utils.response_formatter import error_response

    @app.errorhandler(ServiceError)
    def service_error(e):
        db.session.rollback()
        if e.status >= 500:
            app.logger.error("%s: %s", e.code, e.message)
        return error_response(e.code, e.message, e.details, status=e.status)

    @app.errorhandler(SchemaValidationError)
    def schema_error(e):
        return error_response("VALIDATION_ERROR", "Invalid request payload", e.normalized_messages(), status=422)

    @app.errorhandler(400)
    def bad_request(e):
        return error_response("BAD_REQUEST", e.description, status=400)

    @app.errorhandler(401)
    def unauthorized(e):
        return error_response("UNAUTHORIZED", e.description, status=401)

    @app.errorhandler(404)
    def not_found(e):
        return error_response("NOT_FOUND", "Resource not found", status=404)

    @app.errorhandler(405)
    def method_not_allowed(e):
        return error_response("METHOD_NOT_ALLOWED", e.description, status=405)

    @app.errorhandler(429)
    def rate_limited(e):
        return error_response("RATE_LIMITED", "Too many requests", {"limit": e.description}, status=429)

    @app.errorhandler(500)
    def server_error(e):
        db.session.rollback()
        app.logger.exception("Unhandled error")
        return error_response("SERVER_ERROR", "Internal server error", status=500)

    @jwt.unauthorized_loader
    def missing_token(reason):
        return error_response("UNAUTHORIZED", reason, status=401)

    @jwt.invalid_token_loader
    def invalid_token(reason):
        return error_response("UNAUTHORIZED", reason, status=401)

    @jwt.expired_token_loader
    def expired_token(jwt_header, jwt_payload):
        return error_response("TOKEN_EXPIRED", "Token has expired", status=401)
