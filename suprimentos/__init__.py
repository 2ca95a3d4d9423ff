import os

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from suprimentos.config import Config
from suprimentos.db import close_db, init_db
from suprimentos.db_migrations import register_db_cli
from suprimentos.observability import (
    configure_json_logging,
    ensure_request_id,
    mark_request_start,
    metrics_snapshot,
    observe_response,
    prometheus_metrics_text,
)


def create_app(config_class=Config, **service_overrides):
    app = Flask(__name__)
    app.config.from_object(config_class)
    configure_json_logging(app)

    _ensure_database_dir(app)
    _register_error_handlers(app)
    _register_blueprints(app)
    _register_health(app)
    register_db_cli(app)
    _maybe_init_schema(app)

    _register_sourcing(app, service_overrides)
    _register_scheduler(app)
    app.teardown_appcontext(close_db)
    return app


def _ensure_database_dir(app: Flask) -> None:
    database_dir = app.config.get("DATABASE_DIR")
    if database_dir:
        os.makedirs(database_dir, exist_ok=True)


def _maybe_init_schema(app: Flask) -> None:
    auto_init = bool(app.config.get("DB_AUTO_INIT", False))
    if app.testing:
        # Testes continuam isolados sem depender de migration externa.
        auto_init = True
    if not auto_init:
        return

    flask_env = (os.environ.get("FLASK_ENV", "development") or "development").strip().lower()
    if not app.testing and flask_env != "development":
        app.logger.warning("DB_AUTO_INIT ignorado fora de development.")
        return

    with app.app_context():
        init_db()


def _register_blueprints(app: Flask) -> None:
    from suprimentos.contexts.sourcing.interfaces.http import sourcing_bp

    app.register_blueprint(sourcing_bp)


def _register_sourcing(app: Flask, overrides: dict) -> None:
    from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStoreError
    from suprimentos.contexts.sourcing.infrastructure.local_cache import LocalCacheError
    from suprimentos.contexts.sourcing.wiring import build_sourcing_service
    from suprimentos.core import EventBus

    event_bus = overrides.pop("event_bus", None) or EventBus()
    service = build_sourcing_service(app.config, event_bus=event_bus, **overrides)
    app.extensions["event_bus"] = event_bus
    app.extensions["sourcing_service"] = service

    try:
        service.listener.start()
    except (DocumentStoreError, LocalCacheError) as exc:
        # schema ausente (ex.: migration pendente): tenta de novo no primeiro request
        app.logger.warning("reconciliation_listener_deferred", extra={"details": str(exc)})

    @app.before_request
    def _ensure_listening() -> None:
        if service.listener.is_active:
            return
        try:
            service.listener.start()
        except (DocumentStoreError, LocalCacheError) as exc:
            app.logger.warning("reconciliation_listener_deferred", extra={"details": str(exc)})


def _register_scheduler(app: Flask) -> None:
    from suprimentos.scheduler import start_reply_scheduler

    start_reply_scheduler(app, app.extensions["sourcing_service"].listener)


def _register_error_handlers(app: Flask) -> None:
    from suprimentos.contexts.sourcing.infrastructure.document_store import DocumentStoreError
    from suprimentos.contexts.sourcing.infrastructure.email_transport import EmailTransportError
    from suprimentos.contexts.sourcing.infrastructure.local_cache import LocalCacheError
    from suprimentos.errors import AppError, IntegrationError, PersistenceError, SystemError, classify_transport_failure
    from suprimentos.http_client import HttpClientError

    @app.before_request
    def _ensure_request_id() -> None:
        ensure_request_id()
        mark_request_start()

    @app.after_request
    def _append_request_id(response):
        response.headers["X-Request-Id"] = ensure_request_id()
        return observe_response(response)

    def _log_error(error: AppError, request_id: str) -> None:
        log_method = app.logger.error if error.critical else app.logger.warning
        log_method(
            "application_error",
            extra={
                "request_id": request_id,
                "error_code": error.code,
                "http_status": error.http_status,
                "message_key": error.message_key,
                "details": error.details,
                "request_path": request.path,
                "http_method": request.method,
            },
            exc_info=error.critical,
        )

    def _render(error: AppError):
        request_id = ensure_request_id()
        _log_error(error, request_id)
        return jsonify(error.to_response_payload(request_id)), error.http_status

    @app.errorhandler(AppError)
    def _handle_app_error(exc: AppError):
        return _render(exc)

    @app.errorhandler(DocumentStoreError)
    @app.errorhandler(LocalCacheError)
    def _handle_storage_error(exc: Exception):
        return _render(PersistenceError(details=str(exc)))

    @app.errorhandler(EmailTransportError)
    @app.errorhandler(HttpClientError)
    def _handle_transport_error(exc: Exception):
        code, message_key, http_status = classify_transport_failure(str(exc))
        if isinstance(exc, EmailTransportError) and exc.not_connected:
            code = message_key = "email_not_connected"
        mapped = IntegrationError(
            code=code,
            message_key=message_key,
            http_status=http_status,
            critical=False,
            details=str(exc),
        )
        return _render(mapped)

    @app.errorhandler(Exception)
    def _handle_unexpected(exc: Exception):
        if isinstance(exc, HTTPException):
            return exc

        request_id = ensure_request_id()
        mapped = SystemError(
            code="unexpected_error",
            message_key="unexpected_error",
            http_status=500,
            critical=True,
            details=str(exc),
        )
        app.logger.exception(
            "unexpected_exception",
            extra={
                "request_id": request_id,
                "error_code": mapped.code,
                "request_path": request.path,
                "http_method": request.method,
            },
        )
        return jsonify(mapped.to_response_payload(request_id)), mapped.http_status


def _register_health(app: Flask) -> None:
    @app.route("/health")
    def health():
        db_path = app.config.get("DB_PATH") or "unknown"
        backend = "postgres" if str(db_path).startswith("postgres") else "sqlite"
        service = app.extensions.get("sourcing_service")
        payload = {
            "status": "ok",
            "db": backend,
            "env": app.config.get("ENV", "unknown"),
            "metrics": metrics_snapshot(),
        }
        if service is not None:
            payload["listener_active"] = service.listener.is_active
            payload["send_status"] = service.store.send_status
            payload["email_connected"] = service.email_transport.is_connected()
            if not service.listener.is_active:
                payload["status"] = "degraded"
        return payload, 200

    @app.route("/metrics")
    def metrics():
        return app.response_class(prometheus_metrics_text(), mimetype="text/plain; version=0.0.4")
