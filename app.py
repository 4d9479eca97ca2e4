"""虛擬試衣中繼服務 Flask 應用。"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge

from common.services.logging import log_event
from config import RelayConfig
from routes import api, user
from services import PhotoService, RelayVideoService, TryOnRelayProvider

logger = logging.getLogger(__name__)

CONTENT_SECURITY_POLICY = "; ".join(
    [
        "default-src 'self'",
        "style-src 'self' 'unsafe-inline' https://fonts.googleapis.com https://cdnjs.cloudflare.com",
        "script-src 'self' 'unsafe-inline' 'unsafe-eval'",
        "font-src 'self' https://fonts.gstatic.com https://cdnjs.cloudflare.com",
        "img-src 'self' data: https: http:",
        "media-src 'self' https:",
        "connect-src 'self' https://generativelanguage.googleapis.com https://fal.run https://api.klingai.com",
        "object-src 'none'",
        "upgrade-insecure-requests",
    ]
)


def create_app(config: Optional[RelayConfig] = None, components: Optional[Dict[str, Any]] = None) -> Flask:
    config = config or RelayConfig.load()
    _configure_logging(config.log_level)

    app = Flask(
        __name__,
        static_folder=str(config.static_dir),
        static_url_path="/static",
    )
    app.config["SECRET_KEY"] = config.secret_key
    app.config["TRYON_RELAY_CONFIG"] = config
    app.config["MAX_CONTENT_LENGTH"] = max(config.max_json_bytes, config.max_upload_bytes * config.max_upload_files)

    CORS(app, origins=config.cors_origin or "*", supports_credentials=True)

    limiter = Limiter(
        get_remote_address,
        app=app,
        storage_uri="memory://",
        headers_enabled=True,
    )
    limiter.limit(config.rate_limit)(api.api_bp)

    default_components = {
        "photo_service": PhotoService(config.upload_dir, config.max_upload_bytes),
        "tryon_provider": TryOnRelayProvider(config.settings_file),
        "video_service": RelayVideoService(
            config.settings_file,
            wait_timeout=config.video_wait_timeout,
            poll_interval=config.video_poll_interval,
            upload_dir=config.upload_dir,
        ),
    } if components is None else {}
    default_components.update(components or {})
    app.extensions["tryon_components"] = default_components

    app.register_blueprint(user.user_bp)
    app.register_blueprint(api.api_bp)

    _register_body_limits(app, config)
    _register_security_headers(app)
    _register_error_handlers(app, config)

    return app


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def _register_body_limits(app: Flask, config: RelayConfig) -> None:
    # MAX_CONTENT_LENGTH 以多檔上傳為準，JSON 本文另有上限
    @app.before_request
    def limit_json_body():
        if request.is_json and (request.content_length or 0) > config.max_json_bytes:
            raise RequestEntityTooLarge()


def _megabytes(num_bytes: int) -> str:
    return f"{num_bytes / (1024 * 1024):g}"


def _register_security_headers(app: Flask) -> None:
    @app.after_request
    def add_security_headers(response):
        response.headers.setdefault("Content-Security-Policy", CONTENT_SECURITY_POLICY)
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "SAMEORIGIN")
        response.headers.setdefault("Referrer-Policy", "no-referrer")
        response.headers.setdefault("Cross-Origin-Opener-Policy", "same-origin")
        return response


def _register_error_handlers(app: Flask, config: RelayConfig) -> None:
    @app.errorhandler(404)
    def not_found(_exc):
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(RequestEntityTooLarge)
    def too_large(_exc):
        if request.is_json:
            limit = _megabytes(config.max_json_bytes)
            return jsonify({"error": f"Request body too large. Maximum size is {limit}MB."}), 413
        limit = _megabytes(config.max_upload_bytes)
        return jsonify({"error": f"File too large. Maximum size is {limit}MB."}), 400

    @app.errorhandler(429)
    def rate_limited(_exc):
        return jsonify(
            {
                "error": "Too many requests from this IP, please try again later.",
                "retryAfter": config.retry_after_seconds,
            }
        ), 429

    @app.errorhandler(Exception)
    def unhandled(exc):
        if isinstance(exc, HTTPException):
            return jsonify({"error": exc.description}), exc.code
        logger.exception("Unhandled error: %s", exc)
        log_event("error", "unhandled_exception", error=f"{type(exc).__name__}: {exc}")
        return jsonify({"error": "Internal server error", "details": str(exc)}), 500


def main() -> None:
    config = RelayConfig.load()
    app = create_app(config)
    logger.info("Server running on http://localhost:%s", config.port)
    app.run(host=config.host, port=config.port, debug=False)


if __name__ == "__main__":
    main()
