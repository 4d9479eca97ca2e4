"""前台頁面、健康檢查與上傳檔案路由。"""

from __future__ import annotations

from datetime import datetime, timezone

from flask import Blueprint, current_app, jsonify, send_from_directory


user_bp = Blueprint("tryon_user", __name__)


def _config():
    return current_app.config["TRYON_RELAY_CONFIG"]


@user_bp.get("/")
def index():
    static_dir = _config().static_dir
    if not (static_dir / "index.html").exists():
        return jsonify({"error": "Endpoint not found"}), 404
    return send_from_directory(static_dir, "index.html")


@user_bp.get("/health")
def health():
    return jsonify({"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()})


@user_bp.get("/uploads/<path:filename>")
def serve_upload(filename: str):
    return send_from_directory(current_app.extensions["tryon_components"]["photo_service"].upload_dir, filename)
