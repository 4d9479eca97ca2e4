import json
from unittest.mock import MagicMock

import pytest

from app import create_app
from config import RelayConfig
from services import PhotoService

UPSTREAM_KEYS = (
    "GEMINI_API_KEY",
    "GEMINI_LLM",
    "FAL_KEY",
    "FAL_EDIT_MODEL",
    "KLINGAI_VIDEO_ACCESS_KEY",
    "KLINGAI_VIDEO_SECRET_KEY",
    "KLINGAI_VIDEO_MODEL",
    "KLINGAI_VIDEO_MODE",
    "KLINGAI_VIDEO_DURATION",
)


@pytest.fixture(autouse=True)
def clean_upstream_env(monkeypatch):
    for key in UPSTREAM_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def write_settings(tmp_path):
    """Write a settings.json under tmp_path and return its path."""

    def _write(**values):
        path = tmp_path / "settings.json"
        path.write_text(json.dumps(values), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture
def relay_config(tmp_path):
    config = RelayConfig(secret_key="test", project_root=tmp_path)
    config.ensure_directories()
    return config


@pytest.fixture
def tryon_provider():
    return MagicMock()


@pytest.fixture
def video_service():
    service = MagicMock()
    service.is_enabled.return_value = True
    return service


@pytest.fixture
def app(relay_config, tryon_provider, video_service):
    components = {
        "photo_service": PhotoService(relay_config.upload_dir, relay_config.max_upload_bytes),
        "tryon_provider": tryon_provider,
        "video_service": video_service,
    }
    flask_app = create_app(relay_config, components=components)
    flask_app.config["TESTING"] = True
    return flask_app


@pytest.fixture
def client(app):
    return app.test_client()
