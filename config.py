"""試衣中繼服務設定模組。"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS = {
    "GEMINI_API_KEY": "",
    "GEMINI_LLM": "gemini-2.5-flash",
    "FAL_KEY": "",
    "FAL_EDIT_MODEL": "fal-ai/nano-banana/edit",
    "FAL_OUTPUT_FORMAT": "jpeg",
    "KLINGAI_VIDEO_ACCESS_KEY": "",
    "KLINGAI_VIDEO_SECRET_KEY": "",
    "KLINGAI_VIDEO_MODEL": "kling-v2-5-turbo",
    "KLINGAI_VIDEO_MODE": "std",
    "KLINGAI_VIDEO_DURATION": "5",
}


@dataclass
class RelayConfig:
    """封裝試衣中繼服務的設定值。"""

    secret_key: str
    project_root: Path
    host: str = "0.0.0.0"
    port: int = 3000
    cors_origin: Optional[str] = None
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max_requests: int = 100
    log_level: str = "INFO"
    max_upload_bytes: int = 10 * 1024 * 1024
    max_upload_files: int = 10
    max_json_bytes: int = 50 * 1024 * 1024
    video_wait_timeout: float = 300.0
    video_poll_interval: float = 5.0

    @property
    def upload_dir(self) -> Path:
        return self.project_root / "uploads"

    @property
    def static_dir(self) -> Path:
        return self.project_root / "static"

    @property
    def data_dir(self) -> Path:
        return self.project_root / "data"

    @property
    def settings_file(self) -> Path:
        return self.data_dir / "settings.json"

    @property
    def rate_limit(self) -> str:
        window_seconds = max(1, self.rate_limit_window_ms // 1000)
        return f"{self.rate_limit_max_requests} per {window_seconds} second"

    @property
    def retry_after_seconds(self) -> int:
        return -(-self.rate_limit_window_ms // 1000)

    def ensure_directories(self) -> None:
        self.upload_dir.mkdir(parents=True, exist_ok=True)
        self.static_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> "RelayConfig":
        """從 .env、data/settings.json 與環境變數建構設定，並確保必要目錄存在。"""

        root = Path(project_root) if project_root else Path(__file__).resolve().parent
        load_dotenv(root / ".env")

        config = cls(
            secret_key=os.environ.get("SECRET_KEY", "tryon-relay-dev"),
            project_root=root,
            host=os.environ.get("HOST", "0.0.0.0"),
            port=_int_env("PORT", 3000),
            cors_origin=os.environ.get("CORS_ORIGIN") or None,
            rate_limit_window_ms=_int_env("RATE_LIMIT_WINDOW_MS", 15 * 60 * 1000),
            rate_limit_max_requests=_int_env("RATE_LIMIT_MAX_REQUESTS", 100),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            video_wait_timeout=_float_env("VIDEO_WAIT_TIMEOUT", 300.0),
            video_poll_interval=_float_env("VIDEO_POLL_INTERVAL", 5.0),
        )
        config.ensure_directories()

        # 確保 settings.json 存在，服務從此檔讀取金鑰（優先於環境變數）
        if not config.settings_file.exists():
            config.settings_file.write_text(
                json.dumps(DEFAULT_SETTINGS, indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
            logger.info("已創建預設設定檔: %s", config.settings_file)

        return config


def _int_env(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default
