"""
KlingAI Video Generation Service
Based on https://app.klingai.com/global/dev/document-api/apiReference/model/imageToVideo
Authentication uses JWT (JSON Web Token, RFC 7519)
"""
import base64
import logging
import time
from pathlib import Path
from typing import Any, Callable, Dict, Optional

import jwt
import requests

from common.services.settings import SettingsFileMixin
from common.utils.image_refs import is_data_url, is_remote_url, strip_data_url_prefix

DEFAULT_VIDEO_PROMPT = "Rotate the outfit, keep everything else still"
UNSUPPORTED_IMAGE_MESSAGE = "Image must be an http(s) URL, a data URL, or an uploaded file"


class KlingAIVideoService(SettingsFileMixin):
    """
    KlingAI Video API 整合服務：
    - 透過 KlingAI API 將試衣結果圖片轉換為短影片
    - 支持自定義動作 prompt
    - 影片保留在 KlingAI 端，回傳遠端 URL
    """

    API_BASE_URL = "https://api.klingai.com"
    SUPPORTED_VIDEO_MODELS = {
        "kling-v1": "Kling v1",
        "kling-v1-5": "Kling v1.5",
        "kling-v1-6": "Kling v1.6",
        "kling-v2-master": "Kling v2 Master",
        "kling-v2-1": "Kling v2.1",
        "kling-v2-1-master": "Kling v2.1 Master",
        "kling-v2-5-turbo": "Kling v2.5 Turbo",
    }
    SUPPORTED_DURATIONS = (5, 10)
    TOKEN_TTL_SECONDS = 1800

    def __init__(
        self,
        settings_json_path: Optional[str] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
        allowed_root: Optional[Path] = None,
    ) -> None:
        self.logger = logging.getLogger(__name__)
        # 本機圖片只接受此目錄內的檔案；None 表示不接受任何本機路徑
        self.allowed_root = Path(allowed_root).resolve() if allowed_root else None

        self.access_key: Optional[str] = None
        self.secret_key: Optional[str] = None
        self.model: str = "kling-v2-5-turbo"
        self.mode: str = "std"  # std or pro
        self.duration: int = 5
        self._sleep = sleep
        self._clock = clock

        self._load_settings(settings_json_path)

    def _load_settings(self, settings_json_path: Optional[str] = None) -> None:
        settings = self._read_settings(settings_json_path)
        self.access_key = self._setting(settings, "KLINGAI_VIDEO_ACCESS_KEY")
        self.secret_key = self._setting(settings, "KLINGAI_VIDEO_SECRET_KEY")
        self.model = self._setting(settings, "KLINGAI_VIDEO_MODEL", self.model)
        self.mode = self._setting(settings, "KLINGAI_VIDEO_MODE", self.mode)
        self.duration = self._normalize_duration(self._setting(settings, "KLINGAI_VIDEO_DURATION", "5"))
        if self.model not in self.SUPPORTED_VIDEO_MODELS:
            self.logger.warning("[KlingAIVideoService] Unrecognized model %s, sending as-is", self.model)

        if self.is_enabled():
            self.logger.info(
                "[KlingAIVideoService] Keys loaded, model=%s mode=%s duration=%ss",
                self.model, self.mode, self.duration,
            )
        else:
            self.logger.warning("[KlingAIVideoService] Access key or secret key missing; video generation disabled")

    def _reload_settings_if_changed(self) -> None:
        data = self._changed_settings()
        if data is None:
            return
        self.access_key = data.get("KLINGAI_VIDEO_ACCESS_KEY") or self.access_key
        self.secret_key = data.get("KLINGAI_VIDEO_SECRET_KEY") or self.secret_key
        self.model = data.get("KLINGAI_VIDEO_MODEL") or self.model
        self.mode = data.get("KLINGAI_VIDEO_MODE") or self.mode
        self.duration = self._normalize_duration(data.get("KLINGAI_VIDEO_DURATION") or self.duration)
        self.logger.info("[KlingAIVideoService] Settings reloaded (model: %s, mode: %s)", self.model, self.mode)

    def is_enabled(self) -> bool:
        return bool(self.access_key and self.secret_key)

    def _normalize_duration(self, value: Any) -> int:
        try:
            duration = int(value)
        except (TypeError, ValueError):
            return self.SUPPORTED_DURATIONS[0]
        return duration if duration in self.SUPPORTED_DURATIONS else self.SUPPORTED_DURATIONS[0]

    def _generate_jwt_token(self) -> str:
        """
        Generate JWT token for KlingAI API authentication
        Follows JWT (JSON Web Token, RFC 7519) standard
        """
        current_time = int(time.time())
        payload = {
            "iss": self.access_key,  # Issuer: access key
            "exp": current_time + self.TOKEN_TTL_SECONDS,
            "nbf": current_time - 5,  # Not before: current time - 5 seconds
        }
        return jwt.encode(payload, self.secret_key, algorithm="HS256", headers={"alg": "HS256", "typ": "JWT"})

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._generate_jwt_token()}",
        }

    def _image_payload(self, image: str) -> str:
        """
        KlingAI accepts either an image URL or a base64 string WITHOUT data URI prefix.

        Correct format: iVBORw0KGgoAAAANSUhEUgAAAAUA...
        Incorrect format: data:image/png;base64,iVBORw0KGgoAAAANSUhEUgAAAAUA...

        Local paths are read only when they resolve to a file under ``allowed_root``.
        """
        if is_remote_url(image):
            return image
        if is_data_url(image):
            return strip_data_url_prefix(image)
        path = self._allowed_local_path(image)
        if path is None:
            raise ValueError(UNSUPPORTED_IMAGE_MESSAGE)
        return base64.b64encode(path.read_bytes()).decode("utf-8")

    def _allowed_local_path(self, image: str) -> Optional[Path]:
        if self.allowed_root is None:
            return None
        path = Path(image).resolve()
        if path == self.allowed_root or self.allowed_root not in path.parents or not path.is_file():
            return None
        return path

    def generate_video(
        self,
        image: str,
        prompt: str = DEFAULT_VIDEO_PROMPT,
        duration: Optional[int] = None,
    ) -> Dict[str, Optional[str]]:
        """
        Submit an image-to-video task.

        Args:
            image: http(s) URL, data URL, or a file under allowed_root
            prompt: Motion prompt describing the desired animation
            duration: Video duration in seconds (5 or 10)

        Returns:
            Dict with status, task_id and message
        """
        self._reload_settings_if_changed()

        if not self.is_enabled():
            return {"status": "error", "task_id": None, "message": "KlingAI Video API keys not configured"}
        if not image:
            return {"status": "error", "task_id": None, "message": "Source image is required"}

        try:
            image_payload = self._image_payload(image)
        except (ValueError, OSError):
            return {"status": "error", "task_id": None, "message": UNSUPPORTED_IMAGE_MESSAGE}

        payload = {
            "model_name": self.model,
            "image": image_payload,
            "prompt": prompt or DEFAULT_VIDEO_PROMPT,
            "duration": str(self._normalize_duration(duration or self.duration)),
        }
        # Turbo models have a fixed performance mode
        if "turbo" not in self.model.lower():
            payload["mode"] = self.mode

        self.logger.info("[KlingAIVideoService] Submitting task model=%s prompt=%s", self.model, payload["prompt"])
        try:
            response = requests.post(
                f"{self.API_BASE_URL}/v1/videos/image2video",
                headers=self._get_headers(),
                json=payload,
                timeout=60,
            )
        except requests.exceptions.Timeout:
            self.logger.error("[KlingAIVideoService] API timeout")
            return {"status": "error", "task_id": None, "message": "KlingAI Video API request timed out"}
        except requests.RequestException as exc:
            self.logger.error("[KlingAIVideoService] Request failed: %s", exc)
            return {"status": "error", "task_id": None, "message": f"{type(exc).__name__}: {exc}"}

        if response.status_code != 200:
            error_msg = self._error_message(response)
            self.logger.error("[KlingAIVideoService] API error: %s", error_msg)
            return {"status": "error", "task_id": None, "message": error_msg}

        task_id = (response.json().get("data") or {}).get("task_id")
        if not task_id:
            return {"status": "error", "task_id": None, "message": "No task ID returned from API"}

        self.logger.info("[KlingAIVideoService] Video generation task created: %s", task_id)
        return {"status": "processing", "task_id": task_id, "message": "Video generation started"}

    def poll_video_task(self, task_id: str) -> Dict[str, Optional[str]]:
        """Poll a task once; status is processing, completed, failed or error."""
        self._reload_settings_if_changed()

        if not self.is_enabled():
            return {"status": "error", "task_id": task_id, "video_url": None, "message": "API keys not configured"}

        try:
            response = requests.get(
                f"{self.API_BASE_URL}/v1/videos/image2video/{task_id}",
                headers=self._get_headers(),
                timeout=10,
            )
        except requests.RequestException as exc:
            self.logger.error("[KlingAIVideoService] Polling error: %s", exc)
            return {"status": "error", "task_id": task_id, "video_url": None, "message": str(exc)}

        if response.status_code != 200:
            return {"status": "error", "task_id": task_id, "video_url": None, "message": self._error_message(response)}

        data = response.json().get("data") or {}
        task_status = data.get("task_status")
        self.logger.debug("[KlingAIVideoService] Poll task %s: status=%s", task_id, task_status)

        if task_status in ("succeed", "success"):
            videos = (data.get("task_result") or {}).get("videos") or []
            video_url = videos[0].get("url") if videos else None
            if not video_url:
                return {"status": "error", "task_id": task_id, "video_url": None, "message": "No video URL in response"}
            return {"status": "completed", "task_id": task_id, "video_url": video_url, "message": None}

        if task_status in ("failed", "error"):
            error_msg = data.get("task_status_msg") or "Video generation failed"
            self.logger.warning("[KlingAIVideoService] Task %s failed: %s", task_id, error_msg)
            return {"status": "failed", "task_id": task_id, "video_url": None, "message": error_msg}

        if task_status in ("processing", "submitted", "pending"):
            return {"status": "processing", "task_id": task_id, "video_url": None, "message": "Video is being generated..."}

        return {"status": "unknown", "task_id": task_id, "video_url": None, "message": f"Unknown status: {task_status}"}

    def wait_for_video(self, task_id: str, timeout: float = 300.0, interval: float = 5.0) -> Dict[str, Optional[str]]:
        """Poll until the task reaches a terminal state or ``timeout`` seconds pass."""
        deadline = self._clock() + timeout
        while True:
            result = self.poll_video_task(task_id)
            if result.get("status") not in ("processing", "unknown"):
                return result
            if self._clock() >= deadline:
                self.logger.warning("[KlingAIVideoService] Task %s still running after %ss", task_id, timeout)
                return {"status": "timeout", "task_id": task_id, "video_url": None, "message": "Video generation timed out"}
            self._sleep(interval)

    @staticmethod
    def _error_message(response: Any) -> str:
        try:
            return response.json().get("message") or f"KlingAI Video API error: {response.status_code}"
        except ValueError:
            return f"KlingAI Video API error: {response.status_code}"
