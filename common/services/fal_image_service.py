"""
fal.ai image editing service.

Runs one nano-banana edit per requested output image. Calls are sequential:
each prompt is submitted, its queue events are logged, and the result is
collected before the next request starts.
"""
import logging
from typing import Any, Dict, List, Optional

import fal_client

from common.services.settings import SettingsFileMixin
from common.utils.dto import to_image_dto
from common.utils.validators import clamp_image_count


class FalImageEditService(SettingsFileMixin):
    """
    fal.ai 影像編輯服務：
    - 使用者照片 + 服飾圖片 + 每張輸出一個 prompt
    - 每張圖片只嘗試一次，任何一次失敗即回傳錯誤
    """

    DEFAULT_MODEL = "fal-ai/nano-banana/edit"

    def __init__(self, settings_json_path: Optional[str] = None) -> None:
        self.logger = logging.getLogger(__name__)
        self.api_key: Optional[str] = None
        self.model: str = self.DEFAULT_MODEL
        self.output_format: str = "jpeg"
        self.client: Optional[fal_client.SyncClient] = None
        self._load_settings(settings_json_path)

    def _load_settings(self, settings_json_path: Optional[str] = None) -> None:
        settings = self._read_settings(settings_json_path)
        self.api_key = self._setting(settings, "FAL_KEY")
        self.model = self._setting(settings, "FAL_EDIT_MODEL", self.DEFAULT_MODEL)
        self.output_format = self._setting(settings, "FAL_OUTPUT_FORMAT", "jpeg")
        self._init_client()

    def _init_client(self) -> None:
        if not self.api_key:
            self.logger.warning("[FalImageEditService] FAL_KEY not found in settings or environment")
            self.client = None
            return
        self.client = fal_client.SyncClient(key=self.api_key)

    def _reload_settings_if_changed(self) -> None:
        data = self._changed_settings()
        if data is None:
            return
        old_key = self.api_key
        self.api_key = data.get("FAL_KEY") or self.api_key
        self.model = data.get("FAL_EDIT_MODEL") or self.model
        self.output_format = data.get("FAL_OUTPUT_FORMAT") or self.output_format
        if self.api_key != old_key:
            self._init_client()

    def is_configured(self) -> bool:
        return self.client is not None

    def generate_images(
        self,
        *,
        prompts: List[str],
        image_urls: List[str],
        image_count: int,
        user_image: Optional[str] = None,
    ) -> Dict[str, Any]:
        self._reload_settings_if_changed()
        if not self.client:
            return {"status": "error", "error_type": "auth", "message": "fal.ai API key not configured (FAL_KEY)"}

        num_images = clamp_image_count(image_count)
        final_prompts = [p for p in (prompts or []) if isinstance(p, str) and p.strip()][:num_images]
        if not final_prompts:
            return {"status": "error", "error_type": "invalid_input", "message": "No usable prompts supplied"}

        all_image_urls = ([user_image] if user_image else []) + list(image_urls or [])
        self.logger.info(
            "[FalImageEditService] Generating %d image(s) with %d prompt(s), %d input image(s)",
            num_images, len(final_prompts), len(all_image_urls),
        )

        images: List[Dict] = []
        request_ids: List[Optional[str]] = []
        for i in range(num_images):
            # 提示詞不足時沿用最後一個
            prompt = final_prompts[i] if i < len(final_prompts) else final_prompts[-1]
            self.logger.info("[FalImageEditService] Image %d prompt: %s...", i + 1, prompt[:100])
            try:
                request_id, data = self._run_edit(prompt, all_image_urls, i + 1)
            except Exception as exc:
                self.logger.exception("[FalImageEditService] Image %d failed: %s", i + 1, exc)
                return {
                    "status": "error",
                    "error_type": self._classify_error(str(exc)),
                    "message": f"{type(exc).__name__}: {exc}",
                    "images": images,
                    "request_ids": request_ids,
                }
            images.extend(to_image_dto(img) for img in (data or {}).get("images") or [])
            request_ids.append(request_id)
            self.logger.info("[FalImageEditService] Image %d generation completed: %s", i + 1, request_id)

        return {"status": "ok", "images": images, "request_ids": request_ids}

    def _run_edit(self, prompt: str, image_urls: List[str], number: int):
        handle = self.client.submit(  # type: ignore[union-attr]
            self.model,
            arguments={
                "prompt": prompt,
                "image_urls": image_urls,
                "num_images": 1,
                "output_format": self.output_format,
            },
        )
        for event in handle.iter_events(with_logs=True):
            if isinstance(event, fal_client.InProgress):
                for log in event.logs or []:
                    self.logger.debug("[FalImageEditService] Image %d: %s", number, log.get("message", ""))
        return handle.request_id, handle.get()

    @staticmethod
    def _classify_error(message: str) -> str:
        lowered = message.lower()
        if "api key" in lowered or "unauthorized" in lowered or "401" in lowered or "credentials" in lowered:
            return "auth"
        if "rate limit" in lowered or "429" in lowered:
            return "rate_limit"
        return "upstream"
