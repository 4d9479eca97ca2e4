"""封裝提示詞生成與 fal.ai 影像編輯，提供路由使用。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

from common.services.fal_image_service import FalImageEditService
from common.services.prompt_service import PromptGenerationService

logger = logging.getLogger(__name__)


class TryOnRelayProvider:
    """提供試衣中繼流程：先產生提示詞，再逐張呼叫影像編輯。"""

    def __init__(
        self,
        settings_path: Path,
        prompt_service: Optional[PromptGenerationService] = None,
        image_service: Optional[FalImageEditService] = None,
    ) -> None:
        self._prompts = prompt_service or PromptGenerationService(settings_json_path=str(settings_path))
        self._images = image_service or FalImageEditService(settings_json_path=str(settings_path))

    def test_llm(self) -> Dict[str, Any]:
        return self._prompts.test_connection()

    def create_prompts(
        self,
        *,
        style: str,
        image_count: int,
        user_image: str,
        clothing_images: List[str],
        custom_details: Optional[str] = None,
    ) -> Dict[str, Any]:
        logger.info(
            "[TryOnRelayProvider] Prompts style=%s count=%s clothing=%d custom=%s",
            style, image_count, len(clothing_images), bool(custom_details),
        )
        return self._prompts.generate_prompts(
            style=style,
            image_count=image_count,
            user_image=user_image,
            clothing_images=clothing_images,
            custom_details=custom_details,
        )

    def generate_try_on(
        self,
        *,
        prompts: List[str],
        image_urls: List[str],
        image_count: int,
        user_image: str,
    ) -> Dict[str, Any]:
        return self._images.generate_images(
            prompts=prompts,
            image_urls=image_urls,
            image_count=image_count,
            user_image=user_image,
        )
