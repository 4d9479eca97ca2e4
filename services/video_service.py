"""影片生成服務封裝，供中繼路由使用。"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from common.services.klingai_video_service import DEFAULT_VIDEO_PROMPT, KlingAIVideoService

logger = logging.getLogger(__name__)


class RelayVideoService:
    """封裝 KlingAI Video Service：非同步提交/輪詢，以及同步等待完成。"""

    def __init__(
        self,
        settings_path: Path,
        wait_timeout: float = 300.0,
        poll_interval: float = 5.0,
        service: Optional[KlingAIVideoService] = None,
        upload_dir: Optional[Path] = None,
    ) -> None:
        self._service = service or KlingAIVideoService(settings_json_path=str(settings_path), allowed_root=upload_dir)
        self._wait_timeout = wait_timeout
        self._poll_interval = poll_interval

    def is_enabled(self) -> bool:
        """檢查影片生成服務是否已配置。"""
        return self._service.is_enabled()

    def start_video(self, image: str, prompt: Optional[str] = None, duration: Optional[int] = None) -> Dict:
        """啟動影片生成任務，預設動作為旋轉展示服裝。"""
        logger.info("[RelayVideoService] Generating video, prompt=%s", prompt or DEFAULT_VIDEO_PROMPT)
        return self._service.generate_video(image=image, prompt=prompt or DEFAULT_VIDEO_PROMPT, duration=duration)

    def poll_video(self, task_id: str) -> Dict:
        """輪詢影片生成狀態。"""
        return self._service.poll_video_task(task_id)

    def generate_video(self, image: str, prompt: Optional[str] = None, duration: Optional[int] = None) -> Dict:
        """提交任務並等待完成，回傳最終狀態。"""
        started = self.start_video(image, prompt, duration)
        if started.get("status") == "error":
            return started
        return self._service.wait_for_video(
            started["task_id"],
            timeout=self._wait_timeout,
            interval=self._poll_interval,
        )
