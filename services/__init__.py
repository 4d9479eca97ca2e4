"""試衣中繼服務模組入口。"""

from .photo_service import PhotoService
from .tryon_provider import TryOnRelayProvider
from .video_service import RelayVideoService

__all__ = [
    "PhotoService",
    "TryOnRelayProvider",
    "RelayVideoService",
]
