"""處理上傳圖片儲存的服務模組。"""

from __future__ import annotations

from io import BytesIO
from pathlib import Path
from typing import List
from uuid import uuid4

from PIL import Image, UnidentifiedImageError
from pillow_heif import register_heif_opener
from werkzeug.datastructures import FileStorage

register_heif_opener()


class PhotoService:
    """提供上傳圖片的驗證與寫入工具。"""

    def __init__(self, upload_dir: Path, max_file_bytes: int = 10 * 1024 * 1024) -> None:
        self._upload_dir = upload_dir
        self._max_file_bytes = max_file_bytes
        self._upload_dir.mkdir(parents=True, exist_ok=True)

    @property
    def upload_dir(self) -> Path:
        return self._upload_dir

    def save_uploads(self, files: List[FileStorage]) -> List[str]:
        """儲存多張上傳圖片，回傳檔名清單（全部驗證通過才寫入）。"""

        payloads = [(self._safe_filename(f.filename), self._read_validated(f)) for f in files]
        return [self._save_image(binary, self._upload_dir / name) for name, binary in payloads]

    def _read_validated(self, uploaded: FileStorage) -> bytes:
        if uploaded is None or not (uploaded.filename or "").strip():
            raise ValueError("No images uploaded")
        if not (uploaded.mimetype or "").startswith("image/"):
            raise ValueError("Only image files are allowed")

        binary = uploaded.read()
        if not binary:
            raise ValueError("Uploaded image is empty")
        if len(binary) > self._max_file_bytes:
            limit_mb = self._max_file_bytes // (1024 * 1024)
            raise ValueError(f"File too large. Maximum size is {limit_mb}MB.")
        return binary

    def _safe_filename(self, original: str) -> str:
        suffix = Path(original or "upload").stem.lower()[:16] or "upload"
        suffix = "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in suffix)
        return f"upload_{suffix}_{uuid4().hex[:8]}.jpg"

    def _save_image(self, binary: bytes, target_path: Path) -> str:
        target_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with Image.open(BytesIO(binary)) as image:
                rgb = image.convert("RGB")
                rgb.save(target_path, format="JPEG", quality=92)
        except (UnidentifiedImageError, OSError) as exc:
            raise ValueError("Only image files are allowed") from exc
        return target_path.name
