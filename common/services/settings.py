import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


class SettingsFileMixin:
    """
    Settings for upstream clients, read from ``data/settings.json`` with
    environment variables as fallback. Reloaded when the file's mtime moves.
    """

    _settings_path: Optional[str] = None
    _settings_mtime: Optional[float] = None

    def _read_settings(self, settings_json_path: Optional[str] = None) -> Dict[str, Any]:
        path_to_load = None

        # Priority 1: the path explicitly passed to the service
        if settings_json_path and Path(settings_json_path).exists():
            path_to_load = Path(settings_json_path)
        # Priority 2: the default path under the working directory
        else:
            default_path = Path.cwd() / "data" / "settings.json"
            if default_path.exists():
                path_to_load = default_path

        if not path_to_load:
            self._settings_path = settings_json_path
            return {}

        self._settings_path = str(path_to_load)
        try:
            self._settings_mtime = path_to_load.stat().st_mtime
            data = json.loads(path_to_load.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("[%s] Error loading settings from %s: %s", type(self).__name__, path_to_load, exc)
            return {}
        return data if isinstance(data, dict) else {}

    @staticmethod
    def _setting(settings: Dict[str, Any], key: str, default: Optional[str] = None) -> Optional[str]:
        value = settings.get(key)
        if value in (None, ""):
            value = os.getenv(key)
        if value in (None, ""):
            value = default
        return None if value is None else str(value)

    def _changed_settings(self) -> Optional[Dict[str, Any]]:
        """Return fresh settings if the file changed since the last read, else None."""
        if not self._settings_path or not Path(self._settings_path).exists():
            return None
        try:
            mtime = Path(self._settings_path).stat().st_mtime
            if self._settings_mtime and mtime <= self._settings_mtime:
                return None
            data = json.loads(Path(self._settings_path).read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("[%s] Settings reload failed: %s", type(self).__name__, exc)
            return None
        self._settings_mtime = mtime
        return data if isinstance(data, dict) else None
