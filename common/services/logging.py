import json
import sys
from datetime import datetime, timezone


def preview(text, limit: int = 100) -> str:
    value = str(text or "")
    return value if len(value) <= limit else value[:limit] + "..."


def log_event(level: str, event: str, **fields) -> None:
    payload = {
        "ts": datetime.now(timezone.utc).replace(tzinfo=None).isoformat() + "Z",
        "level": level.lower(),
        "event": event,
    }
    payload.update(fields or {})
    try:
        sys.stdout.write(json.dumps(payload, ensure_ascii=False, default=str) + "\n")
    except (OSError, ValueError):
        # best-effort logging
        pass
