from typing import Any, Dict


def to_image_dto(image: Any) -> Dict:
    if isinstance(image, str):
        return {"url": image, "content_type": None, "width": None, "height": None, "file_name": None}
    data = image if isinstance(image, dict) else vars(image)
    return {
        "url": data.get("url"),
        "content_type": data.get("content_type"),
        "width": data.get("width"),
        "height": data.get("height"),
        "file_name": data.get("file_name"),
    }


def to_video_dto(task: Dict) -> Dict:
    return {
        "task_id": task.get("task_id"),
        "status": task.get("status"),
        "video_url": task.get("video_url"),
        "message": task.get("message"),
    }
