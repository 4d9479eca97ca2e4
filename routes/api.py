"""提供試衣中繼前端使用的 API 路由。"""

from __future__ import annotations

from typing import Any, Dict, Optional

from flask import Blueprint, current_app, jsonify, request, url_for

from common.services.klingai_video_service import UNSUPPORTED_IMAGE_MESSAGE
from common.services.logging import log_event, preview
from common.utils.dto import to_video_dto
from common.utils.image_refs import is_data_url, is_remote_url
from common.utils.validators import (
    clamp_image_count,
    custom_details_from,
    validate_prompt_request,
    validate_tryon_request,
)


api_bp = Blueprint("tryon_api", __name__, url_prefix="/api")

_STATUS_BY_ERROR_TYPE = {
    "auth": 401,
    "rate_limit": 429,
    "invalid_input": 400,
}


def _components() -> Dict[str, Any]:
    return current_app.extensions["tryon_components"]


def _config():
    return current_app.config["TRYON_RELAY_CONFIG"]


def _json_object() -> Optional[Dict[str, Any]]:
    """回傳 JSON 物件內容；本文為 JSON 但不是物件時回傳 None。"""
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    return payload if isinstance(payload, dict) else None


def _not_an_object():
    return jsonify({"error": "Request body must be a JSON object"}), 400


def _is_video_source(value: Any) -> bool:
    return is_remote_url(value) or is_data_url(value)


def _error_type(result: Dict[str, Any]) -> str:
    error_type = result.get("error_type")
    if error_type:
        return error_type
    message = str(result.get("message", "")).lower()
    if "api key" in message or "authentication" in message:
        return "auth"
    if "rate limit" in message:
        return "rate_limit"
    return "upstream"


def _upstream_error(result: Dict[str, Any], provider: str, key_name: str, fallback: str):
    error_type = _error_type(result)
    status = _STATUS_BY_ERROR_TYPE.get(error_type, 500)
    if error_type == "auth":
        body = {"error": f"Invalid {provider} API key. Please check your {key_name} setting."}
    elif error_type == "rate_limit":
        body = {"error": f"{provider} rate limit exceeded. Please try again later."}
    elif error_type == "invalid_input":
        body = {"error": result.get("message", fallback)}
    else:
        body = {"error": fallback, "details": result.get("message")}
    return jsonify(body), status


@api_bp.get("/test-llm")
def test_llm():
    log_event("info", "test_llm.start")
    result = _components()["tryon_provider"].test_llm()
    if result.get("status") == "error":
        log_event("error", "test_llm.failed", message=result.get("message"))
        return jsonify({"success": False, "error": result.get("message"), "details": "LLM API test failed"}), 500
    return jsonify({"success": True, "message": "LLM API is working", "response": result.get("response")})


@api_bp.post("/generate-prompt")
def generate_prompt():
    payload = _json_object()
    if payload is None:
        return _not_an_object()
    error = validate_prompt_request(payload)
    if error:
        return jsonify({"error": error}), 400

    style = payload["style"].strip()
    custom_details = custom_details_from(payload)
    num_images = clamp_image_count(payload.get("imageCount"))
    clothing_images = payload.get("clothingImages") or []

    log_event(
        "info",
        "generate_prompt.start",
        style=style,
        image_count=num_images,
        clothing_count=len(clothing_images),
        custom_details=preview(custom_details),
    )
    result = _components()["tryon_provider"].create_prompts(
        style=style,
        image_count=num_images,
        user_image=payload["userImageData"],
        clothing_images=clothing_images,
        custom_details=custom_details,
    )
    if result.get("status") == "error":
        log_event("error", "generate_prompt.failed", message=result.get("message"))
        return _upstream_error(result, "Gemini", "GEMINI_API_KEY", "Failed to generate prompt. Please try again.")

    log_event(
        "info",
        "generate_prompt.done",
        prompts=len(result["prompts"]),
        shortfall=result.get("shortfall", 0),
        synthesized=result.get("synthesized", 0),
    )
    return jsonify(
        {
            "success": True,
            "prompts": result["prompts"],
            "fullResponse": result.get("full_response", ""),
            "style": style,
            "customDetails": custom_details,
            "shortfall": result.get("shortfall", 0),
        }
    )


@api_bp.post("/generate-try-on")
def generate_try_on():
    payload = _json_object()
    if payload is None:
        return _not_an_object()
    error = validate_tryon_request(payload)
    if error:
        return jsonify({"error": error}), 400

    num_images = clamp_image_count(payload.get("image_count"))
    log_event(
        "info",
        "generate_try_on.start",
        image_count=num_images,
        prompts=len(payload["prompts"]),
        image_urls=len(payload["image_urls"]),
    )
    result = _components()["tryon_provider"].generate_try_on(
        prompts=payload["prompts"],
        image_urls=payload["image_urls"],
        image_count=num_images,
        user_image=payload["user_image"],
    )
    if result.get("status") == "error":
        log_event("error", "generate_try_on.failed", message=result.get("message"))
        return _upstream_error(result, "fal.ai", "FAL_KEY", "Failed to generate image. Please try again.")

    request_ids = result.get("request_ids", [])
    log_event("info", "generate_try_on.done", images=len(result.get("images", [])), request_ids=request_ids)
    return jsonify(
        {
            "success": True,
            "data": {"images": result.get("images", []), "requestIds": request_ids},
            "requestIds": request_ids,
        }
    )


@api_bp.post("/upload-images")
def upload_images():
    files = [f for f in request.files.getlist("images") if f and f.filename]
    if not files:
        return jsonify({"error": "No images uploaded"}), 400

    max_files = _config().max_upload_files
    if len(files) > max_files:
        return jsonify({"error": f"Too many files. Maximum is {max_files}."}), 400

    try:
        filenames = _components()["photo_service"].save_uploads(files)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    image_urls = [url_for("tryon_user.serve_upload", filename=name, _external=True) for name in filenames]
    log_event("info", "upload_images.done", count=len(image_urls))
    return jsonify({"success": True, "imageUrls": image_urls})


# --- Video Generation API ---

@api_bp.get("/video/enabled")
def check_video_enabled():
    """檢查影片生成功能是否可用"""
    return jsonify({"enabled": _components()["video_service"].is_enabled()})


@api_bp.post("/generate-video")
def generate_video():
    """提交影片任務並等待完成"""
    payload = _json_object()
    if payload is None:
        return _not_an_object()
    image_url = payload.get("imageUrl")
    if not image_url:
        return jsonify({"success": False, "error": "Image URL is required"}), 400
    if not _is_video_source(image_url):
        return jsonify({"success": False, "error": UNSUPPORTED_IMAGE_MESSAGE}), 400

    video_service = _components()["video_service"]
    if not video_service.is_enabled():
        return jsonify({"success": False, "error": "Video generation is not configured"}), 503

    log_event("info", "generate_video.start", image=preview(image_url), prompt=payload.get("prompt"))
    result = video_service.generate_video(image_url, payload.get("prompt"), payload.get("duration"))

    if result.get("status") == "completed":
        log_event("info", "generate_video.done", task_id=result.get("task_id"))
        return jsonify({"success": True, "videoUrl": result["video_url"], "taskId": result.get("task_id")})

    log_event("error", "generate_video.failed", status=result.get("status"), message=result.get("message"))
    status = 504 if result.get("status") == "timeout" else 500
    return jsonify({"success": False, "error": result.get("message"), "taskId": result.get("task_id")}), status


@api_bp.post("/video/generate")
def start_video():
    """開始影片生成（僅提交，由前端輪詢）"""
    payload = _json_object()
    if payload is None:
        return _not_an_object()
    image = payload.get("image") or payload.get("imageUrl")
    if not image:
        return jsonify({"error": "Image URL is required"}), 400
    if not _is_video_source(image):
        return jsonify({"error": UNSUPPORTED_IMAGE_MESSAGE}), 400

    result = _components()["video_service"].start_video(image, payload.get("prompt"), payload.get("duration"))
    if result.get("status") == "error":
        return jsonify({"error": result.get("message", "Video generation failed")}), 500
    return jsonify(result)


@api_bp.get("/video/<task_id>")
def poll_video(task_id: str):
    """輪詢影片生成狀態"""
    result = _components()["video_service"].poll_video(task_id)
    return jsonify(to_video_dto(result))
