from typing import Any, Dict, Optional

MIN_IMAGE_COUNT = 1
MAX_IMAGE_COUNT = 5
MAX_CUSTOM_PROMPT_LENGTH = 1000


def ensure_positive_int(value: Any, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise ValueError(f"{field} must be an integer")
    if number < 0:
        raise ValueError(f"{field} must be >= 0")
    return number


def clamp_image_count(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = MIN_IMAGE_COUNT
    return min(max(number, MIN_IMAGE_COUNT), MAX_IMAGE_COUNT)


def _image_count_error(value: Any) -> Optional[str]:
    if value is None or isinstance(value, bool):
        return "Image count must be between 1 and 5"
    try:
        number = ensure_positive_int(value, "imageCount")
    except ValueError:
        return "Image count must be between 1 and 5"
    if number < MIN_IMAGE_COUNT or number > MAX_IMAGE_COUNT:
        return "Image count must be between 1 and 5"
    return None


def custom_details_from(payload: Dict[str, Any]) -> Optional[Any]:
    # 前端送 customPrompt，舊版欄位為 customDetails
    value = payload.get("customDetails")
    if value in (None, ""):
        value = payload.get("customPrompt")
    return value if value not in (None, "") else None


def validate_prompt_request(payload: Dict[str, Any]) -> Optional[str]:
    """Return an error message for an invalid /api/generate-prompt body, else None."""
    if not payload.get("userImageData"):
        return "User image data is required"

    clothing_images = payload.get("clothingImages")
    if not isinstance(clothing_images, list) or not clothing_images:
        return "At least one clothing image is required"

    style = payload.get("style")
    if not isinstance(style, str) or not style.strip():
        return "Valid style is required"

    count_error = _image_count_error(payload.get("imageCount"))
    if count_error:
        return count_error

    custom = custom_details_from(payload)
    if custom is not None and (not isinstance(custom, str) or len(custom) > MAX_CUSTOM_PROMPT_LENGTH):
        return "Custom prompt must be a string with max 1000 characters"

    return None


def validate_tryon_request(payload: Dict[str, Any]) -> Optional[str]:
    """Return an error message for an invalid /api/generate-try-on body, else None."""
    prompts = payload.get("prompts")
    if not isinstance(prompts, list) or not prompts:
        return "Prompts array is required"

    image_urls = payload.get("image_urls")
    if not isinstance(image_urls, list) or not image_urls:
        return "Image URLs array is required"

    count_error = _image_count_error(payload.get("image_count"))
    if count_error:
        return count_error

    if not payload.get("user_image"):
        return "User image is required"

    return None
