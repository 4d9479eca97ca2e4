import base64
import json
import os
from unittest.mock import MagicMock, patch

import jwt
import pytest
import requests

from common.services.klingai_video_service import (
    DEFAULT_VIDEO_PROMPT,
    UNSUPPORTED_IMAGE_MESSAGE,
    KlingAIVideoService,
)


class FakeClock:
    def __init__(self):
        self.now = 0.0
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


def _response(status_code=200, payload=None):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload or {}
    return response


def _task(status, **extra):
    return _response(payload={"data": {"task_status": status, **extra}})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def service(write_settings, clock):
    path = write_settings(KLINGAI_VIDEO_ACCESS_KEY="ak-test", KLINGAI_VIDEO_SECRET_KEY="sk-test")
    return KlingAIVideoService(settings_json_path=path, sleep=clock.sleep, clock=clock)


def test_disabled_without_keys(write_settings):
    service = KlingAIVideoService(settings_json_path=write_settings())

    assert not service.is_enabled()
    assert service.generate_video("https://example.com/a.jpg")["status"] == "error"


@patch("common.services.klingai_video_service.requests.post")
def test_submit_signs_request_and_returns_task(mock_post, service):
    mock_post.return_value = _response(payload={"data": {"task_id": "task-42"}})

    result = service.generate_video("https://example.com/look.jpg")

    assert result == {"status": "processing", "task_id": "task-42", "message": "Video generation started"}
    url = mock_post.call_args.args[0]
    assert url.endswith("/v1/videos/image2video")

    headers = mock_post.call_args.kwargs["headers"]
    token = headers["Authorization"].split(" ", 1)[1]
    claims = jwt.decode(token, "sk-test", algorithms=["HS256"])
    assert claims["iss"] == "ak-test"

    body = mock_post.call_args.kwargs["json"]
    assert body["image"] == "https://example.com/look.jpg"
    assert body["prompt"] == DEFAULT_VIDEO_PROMPT
    assert body["duration"] == "5"
    assert "mode" not in body


@patch("common.services.klingai_video_service.requests.post")
def test_data_url_is_sent_without_prefix(mock_post, service):
    mock_post.return_value = _response(payload={"data": {"task_id": "t"}})
    service.model = "kling-v2-1"

    service.generate_video("data:image/png;base64,iVBORw0KGgo", prompt="spin", duration=10)

    body = mock_post.call_args.kwargs["json"]
    assert body["image"] == "iVBORw0KGgo"
    assert body["prompt"] == "spin"
    assert body["duration"] == "10"
    assert body["mode"] == "std"


@pytest.mark.parametrize("image", ["/etc/passwd", "/nonexistent/look.jpg"])
@patch("common.services.klingai_video_service.requests.post")
def test_local_paths_rejected_without_allowed_root(mock_post, service, image):
    result = service.generate_video(image)

    assert result == {"status": "error", "task_id": None, "message": UNSUPPORTED_IMAGE_MESSAGE}
    mock_post.assert_not_called()


@pytest.fixture
def upload_service(tmp_path, write_settings):
    uploads = tmp_path / "uploads"
    uploads.mkdir()
    path = write_settings(KLINGAI_VIDEO_ACCESS_KEY="ak-test", KLINGAI_VIDEO_SECRET_KEY="sk-test")
    return KlingAIVideoService(settings_json_path=path, allowed_root=uploads)


@patch("common.services.klingai_video_service.requests.post")
def test_file_under_allowed_root_is_sent_as_base64(mock_post, upload_service, tmp_path):
    mock_post.return_value = _response(payload={"data": {"task_id": "t"}})
    (tmp_path / "uploads" / "look.jpg").write_bytes(b"jpeg-bytes")

    result = upload_service.generate_video(str(tmp_path / "uploads" / "look.jpg"))

    assert result["status"] == "processing"
    assert base64.b64decode(mock_post.call_args.kwargs["json"]["image"]) == b"jpeg-bytes"


@patch("common.services.klingai_video_service.requests.post")
def test_files_outside_allowed_root_are_not_read(mock_post, upload_service, tmp_path):
    secret = tmp_path / "secret.txt"
    secret.write_text("TOP-SECRET", encoding="utf-8")

    for image in (str(secret), str(tmp_path / "uploads" / ".." / "secret.txt"), str(tmp_path / "uploads")):
        result = upload_service.generate_video(image)
        assert result["message"] == UNSUPPORTED_IMAGE_MESSAGE

    mock_post.assert_not_called()


@patch("common.services.klingai_video_service.requests.post")
def test_submit_http_error_uses_api_message(mock_post, service):
    mock_post.return_value = _response(400, {"message": "image too small"})

    result = service.generate_video("https://example.com/a.jpg")

    assert result == {"status": "error", "task_id": None, "message": "image too small"}


@patch("common.services.klingai_video_service.requests.post")
def test_submit_timeout(mock_post, service):
    mock_post.side_effect = requests.exceptions.Timeout()

    assert service.generate_video("https://example.com/a.jpg")["message"] == "KlingAI Video API request timed out"


@pytest.mark.parametrize(
    "response, status",
    [
        (_task("succeed", task_result={"videos": [{"url": "https://v/clip.mp4"}]}), "completed"),
        (_task("failed", task_status_msg="nsfw"), "failed"),
        (_task("processing"), "processing"),
        (_task("submitted"), "processing"),
        (_task("mystery"), "unknown"),
        (_response(500, {}), "error"),
    ],
)
@patch("common.services.klingai_video_service.requests.get")
def test_poll_status_mapping(mock_get, service, response, status):
    mock_get.return_value = response

    assert service.poll_video_task("task-1")["status"] == status


@patch("common.services.klingai_video_service.requests.get")
def test_poll_completed_carries_url(mock_get, service):
    mock_get.return_value = _task("succeed", task_result={"videos": [{"url": "https://v/clip.mp4"}]})

    result = service.poll_video_task("task-1")

    assert result == {"status": "completed", "task_id": "task-1", "video_url": "https://v/clip.mp4", "message": None}


@patch("common.services.klingai_video_service.requests.get")
def test_wait_returns_terminal_state(mock_get, service, clock):
    mock_get.side_effect = [
        _task("processing"),
        _task("succeed", task_result={"videos": [{"url": "https://v/done.mp4"}]}),
    ]

    result = service.wait_for_video("task-1", timeout=60, interval=5)

    assert result["video_url"] == "https://v/done.mp4"
    assert clock.sleeps == [5]


@patch("common.services.klingai_video_service.requests.get")
def test_wait_times_out(mock_get, service, clock):
    mock_get.side_effect = lambda *args, **kwargs: _task("processing")

    result = service.wait_for_video("task-1", timeout=10, interval=5)

    assert result["status"] == "timeout"
    assert clock.sleeps == [5, 5]


@patch("common.services.klingai_video_service.requests.get")
def test_poll_picks_up_rotated_keys(mock_get, write_settings):
    path = write_settings()
    service = KlingAIVideoService(settings_json_path=path)
    assert service.poll_video_task("task-1")["status"] == "error"
    mock_get.assert_not_called()

    with open(path, "w", encoding="utf-8") as fh:
        json.dump({"KLINGAI_VIDEO_ACCESS_KEY": "ak-new", "KLINGAI_VIDEO_SECRET_KEY": "sk-new"}, fh)
    stat = os.stat(path)
    os.utime(path, (stat.st_atime + 10, stat.st_mtime + 10))
    mock_get.return_value = _task("processing")

    assert service.poll_video_task("task-1")["status"] == "processing"
    token = mock_get.call_args.kwargs["headers"]["Authorization"].split(" ", 1)[1]
    assert jwt.decode(token, "sk-new", algorithms=["HS256"])["iss"] == "ak-new"
