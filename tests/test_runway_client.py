from __future__ import annotations

import json

import httpx
import pytest

from runway_client import RunwayClient, RunwayError, _headers
from settings import Settings

pytestmark = pytest.mark.anyio


@pytest.fixture
def cfg() -> Settings:
    return Settings(runway_api_key="secret", runway_model="gen3a_turbo", runway_ratio="")


def _client(cfg: Settings, handler) -> RunwayClient:
    http = httpx.AsyncClient(
        transport=httpx.MockTransport(handler),
        base_url=cfg.runway_api_base,
        headers=_headers(cfg),
    )
    return RunwayClient(cfg, client=http)


async def test_create_posts_image_to_video(cfg):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers["Authorization"]
        seen["version"] = request.headers["X-Runway-Version"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "task-123"})

    runway = _client(cfg, handler)
    task_id = await runway.create_image_to_video("https://img/me.jpg", "blink", 5)

    assert task_id == "task-123"
    assert seen["path"] == "/v1/image_to_video"
    assert seen["auth"] == "Bearer secret"
    assert seen["version"] == cfg.runway_api_version
    assert seen["body"] == {
        "model": "gen3a_turbo",
        "promptImage": "https://img/me.jpg",
        "promptText": "blink",
        "duration": 5,
    }


async def test_create_sends_ratio_when_configured(cfg):
    cfg = cfg.model_copy(update={"runway_ratio": "1280:768"})
    bodies = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "task-1"})

    await _client(cfg, handler).create_image_to_video("https://img/me.jpg", "blink", 5)

    assert bodies[0]["ratio"] == "1280:768"


async def test_retrieve_task_returns_payload(cfg):
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/tasks/task-9"
        return httpx.Response(200, json={"id": "task-9", "status": "RUNNING"})

    assert await _client(cfg, handler).retrieve_task("task-9") == {"id": "task-9", "status": "RUNNING"}


async def test_error_status_raises_with_code(cfg):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="rate limited")

    with pytest.raises(RunwayError) as excinfo:
        await _client(cfg, handler).retrieve_task("task-9")

    assert excinfo.value.status_code == 429
    assert "rate limited" in str(excinfo.value)


async def test_transport_error_is_wrapped(cfg):
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(RunwayError) as excinfo:
        await _client(cfg, handler).create_image_to_video("https://img/me.jpg", "blink", 5)

    assert excinfo.value.status_code is None


async def test_create_without_id_is_an_error(cfg):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={})

    with pytest.raises(RunwayError):
        await _client(cfg, handler).create_image_to_video("https://img/me.jpg", "blink", 5)


def test_missing_api_key_is_rejected():
    with pytest.raises(RunwayError):
        _headers(Settings(runway_api_key=""))


async def test_non_json_success_body_is_a_runway_error(cfg):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>gateway</html>")

    with pytest.raises(RunwayError) as excinfo:
        await _client(cfg, handler).retrieve_task("task-9")

    assert excinfo.value.status_code == 200
    assert "non-JSON" in str(excinfo.value)


async def test_missing_api_key_fails_the_call_not_the_constructor():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={"id": "task-1"})

    cfg = Settings(runway_api_key="")
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=cfg.runway_api_base)
    runway = RunwayClient(cfg, client=http)

    with pytest.raises(RunwayError):
        await runway.retrieve_task("task-1")
    assert calls == []


async def test_owned_client_builds_without_api_key():
    cfg = Settings(runway_api_key="")
    runway = RunwayClient(cfg)
    try:
        assert str(runway._client.base_url).startswith(cfg.runway_api_base)
    finally:
        await runway.aclose()
