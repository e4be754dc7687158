"""Shared fakes and fixtures for the moving avatar tests."""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

import pytest
from httpx import ASGITransport, AsyncClient

from job_store import MemoryJobStore
from job_tracker import JobTracker
from main import create_app
from runway_client import RunwayError
from settings import Settings

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


class FakeRunway:
    """Scripted stand-in for RunwayClient.

    Each created task walks through its status script one step per retrieve;
    the last status repeats forever.
    """

    def __init__(self, script: Optional[List[str]] = None) -> None:
        self.default_script = script or ["PENDING", "RUNNING", "SUCCEEDED"]
        self.next_script: Optional[List[str]] = None
        self.scripts: Dict[str, List[str]] = {}
        self.created: List[dict] = []
        self.created_at: Dict[str, datetime] = {}
        self.retrieve_calls: Dict[str, int] = defaultdict(int)
        self.poll_errors: Dict[str, int] = {}
        self.fail_create = False
        self.drift_created_at = False

    async def create_image_to_video(self, prompt_image: str, prompt_text: str, duration: int) -> str:
        if self.fail_create:
            raise RunwayError("create failed: 429 quota exceeded", status_code=429)
        task_id = f"task-{len(self.created) + 1}"
        self.created.append({"promptImage": prompt_image, "promptText": prompt_text, "duration": duration})
        self.scripts[task_id] = list(self.next_script or self.default_script)
        self.next_script = None
        self.created_at[task_id] = BASE_TIME + timedelta(seconds=len(self.created))
        return task_id

    async def retrieve_task(self, task_id: str) -> dict:
        self.retrieve_calls[task_id] += 1
        if task_id not in self.scripts:
            raise RunwayError("status failed: 404 not found", status_code=404)
        if self.poll_errors.get(task_id):
            self.poll_errors[task_id] -= 1
            raise RunwayError("status failed: 502 bad gateway", status_code=502)

        script = self.scripts[task_id]
        status = script.pop(0) if len(script) > 1 else script[0]
        created_at = self.created_at[task_id]
        if self.drift_created_at:
            created_at += timedelta(minutes=self.retrieve_calls[task_id])
        task = {"id": task_id, "status": status, "createdAt": created_at.isoformat()}
        if status == "RUNNING":
            task["progress"] = 0.5
        if status == "SUCCEEDED":
            task["output"] = [f"https://cdn.example.com/{task_id}.mp4"]
        if status == "FAILED":
            task["failure"] = "Generation failed"
            task["failureCode"] = "INTERNAL"
        return task


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        runway_api_key="test-key",
        job_storage="memory",
        poll_interval_seconds=0,
        poll_max_failures=3,
    )


@pytest.fixture
def fake_runway() -> FakeRunway:
    return FakeRunway()


@pytest.fixture
def store() -> MemoryJobStore:
    return MemoryJobStore()


@pytest.fixture
async def tracker(fake_runway, store, test_settings):
    tracker = JobTracker.from_settings(fake_runway, store, test_settings)
    yield tracker
    await tracker.shutdown()


@pytest.fixture
def app(fake_runway, store, test_settings):
    return create_app(test_settings, store=store, runway=fake_runway)


@pytest.fixture
async def async_client(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client
    await app.state.tracker.shutdown()
