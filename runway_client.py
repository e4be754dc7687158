# runway_client.py
import logging
from typing import Any, Dict, Optional

import httpx

from settings import Settings, settings as default_settings

logger = logging.getLogger("moving-avatar.runway")


class RunwayError(Exception):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


def _headers(cfg: Settings) -> Dict[str, str]:
    if not cfg.runway_api_key:
        raise RunwayError("RUNWAY_API_KEY not set")
    return {
        "Authorization": f"Bearer {cfg.runway_api_key}",
        "X-Runway-Version": cfg.runway_api_version,
        "Content-Type": "application/json",
    }


class RunwayClient:
    """Thin async wrapper over the two Runway calls this service needs.

    The underlying ``httpx.AsyncClient`` can be injected (tests pass one built
    on ``httpx.MockTransport``); otherwise one is created from settings.
    Auth headers are resolved per request, so a missing key only fails the
    Runway calls themselves.
    """

    def __init__(self, cfg: Optional[Settings] = None, client: Optional[httpx.AsyncClient] = None):
        self.cfg = cfg or default_settings
        self._owns_client = client is None
        if client is None:
            client = httpx.AsyncClient(
                base_url=self.cfg.runway_api_base,
                timeout=self.cfg.runway_timeout_seconds,
            )
        self._client = client

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        headers = _headers(self.cfg)
        try:
            r = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise RunwayError(f"{method} {path} failed: {e}") from e
        if r.status_code >= 300:
            raise RunwayError(f"{method} {path} failed: {r.status_code} {r.text}", status_code=r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise RunwayError(f"{method} {path} returned non-JSON body: {r.text[:200]}", status_code=r.status_code) from e

    async def create_image_to_video(self, prompt_image: str, prompt_text: str, duration: int) -> str:
        """
        Start an image->video generation.
        Returns task id.
        """
        payload: Dict[str, Any] = {
            "model": self.cfg.runway_model,
            "promptImage": prompt_image,
            "promptText": prompt_text,
            "duration": duration,
        }
        if self.cfg.runway_ratio:
            payload["ratio"] = self.cfg.runway_ratio
        data = await self._request("POST", "/image_to_video", json=payload)
        task_id = data.get("id")
        if not task_id:
            raise RunwayError(f"create returned no task id: {data}")
        logger.info("runway task created task_id=%s model=%s", task_id, self.cfg.runway_model)
        return task_id

    async def retrieve_task(self, task_id: str) -> Dict[str, Any]:
        """Fetch the current task record (id, status, createdAt, output, ...)."""
        return await self._request("GET", f"/tasks/{task_id}")
