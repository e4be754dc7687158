# job_tracker.py
# ------------------------------------------------------------------------------------
#  Submits one Runway image->video task per request, persists the first observed
#  state, then keeps one background asyncio task per job id polling Runway and
#  persisting every observation until a terminal status is reached.
#  Storage layout: one record per job id, so an upsert is a plain set().
# ------------------------------------------------------------------------------------

import asyncio
import logging
from typing import Dict, Optional, Set

from pydantic import ValidationError

from job_store import JobStore
from models import JobRecord, JobStatus
from runway_client import RunwayError
from settings import Settings

logger = logging.getLogger("moving-avatar.tracker")


class InvalidInput(ValueError):
    pass


class RemoteSubmissionFailed(RuntimeError):
    pass


class JobTracker:
    def __init__(
        self,
        runway,
        store: JobStore,
        *,
        prompt: str,
        duration: int,
        poll_interval: float = 1.0,
        max_poll_failures: int = 3,
    ):
        self.runway = runway
        self.store = store
        self.prompt = prompt
        self.duration = duration
        self.poll_interval = poll_interval
        self.max_poll_failures = max(1, max_poll_failures)
        self._tasks: Dict[str, asyncio.Task] = {}

    @classmethod
    def from_settings(cls, runway, store: JobStore, cfg: Settings) -> "JobTracker":
        return cls(
            runway,
            store,
            prompt=cfg.avatar_prompt,
            duration=cfg.avatar_duration_seconds,
            poll_interval=cfg.poll_interval_seconds,
            max_poll_failures=cfg.poll_max_failures,
        )

    # ---------- Submission ----------
    async def submit(self, image_reference: Optional[str]) -> JobRecord:
        """Start a generation and return its first persisted record.

        Does not wait for completion: polling continues in a task owned by
        this tracker, and progress is read back through the job listing.
        """
        if not image_reference:
            raise InvalidInput("url is required")

        try:
            task_id = await self.runway.create_image_to_video(image_reference, self.prompt, self.duration)
            record = JobRecord.model_validate(await self.runway.retrieve_task(task_id))
        except (RunwayError, ValidationError) as e:
            logger.error("submission failed: %s", e)
            raise RemoteSubmissionFailed("Failed to generate moving avatar") from e

        record = await self._persist(record)
        logger.info("job_id=%s submitted status=%s", record.id, record.status.value)
        if not record.is_terminal:
            self._spawn(record.id)
        return record

    # ---------- Persistence ----------
    # Store backends are blocking (files, SQLite, boto3), so they run off the loop.
    async def _persist(self, record: JobRecord) -> JobRecord:
        """Upsert by id. createdAt is fixed by the first write."""
        existing = await asyncio.to_thread(self.store.get, record.id)
        if existing is not None:
            first_seen = JobRecord.from_storage(existing).created_at
            record = record.model_copy(update={"created_at": first_seen})
        await asyncio.to_thread(self.store.set, record.id, record.to_storage())
        return record

    async def _mark_error(self, job_id: str, message: str) -> JobRecord:
        existing = await asyncio.to_thread(self.store.get, job_id)
        if existing is not None:
            record = JobRecord.from_storage(existing).model_copy(
                update={"status": JobStatus.ERROR, "error": message}
            )
        else:
            record = JobRecord(id=job_id, status=JobStatus.ERROR, error=message)
        await asyncio.to_thread(self.store.set, job_id, record.to_storage())
        return record

    async def _give_up(self, job_id: str, exc: Exception) -> None:
        message = str(exc) or type(exc).__name__
        try:
            await self._mark_error(job_id, message)
        except Exception:
            # store is still failing; the log is the only record left
            logger.exception("job_id=%s could not persist ERROR status", job_id)

    # ---------- Background polling ----------
    def _spawn(self, job_id: str) -> asyncio.Task:
        current = self._tasks.get(job_id)
        if current is not None and not current.done():
            return current
        task = asyncio.create_task(self._poll(job_id), name=f"poll-{job_id}")
        self._tasks[job_id] = task
        task.add_done_callback(lambda t: self._on_done(job_id, t))
        return task

    def _on_done(self, job_id: str, task: asyncio.Task) -> None:
        if self._tasks.get(job_id) is task:
            del self._tasks[job_id]
        if task.cancelled():
            logger.info("job_id=%s polling cancelled", job_id)
            return
        exc = task.exception()
        if exc is not None:
            logger.error("job_id=%s polling crashed", job_id, exc_info=exc)

    async def _poll(self, job_id: str) -> None:
        failures = 0
        last_status: Optional[JobStatus] = None
        while True:
            await asyncio.sleep(self.poll_interval)
            # Runway, payload and store failures share one budget.
            try:
                record = JobRecord.model_validate(await self.runway.retrieve_task(job_id))
                record = await self._persist(record)
            except Exception as e:
                failures += 1
                logger.warning("job_id=%s poll failed (%d/%d): %r", job_id, failures, self.max_poll_failures, e)
                if failures >= self.max_poll_failures:
                    logger.error("job_id=%s giving up after %d failed polls", job_id, failures)
                    await self._give_up(job_id, e)
                    return
                continue

            failures = 0
            if record.status != last_status:
                logger.info("job_id=%s status=%s progress=%s", job_id, record.status.value, record.progress)
                last_status = record.status
            if record.is_terminal:
                logger.info("job_id=%s finished status=%s outputs=%d", job_id, record.status.value, len(record.output))
                return

    # ---------- Registry lifecycle ----------
    @property
    def active_jobs(self) -> Set[str]:
        return set(self._tasks)

    async def join(self) -> None:
        """Wait for every running poll loop to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks.values()), return_exceptions=True)

    async def shutdown(self) -> None:
        tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("tracker stopped, cancelled=%d", len(tasks))

