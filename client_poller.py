# client_poller.py
# ------------------------------------------------------------------------------------
#  Client side of the service: submit an image and watch the job list.
#    moving-avatar submit ./me.jpg        (local files are sent as a data: URI)
#    moving-avatar submit https://...     (URLs are sent as-is)
#    moving-avatar watch
#  The watcher re-fetches the list every interval while any job is still
#  running, and stops by itself once nothing is pending.
# ------------------------------------------------------------------------------------

import argparse
import asyncio
import base64
import logging
import mimetypes
import os
from typing import Callable, List, Optional

import httpx

from models import JobRecord

logger = logging.getLogger("moving-avatar.client")

DEFAULT_BASE_URL = os.getenv("MOVING_AVATAR_URL", "http://localhost:8000")


def to_data_uri(path: str) -> str:
    """Inline a local image as ``data:<mime>;base64,...``."""
    content_type = mimetypes.guess_type(path)[0] or "image/jpeg"
    with open(path, "rb") as f:
        b64 = base64.b64encode(f.read()).decode("ascii")
    return f"data:{content_type};base64,{b64}"


def has_pending(jobs: List[JobRecord]) -> bool:
    return any(not job.is_terminal for job in jobs)


class JobListPoller:
    def __init__(
        self,
        client: httpx.AsyncClient,
        interval: float = 2.0,
        on_update: Optional[Callable[[List[JobRecord]], None]] = None,
    ):
        self.client = client
        self.interval = interval
        self.on_update = on_update
        self._task: Optional[asyncio.Task] = None

    async def fetch(self) -> List[JobRecord]:
        r = await self.client.get("/api/moving-avatar")
        r.raise_for_status()
        return [JobRecord.model_validate(item) for item in r.json()]

    async def run(self) -> List[JobRecord]:
        """Poll until no job is pending; returns the last snapshot."""
        while True:
            jobs = await self.fetch()
            if self.on_update is not None:
                self.on_update(jobs)
            if not has_pending(jobs):
                return jobs
            await asyncio.sleep(self.interval)

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self.run(), name="job-list-poller")
        return self._task

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()


async def submit(client: httpx.AsyncClient, image: str) -> JobRecord:
    url = image if image.startswith(("http://", "https://", "data:")) else to_data_uri(image)
    r = await client.post("/api/moving-avatar/generate", json={"url": url})
    r.raise_for_status()
    return JobRecord.model_validate(r.json())


def _print_jobs(jobs: List[JobRecord]) -> None:
    for job in jobs:
        progress = f" {job.progress:.0%}" if job.progress is not None else ""
        outputs = " ".join(job.output)
        print(f"{job.created_at:%Y-%m-%d %H:%M:%S}  {job.id}  {job.status.value}{progress}  {outputs}".rstrip())
    print("-" * 40)


async def _main(args: argparse.Namespace) -> None:
    async with httpx.AsyncClient(base_url=args.base_url, timeout=30) as client:
        if args.command == "submit":
            job = await submit(client, args.image)
            print(f"submitted {job.id} status={job.status.value}")
            if not args.watch:
                return
        poller = JobListPoller(client, interval=args.interval, on_update=_print_jobs)
        await poller.start()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(prog="moving-avatar", description="Moving Avatar client")
    parser.add_argument("--base-url", default=DEFAULT_BASE_URL)
    parser.add_argument("--interval", type=float, default=2.0, help="seconds between list fetches")
    sub = parser.add_subparsers(dest="command", required=True)
    p_submit = sub.add_parser("submit", help="upload an image (path or URL)")
    p_submit.add_argument("image")
    p_submit.add_argument("--no-watch", dest="watch", action="store_false")
    sub.add_parser("watch", help="follow the job list until nothing is pending")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO)
    asyncio.run(_main(args))


if __name__ == "__main__":
    main()
