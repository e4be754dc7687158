# job_query.py
from typing import List

from job_store import JobStore
from models import JobRecord


def list_jobs(store: JobStore) -> List[JobRecord]:
    """All persisted records, oldest first. Full scan, no paging."""
    jobs: List[JobRecord] = []
    for key in store.list_keys():
        data = store.get(key)
        if data:
            jobs.append(JobRecord.from_storage(data))
    jobs.sort(key=lambda job: job.created_at)
    return jobs
