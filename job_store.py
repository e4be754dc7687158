# job_store.py
import json
import logging
import os
import threading
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Set
from urllib.parse import quote, unquote

from sqlmodel import SQLModel, Field as SQLField, Session, create_engine, select

import r2_client
from settings import Settings

logger = logging.getLogger("moving-avatar.store")

JsonValue = Dict[str, Any]


class JobStore:
    """Key-value store for job records: one JSON object per key.

    No atomicity across a get+set pair. Callers that need it write each key
    from a single owner.
    """

    def get(self, key: str) -> Optional[JsonValue]:
        raise NotImplementedError

    def set(self, key: str, value: JsonValue) -> None:
        raise NotImplementedError

    def list_keys(self) -> Set[str]:
        raise NotImplementedError


class MemoryJobStore(JobStore):
    def __init__(self):
        self._items: Dict[str, JsonValue] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[JsonValue]:
        with self._lock:
            value = self._items.get(key)
            return dict(value) if value is not None else None

    def set(self, key: str, value: JsonValue) -> None:
        with self._lock:
            self._items[key] = dict(value)

    def list_keys(self) -> Set[str]:
        with self._lock:
            return set(self._items)


class LocalJobStore(JobStore):
    """One ``<key>.json`` file per record under a directory."""

    SUFFIX = ".json"

    def __init__(self, directory: str):
        self.directory = directory
        os.makedirs(directory, exist_ok=True)

    def _path(self, key: str) -> str:
        return os.path.join(self.directory, quote(key, safe="") + self.SUFFIX)

    def get(self, key: str) -> Optional[JsonValue]:
        try:
            with open(self._path(key), "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None

    def set(self, key: str, value: JsonValue) -> None:
        path = self._path(key)
        tmp = f"{path}.tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(value, f)
        # readers never see a half-written file
        os.replace(tmp, path)

    def list_keys(self) -> Set[str]:
        return {
            unquote(name[: -len(self.SUFFIX)])
            for name in os.listdir(self.directory)
            if name.endswith(self.SUFFIX)
        }


class JobEntry(SQLModel, table=True):
    key: str = SQLField(primary_key=True, index=True)
    value: str
    updated_at: datetime = SQLField(default_factory=lambda: datetime.now(timezone.utc))


class SqlJobStore(JobStore):
    def __init__(self, database_url: str):
        connect_args = {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        self.engine = create_engine(database_url, connect_args=connect_args)
        SQLModel.metadata.create_all(self.engine)

    def get(self, key: str) -> Optional[JsonValue]:
        with Session(self.engine) as session:
            entry = session.get(JobEntry, key)
            return json.loads(entry.value) if entry else None

    def set(self, key: str, value: JsonValue) -> None:
        with Session(self.engine) as session:
            entry = session.get(JobEntry, key)
            if entry is None:
                entry = JobEntry(key=key, value=json.dumps(value))
            else:
                entry.value = json.dumps(value)
                entry.updated_at = datetime.now(timezone.utc)
            session.add(entry)
            session.commit()

    def list_keys(self) -> Set[str]:
        with Session(self.engine) as session:
            return set(session.exec(select(JobEntry.key)).all())


class R2JobStore(JobStore):
    """JSON objects under ``<prefix><key>.json`` in an R2 (S3-compatible) bucket."""

    def __init__(self, s3, bucket: str, prefix: str = "jobs/"):
        self.s3 = s3
        self.bucket = bucket
        self.prefix = prefix

    def _object_key(self, key: str) -> str:
        return f"{self.prefix}{key}.json"

    def get(self, key: str) -> Optional[JsonValue]:
        return r2_client.get_json(self.s3, self.bucket, self._object_key(key))

    def set(self, key: str, value: JsonValue) -> None:
        r2_client.put_json(self.s3, self.bucket, self._object_key(key), value)

    def list_keys(self) -> Set[str]:
        return {
            k[len(self.prefix): -len(".json")]
            for k in r2_client.iter_keys(self.s3, self.bucket, self.prefix)
            if k.endswith(".json")
        }


def build_job_store(cfg: Settings) -> JobStore:
    kind = cfg.job_storage
    if kind == "memory":
        store: JobStore = MemoryJobStore()
    elif kind == "local":
        store = LocalJobStore(cfg.local_jobs_dir)
    elif kind == "sql":
        store = SqlJobStore(cfg.database_url)
    elif kind == "r2":
        store = R2JobStore(r2_client.build_r2_client(cfg), cfg.r2_bucket, cfg.r2_jobs_prefix)
    else:
        raise ValueError(f"unknown JOB_STORAGE {kind!r} (expected memory, local, sql or r2)")
    logger.info("job storage backend=%s", kind)
    return store
