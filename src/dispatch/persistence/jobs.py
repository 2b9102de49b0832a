"""Delivery job repository and per-job locking."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import asdict
from typing import Iterator

from ..models.domain import Depot, DeliveryJob, DeliveryStop
from .filesystem import FileStorage


class JobNotFoundError(LookupError):
    """No delivery job with the requested id exists."""


class StopNotFoundError(LookupError):
    """The delivery job has no stop with the requested id."""


def job_to_dict(job: DeliveryJob) -> dict:
    return asdict(job)


def job_from_dict(data: dict) -> DeliveryJob:
    return DeliveryJob(
        job_id=data["job_id"],
        depot=Depot(**data["depot"]),
        status=data["status"],
        algorithm=data["algorithm"],
        totals=dict(data.get("totals") or {}),
        stops=[DeliveryStop(**stop) for stop in data.get("stops", [])],
        tour=list(data.get("tour", [])),
        route=list(data.get("route", [])),
        created_at=data.get("created_at"),
        updated_at=data.get("updated_at"),
    )


class JobRepository:
    """Stores each delivery job as one JSON document under the data root."""

    def __init__(self, storage: FileStorage | None = None) -> None:
        self.storage = storage or FileStorage()

    def save(self, job: DeliveryJob) -> None:
        self.storage.write_json(self.storage.job_path(job.job_id), job_to_dict(job))

    def get(self, job_id: str) -> DeliveryJob:
        path = self.storage.job_path(job_id)
        if not path.exists():
            raise JobNotFoundError(f"Delivery job '{job_id}' not found.")
        return job_from_dict(self.storage.read_json(path))

    def delete(self, job_id: str) -> None:
        self.storage.job_path(job_id).unlink(missing_ok=True)


class JobLockRegistry:
    """Hands out one lock per job id so a job is only re-planned by one caller at a time."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def lock_for(self, job_id: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(job_id)
            if lock is None:
                lock = threading.Lock()
                self._locks[job_id] = lock
            return lock

    @contextmanager
    def hold(self, job_id: str) -> Iterator[None]:
        lock = self.lock_for(job_id)
        with lock:
            yield


job_locks = JobLockRegistry()
