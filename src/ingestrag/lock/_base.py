"""Shared helpers for lock store implementations."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta

from ingestrag.core.models import AcquireResult, LockInfo

DEFAULT_LOCK_TIMEOUT_SECONDS = 7200.0


def utcnow() -> datetime:
    return datetime.now(UTC)


def new_lock_id() -> str:
    return uuid.uuid4().hex


def is_expired(lock: LockInfo, now: datetime, timeout_seconds: float) -> bool:
    return now - lock.started_at >= timedelta(seconds=timeout_seconds)


def granted(lock: LockInfo) -> AcquireResult:
    return AcquireResult(
        granted=True,
        lock_id=lock.lock_id,
        message=f"Lock acquired for '{lock.task_type}'",
    )


def refused(holder: LockInfo, now: datetime) -> AcquireResult:
    elapsed = holder.elapsed_minutes(now)
    return AcquireResult(
        granted=False,
        holder=holder,
        elapsed_minutes=elapsed,
        message=(
            f"A '{holder.task_type}' run is already in progress "
            f"({holder.description or 'no description'}, {elapsed} min). "
            "Try again after it finishes."
        ),
    )
