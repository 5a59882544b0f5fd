"""DB-backed lock so only one process runs the billing jobs."""
from __future__ import annotations

import os
import socket
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from billing.config import get_settings
from billing.db import job_session
from billing.models.scheduler_lock import SchedulerLock
from billing.utils.time import ensure_aware, utcnow

LOCK_NAME = "billing-jobs"


def _owner_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


def _ttl(ttl_seconds: int | None) -> int:
    return ttl_seconds if ttl_seconds is not None else get_settings().SCHEDULER_LOCK_TTL_SECONDS


def _locked_row(session: Session, name: str) -> SchedulerLock | None:
    return session.execute(
        select(SchedulerLock)
        .where(SchedulerLock.name == name)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def try_acquire_scheduler_lock(
    name: str = LOCK_NAME,
    *,
    ttl_seconds: int | None = None,
    db_session: Session | None = None,
) -> bool:
    """Take the lock when free, expired or already ours; returns ``True`` on success."""

    owner = _owner_id()
    now = utcnow()
    expires = now + timedelta(seconds=_ttl(ttl_seconds))

    with job_session(db_session) as session:
        try:
            lock = _locked_row(session, name)
            if lock is None:
                session.add(SchedulerLock(name=name, owner=owner, acquired_at=now, expires_at=expires))
                session.commit()
                return True

            expires_at = ensure_aware(lock.expires_at) if lock.expires_at is not None else None
            if expires_at is None or expires_at <= now:
                lock.owner = owner
                lock.acquired_at = now
                lock.expires_at = expires
                session.commit()
                return True

            if lock.owner == owner:
                lock.expires_at = expires
                session.commit()
                return True

            session.rollback()
            return False
        except IntegrityError:
            session.rollback()
            return False


def refresh_scheduler_lock(
    name: str = LOCK_NAME, *, ttl_seconds: int | None = None, db_session: Session | None = None
) -> None:
    """Extend the TTL of the lock when owned by this runner."""

    expires = utcnow() + timedelta(seconds=_ttl(ttl_seconds))
    with job_session(db_session) as session:
        lock = _locked_row(session, name)
        if lock is not None and lock.owner == _owner_id():
            lock.expires_at = expires
        session.commit()


def release_scheduler_lock(name: str = LOCK_NAME, *, db_session: Session | None = None) -> None:
    with job_session(db_session) as session:
        lock = _locked_row(session, name)
        if lock is not None and lock.owner == _owner_id():
            session.delete(lock)
        session.commit()


def describe_scheduler_lock(name: str = LOCK_NAME, *, db_session: Session | None = None) -> dict[str, object]:
    """Return a lightweight description of the current lock state."""

    with job_session(db_session) as session:
        lock = session.execute(select(SchedulerLock).where(SchedulerLock.name == name)).scalar_one_or_none()
        if lock is None:
            return {"status": "none", "owner": None, "present": False}

        now = utcnow()
        acquired_at = ensure_aware(lock.acquired_at)
        expires_at = ensure_aware(lock.expires_at) if lock.expires_at is not None else None
        expires_in = (expires_at - now).total_seconds() if expires_at else None
        return {
            "status": "owned_by_self" if lock.owner == _owner_id() else "owned_by_other",
            "owner": lock.owner,
            "present": True,
            "age_seconds": (now - acquired_at).total_seconds(),
            "expires_in_seconds": expires_in,
            "stale": expires_in is not None and expires_in < -60,
        }
