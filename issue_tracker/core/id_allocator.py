"""Submission id allocator (SUB-0001, SUB-0002, ...).

The counter is a single shared integer that may be incremented from many
processes at once, so correctness comes from the backing store: every store
below performs read-increment-write as one atomic unit. There is
no process-level lock around `allocate()`.

Failure contract:
  - `AllocationConflict`: contention could not be resolved within the retry
    budget.
  - `StoreUnavailable`: the store could not be reached at all.
In both cases the counter is unchanged and no id was issued, so the whole
call can be retried.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Optional, Protocol

import redis
from redis import Redis
from sqlalchemy import insert, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from issue_tracker.db.models.counter import Counter

logger = logging.getLogger("issue_tracker.allocator")

_counters = Counter.__table__

# Driver messages that mean "someone else holds the lock", not "the DB is gone".
_CONFLICT_MARKERS = (
    "database is locked",
    "deadlock",
    "could not serialize",
    "lock wait timeout",
)


class AllocationError(Exception):
    """Base class for allocation failures. No id was issued."""


class AllocationConflict(AllocationError):
    pass


class StoreUnavailable(AllocationError):
    pass


class CounterStore(Protocol):
    def increment(self, name: str) -> int:
        """Atomically add 1 to counter `name` (absent = 0) and return the new value."""
        ...


def format_submission_id(value: int, prefix: str = "SUB-", width: int = 4) -> str:
    """Render `value` zero-padded to at least `width` digits; never truncates."""
    return f"{prefix}{int(value):0{int(width)}d}"


class InMemoryCounterStore:
    """Process-local store. Only safe when every caller shares this object."""

    def __init__(self, initial: Optional[dict[str, int]] = None):
        self._values: dict[str, int] = dict(initial or {})
        self._lock = threading.Lock()

    def increment(self, name: str) -> int:
        with self._lock:
            value = self._values.get(name, 0) + 1
            self._values[name] = value
            return value

    def current(self, name: str) -> int:
        with self._lock:
            return self._values.get(name, 0)


def _is_conflict(exc: DBAPIError) -> bool:
    msg = str(getattr(exc, "orig", exc) or "").lower()
    return any(marker in msg for marker in _CONFLICT_MARKERS)


class SqlCounterStore:
    """Counter row in the `counters` table.

    The UPDATE runs first so the row (or, on SQLite, the database) is write
    locked before the value is read back; concurrent callers queue behind it.
    A missing row is inserted with value 1; two racing first inserts surface
    as IntegrityError and are reported as a conflict for the allocator to retry.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    def increment(self, name: str) -> int:
        try:
            with self._session_factory() as db:
                with db.begin():
                    res = db.execute(
                        update(_counters).where(_counters.c.name == name).values(value=_counters.c.value + 1)
                    )
                    if res.rowcount == 0:
                        db.execute(insert(_counters).values(name=name, value=1))
                        return 1
                    return int(db.execute(select(_counters.c.value).where(_counters.c.name == name)).scalar_one())
        except IntegrityError as exc:
            raise AllocationConflict(f"concurrent creation of counter {name!r}") from exc
        except DBAPIError as exc:
            if _is_conflict(exc):
                raise AllocationConflict(f"counter {name!r} is locked") from exc
            raise StoreUnavailable(f"counter store error: {exc.__class__.__name__}") from exc

    def current(self, name: str) -> int:
        with self._session_factory() as db:
            value = db.execute(select(_counters.c.value).where(_counters.c.name == name)).scalar_one_or_none()
            return int(value or 0)


class RedisCounterStore:
    """Counter kept in Redis; INCR is atomic on the server and treats a missing key as 0."""

    def __init__(self, get_client: Callable[[], Optional[Redis]], key_prefix: str = "counter:"):
        self._get_client = get_client
        self._key_prefix = key_prefix

    def _key(self, name: str) -> str:
        return f"{self._key_prefix}{name}"

    def increment(self, name: str) -> int:
        client = self._get_client()
        if client is None:
            raise StoreUnavailable("Redis unavailable")
        try:
            return int(client.incr(self._key(name)))
        except redis.exceptions.RedisError as exc:
            raise StoreUnavailable(f"Redis error: {exc}") from exc


class IdAllocator:
    def __init__(
        self,
        store: CounterStore,
        *,
        counter_name: str = "SUBMISSION_COUNTER",
        prefix: str = "SUB-",
        width: int = 4,
        max_retries: int = 5,
        retry_delay: float = 0.05,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.counter_name = counter_name
        self.prefix = prefix
        self.width = width
        self.max_retries = max(0, int(max_retries))
        self.retry_delay = retry_delay
        self._sleep = sleep

    def allocate(self) -> str:
        """Return the next submission id or raise an `AllocationError`."""
        delay = self.retry_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                value = self.store.increment(self.counter_name)
            except AllocationConflict:
                if attempt > self.max_retries:
                    logger.error("Counter %s still contended after %d attempts", self.counter_name, attempt)
                    raise
                logger.warning("Counter %s contended (attempt %d), retrying", self.counter_name, attempt)
                self._sleep(delay)
                delay = min(delay * 1.5, 1.0)
                continue
            except StoreUnavailable:
                logger.error("Counter store unavailable for %s", self.counter_name)
                raise

            sid = format_submission_id(value, self.prefix, self.width)
            logger.info("Allocated submission id %s", sid)
            return sid


def build_counter_store(backend: str) -> CounterStore:
    backend = (backend or "sql").strip().lower()
    if backend == "sql":
        from issue_tracker.db.session import SessionLocal

        return SqlCounterStore(SessionLocal)
    if backend == "redis":
        from issue_tracker.core.redis import get_redis

        return RedisCounterStore(get_redis)
    if backend == "memory":
        return InMemoryCounterStore()
    raise ValueError(f"unknown counter backend: {backend!r}")


_allocator: Optional[IdAllocator] = None
_allocator_lock = threading.Lock()


def get_allocator() -> IdAllocator:
    """Process-wide allocator configured from settings (FastAPI dependency)."""
    global _allocator
    if _allocator is not None:
        return _allocator
    from issue_tracker.core.config import settings

    with _allocator_lock:
        if _allocator is None:
            _allocator = IdAllocator(
                build_counter_store(settings.COUNTER_BACKEND),
                counter_name=settings.COUNTER_NAME,
                prefix=settings.SUBMISSION_ID_PREFIX,
                width=settings.SUBMISSION_ID_WIDTH,
                max_retries=settings.ALLOCATOR_MAX_RETRIES,
            )
        return _allocator
