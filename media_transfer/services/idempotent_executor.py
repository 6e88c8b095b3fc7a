"""
Key -> result memoization for side-effecting destination calls.

Every remote creation in a transfer job runs through an executor under a key
that is stable across retries of the same logical operation. Once a key holds
a result the operation is never invoked again for it; failures are recorded
but not cached, so a later call with the same key re-attempts the operation.
Callers that block on a key while its operation runs share the outcome of
that single execution, including its failure.
"""

from __future__ import annotations

import threading
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Protocol, TypeVar

import structlog

logger = structlog.get_logger(__name__)

T = TypeVar("T")


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(frozen=True, slots=True)
class ErrorDetail:
    id: str
    title: str
    exception: str
    exception_type: str = "Exception"
    occurred_at: datetime = field(default_factory=_now)

    def to_dict(self) -> dict[str, str]:
        payload = asdict(self)
        payload["occurred_at"] = self.occurred_at.isoformat()
        return payload


class IdempotentExecutor(Protocol):
    def execute_or_raise(self, key: str, item_name: str, operation: Callable[[], T]) -> T: ...

    def execute_and_swallow_errors(self, key: str, item_name: str, operation: Callable[[], T]) -> T | None: ...

    def record_failure(self, key: str, item_name: str, exc: BaseException) -> ErrorDetail | None: ...

    def is_key_cached(self, key: str) -> bool: ...

    def get_cached_value(self, key: str) -> Any: ...

    def get_errors(self) -> list[ErrorDetail]: ...


@dataclass
class _Record:
    lock: threading.RLock = field(default_factory=threading.RLock)
    has_result: bool = False
    result: Any = None
    failures: int = 0
    last_failure: BaseException | None = None


class InMemoryIdempotentExecutor:
    """Executor backed by a per-key guarded table, owned by one job run."""

    def __init__(self, job_id: str | None = None) -> None:
        self.job_id = job_id
        self._records: dict[str, _Record] = {}
        self._table_lock = threading.Lock()
        self._errors: dict[str, ErrorDetail] = {}
        self._recent_errors: dict[str, ErrorDetail] = {}
        self._errors_lock = threading.Lock()

    def _record_for(self, key: str) -> _Record:
        with self._table_lock:
            record = self._records.get(key)
            if record is None:
                record = _Record()
                self._records[key] = record
            return record

    def _record_error(self, key: str, item_name: str, exc: BaseException) -> ErrorDetail:
        detail = ErrorDetail(
            id=key,
            title=item_name,
            exception=str(exc) or type(exc).__name__,
            exception_type=type(exc).__name__,
        )
        with self._errors_lock:
            self._errors[key] = detail
            self._recent_errors[key] = detail
        logger.warning(
            "idempotent_operation_failed",
            job_id=self.job_id,
            key=key,
            item_name=item_name,
            error=detail.exception,
        )
        return detail

    def _clear_error(self, key: str) -> None:
        with self._errors_lock:
            self._errors.pop(key, None)
            self._recent_errors.pop(key, None)

    def execute_or_raise(self, key: str, item_name: str, operation: Callable[[], T]) -> T:
        record = self._record_for(key)
        failures_seen = record.failures
        with record.lock:
            if record.has_result:
                return record.result
            if record.failures != failures_seen:
                # an execution that was running while this caller waited has failed
                raise record.last_failure
            try:
                result = operation()
            except Exception as exc:
                self._record_error(key, item_name, exc)
                record.last_failure = exc
                record.failures += 1
                raise
            record.last_failure = None
            record.result = result
            record.has_result = True
        self._clear_error(key)
        return result

    def execute_and_swallow_errors(self, key: str, item_name: str, operation: Callable[[], T]) -> T | None:
        try:
            return self.execute_or_raise(key, item_name, operation)
        except Exception:  # noqa: BLE001
            return None

    def record_failure(self, key: str, item_name: str, exc: BaseException) -> ErrorDetail | None:
        """Record ``exc`` under ``key`` unless the key already holds a result."""
        record = self._record_for(key)
        with record.lock:
            if record.has_result:
                return None
            return self._record_error(key, item_name, exc)

    def is_key_cached(self, key: str) -> bool:
        with self._table_lock:
            record = self._records.get(key)
        return bool(record and record.has_result)

    def get_cached_value(self, key: str) -> Any:
        with self._table_lock:
            record = self._records.get(key)
        if not record or not record.has_result:
            raise KeyError(key)
        return record.result

    def discard(self, key: str) -> None:
        """Drop the cached result and recorded errors of ``key``."""
        with self._table_lock:
            self._records.pop(key, None)
        self._clear_error(key)

    def get_errors(self) -> list[ErrorDetail]:
        with self._errors_lock:
            return list(self._errors.values())

    def get_recent_errors(self) -> list[ErrorDetail]:
        with self._errors_lock:
            return list(self._recent_errors.values())

    def reset_recent_errors(self) -> None:
        with self._errors_lock:
            self._recent_errors.clear()
