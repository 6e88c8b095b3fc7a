from datetime import datetime, timedelta, timezone


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def should_retry(attempt_count: int, max_attempts: int) -> bool:
    return max_attempts > 0 and attempt_count < max_attempts


def backoff_seconds(attempt_count: int, base_seconds: int, max_seconds: int) -> int:
    attempt = max(1, int(attempt_count))
    base = max(1, int(base_seconds))
    ceiling = max(base, int(max_seconds))
    # first retry waits base, then doubles per attempt
    return min(base << (attempt - 1), ceiling)


def retry_after(attempt_count: int, base_seconds: int, max_seconds: int, now: datetime | None = None) -> datetime:
    delay = backoff_seconds(attempt_count, base_seconds, max_seconds)
    return (now or now_utc()) + timedelta(seconds=delay)
