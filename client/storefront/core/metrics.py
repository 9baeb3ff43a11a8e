from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    with _lock:
        _metrics[key] += amount


def record_signup() -> None:
    _inc("signups")


def record_login_success() -> None:
    _inc("logins")


def record_login_failure() -> None:
    _inc("login_failures")


def record_session_expired() -> None:
    _inc("session_expirations")


def record_lines_migrated(count: int) -> None:
    if count:
        _inc("lines_migrated", count)


def record_migration_failure() -> None:
    _inc("migration_failures")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
