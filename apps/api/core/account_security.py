"""
Login lockout.

Failed logins are counted per email inside a sliding window; after
MAX_FAILED_ATTEMPTS the account is locked for LOCKOUT_DURATION_MINUTES.
State is per-process.
"""
from datetime import datetime, timedelta, timezone
from typing import Optional, Tuple
from collections import defaultdict
import threading

# {email: [(timestamp, success), ...]}
_login_attempts: dict = defaultdict(list)
_lock = threading.Lock()

MAX_FAILED_ATTEMPTS = 5
LOCKOUT_DURATION_MINUTES = 15
ATTEMPT_WINDOW_MINUTES = 30


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _key(email: str) -> str:
    return (email or "").strip().lower()


def _recent(email: str) -> list:
    """Attempts inside the window. Caller holds _lock."""
    cutoff = _now() - timedelta(minutes=ATTEMPT_WINDOW_MINUTES)
    attempts = [(ts, ok) for ts, ok in _login_attempts[email] if ts > cutoff]
    _login_attempts[email] = attempts
    return attempts


def record_login_attempt(email: str, success: bool) -> None:
    key = _key(email)
    with _lock:
        if success:
            # A good login wipes the failure history.
            _login_attempts[key] = [(_now(), True)]
        else:
            _recent(key).append((_now(), False))


def is_account_locked(email: str) -> Tuple[bool, Optional[int]]:
    """Returns (is_locked, seconds_until_unlock or None)."""
    key = _key(email)
    with _lock:
        failed = [ts for ts, ok in _recent(key) if not ok]
        if len(failed) < MAX_FAILED_ATTEMPTS:
            return False, None

        lockout_end = max(failed) + timedelta(minutes=LOCKOUT_DURATION_MINUTES)
        remaining = (lockout_end - _now()).total_seconds()
        if remaining > 0:
            return True, int(remaining)
        return False, None


def get_remaining_attempts(email: str) -> int:
    key = _key(email)
    with _lock:
        failed = [ts for ts, ok in _recent(key) if not ok]
        return max(0, MAX_FAILED_ATTEMPTS - len(failed))


def clear_lockout(email: str) -> None:
    with _lock:
        _login_attempts.pop(_key(email), None)
