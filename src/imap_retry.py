"""
IMAP Retry Logic

Re-runs a unit of work against a fresh session when the current one goes stale
(dropped connection, "not logged in", expired token). The unit always restarts
from its first step; nothing is resumed halfway through.
"""

from __future__ import annotations

import time

from imap_common import safe_print
from imap_session import AuthError, ConnectError, SessionInvalidError

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_WAIT = 2.0


class RetryExhaustedError(Exception):
    """The session kept going stale until the retry budget ran out."""

    def __init__(self, label, attempts, last_error):
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"{label}: gave up after {attempts} attempts ({last_error})")


def run_with_reconnect(
    holder,
    operation,
    *,
    label="operation",
    max_retries=DEFAULT_MAX_RETRIES,
    wait=DEFAULT_RETRY_WAIT,
    log_fn=safe_print,
    sleep_fn=time.sleep,
):
    """Run operation(session) and return its result, reconnecting on stale sessions.

    Args:
        holder: SessionHolder owning the live session.
        operation: Callable taking a MailSession. It must be safe to run again from
            the top (re-select, re-verify) after a reconnect.
        max_retries: Retries after the first attempt; a failure beyond that abandons.
        wait: Fixed pause (seconds) between dropping the stale session and reconnecting.

    Raises:
        RetryExhaustedError: every attempt hit a stale session or failed to reconnect.
        SessionError: any non-transient failure, raised on first occurrence.
    """
    if max_retries < 0:
        raise ValueError(f"max_retries must be >= 0, got {max_retries}")
    if wait < 0:
        raise ValueError(f"wait must be >= 0, got {wait}")

    attempts = max_retries + 1
    last_error = None

    for attempt in range(1, attempts + 1):
        if attempt > 1:
            log_fn(f"Retry attempt {attempt - 1}/{max_retries} for {label}")
            sleep_fn(wait)
            try:
                holder.reconnect()
                log_fn("Reconnected successfully")
            except (ConnectError, AuthError) as e:
                log_fn(f"Reconnection failed: {e}")
                last_error = e
                continue

        try:
            session = holder.acquire()
            return operation(session)
        except SessionInvalidError as e:
            last_error = e
            log_fn(f"Session lost during {label}: {e}")
            holder.invalidate()
        except (ConnectError, AuthError) as e:
            last_error = e
            log_fn(f"Connection failed during {label}: {e}")

    raise RetryExhaustedError(label, attempts, last_error)
