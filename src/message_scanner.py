"""
Batched Mailbox Scanner

Streams every message of a mailbox in fixed-size sequence windows. Each window is
retrieved by a background thread into a bounded queue while the caller consumes;
the retrieval's error (if any) is only raised after everything it delivered has
been handed over, so a window that fails halfway still yields its first messages.
"""

from __future__ import annotations

import functools
import queue
import threading
from email import policy
from email.parser import BytesParser
from email.utils import parsedate_to_datetime

import imap_common
import imap_retry
from fingerprint import FingerprintError, extract_preview
from imap_session import SessionError
from mail_models import MessageRecord

safe_print = imap_common.safe_print

DEFAULT_BATCH_SIZE = 100
DEFAULT_BUFFER_SIZE = 10

_END = object()


def iter_windows(total, batch_size=DEFAULT_BATCH_SIZE):
    """Yields (start, end) pairs covering 1..total in order, inclusive on both ends."""
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")
    start = 1
    while start <= total:
        end = min(start + batch_size - 1, total)
        yield start, end
        start = end + 1


def stream_window(session, start, end, headers_only=False, buffer_size=DEFAULT_BUFFER_SIZE):
    """
    Yields the FetchedMessages of one window as the background fetch delivers them.

    The queue is always drained to its end marker before the fetch thread is joined,
    also when the consumer stops early, so the producer can never stay blocked.
    """
    buffer = queue.Queue(maxsize=buffer_size)
    errors = []

    def _produce():
        try:
            for item in session.fetch_range(start, end, headers_only=headers_only):
                buffer.put(item)
        except Exception as e:
            errors.append(e)
        finally:
            buffer.put(_END)

    worker = threading.Thread(target=_produce, name=f"fetch-{start}-{end}", daemon=True)
    worker.start()

    drained = False
    try:
        while True:
            item = buffer.get()
            if item is _END:
                drained = True
                break
            yield item
    finally:
        if not drained:
            while buffer.get() is not _END:
                pass
        worker.join()

    if errors:
        raise errors[0]


def iter_mailbox_messages(session, mailbox, batch_size=DEFAULT_BATCH_SIZE, headers_only=False, progress_callback=None):
    """
    Selects the mailbox read-only and yields every message, window after window.
    Optional progress_callback(current, total) is called after each message.
    """
    total = session.select(str(mailbox), readonly=True)
    if total == 0:
        return

    current = 0
    for start, end in iter_windows(total, batch_size):
        for message in stream_window(session, start, end, headers_only=headers_only):
            current += 1
            yield message
            if progress_callback:
                progress_callback(current, total)


def parse_summary_headers(content):
    """Returns (subject, date) from raw message bytes; date is None when missing or malformed."""
    msg = BytesParser(policy=policy.compat32).parsebytes(content, headersonly=True)
    subject = imap_common.decode_mime_header(msg.get("Subject"))
    date = None
    raw_date = msg.get("Date")
    if raw_date:
        try:
            date = parsedate_to_datetime(imap_common.unfold_header(raw_date))
        except (TypeError, ValueError, IndexError):
            date = None
    return subject, date


def scan_mailbox(session, mailbox, fingerprinter, batch_size=DEFAULT_BATCH_SIZE, show_progress=True):
    """
    Scans one mailbox into MessageRecords.
    Messages without content or that can't be fingerprinted are reported and left out.
    """
    records = []

    def _progress(current, total):
        print(f"\rProcessed {current}/{total} in {mailbox.name}   ", end="", flush=True)

    progress = _progress if show_progress else None
    try:
        for message in iter_mailbox_messages(session, mailbox, batch_size, progress_callback=progress):
            if not message.content:
                safe_print(f"[{mailbox.name}] EMPTY Content | #{message.sequence}")
                continue
            try:
                fingerprint = fingerprinter(message.content)
            except FingerprintError as e:
                safe_print(f"[{mailbox.name}] ERROR Fingerprint | #{message.sequence}: {e}")
                continue

            subject, date = parse_summary_headers(message.content)
            records.append(
                MessageRecord(
                    mailbox=mailbox,
                    sequence=message.sequence,
                    uid=message.uid,
                    subject=subject,
                    date=date,
                    size=message.size,
                    fingerprint=fingerprint,
                    uid_validity=session.uid_validity,
                    preview=extract_preview(message.content),
                )
            )
    finally:
        if show_progress:
            print()  # New line after progress

    return records


def scan_mailboxes(
    holder,
    mailboxes,
    fingerprinter,
    batch_size=DEFAULT_BATCH_SIZE,
    max_retries=imap_retry.DEFAULT_MAX_RETRIES,
    retry_wait=imap_retry.DEFAULT_RETRY_WAIT,
    sleep_fn=None,
    show_progress=True,
):
    """
    Scans mailboxes one after another and returns all records in scan order.

    A stale session restarts the current mailbox from scratch on a new session;
    anything else that goes wrong with a mailbox skips it.
    """
    retry_kwargs = {}
    if sleep_fn is not None:
        retry_kwargs["sleep_fn"] = sleep_fn

    all_records = []
    for idx, mailbox in enumerate(mailboxes, 1):
        safe_print(f"[{idx}/{len(mailboxes)}] Scanning: {mailbox.name}")
        operation = functools.partial(
            scan_mailbox,
            mailbox=mailbox,
            fingerprinter=fingerprinter,
            batch_size=batch_size,
            show_progress=show_progress,
        )
        try:
            records = imap_retry.run_with_reconnect(
                holder,
                operation,
                label=f"scan of {mailbox.name}",
                max_retries=max_retries,
                wait=retry_wait,
                **retry_kwargs,
            )
        except imap_retry.RetryExhaustedError as e:
            safe_print(f"Skipping {mailbox.name}: {e}")
            continue
        except SessionError as e:
            safe_print(f"Skipping {mailbox.name}: {e}")
            continue

        safe_print(f"  -> {len(records)} messages")
        all_records.extend(records)

    return all_records
