"""
IMAP Common Utilities

Shared functionality for the dedupe, folder deletion and backup scripts.
"""

from __future__ import annotations

import re
import threading
from datetime import datetime
from email.header import decode_header
from typing import Optional

from mail_models import MailboxRef

# Standard IMAP flags
FLAG_DELETED_LITERAL = "(\\Deleted)"
FLAG_TRASH = "\\Trash"

# IMAP Commands
CMD_STORE = "STORE"
CMD_FETCH = "FETCH"
CMD_COPY = "COPY"
CMD_MOVE = "MOVE"
CMD_EXPUNGE = "EXPUNGE"
OP_ADD_FLAGS = "+FLAGS"

# Server capabilities
CAP_MOVE = "MOVE"
CAP_UIDPLUS = "UIDPLUS"

# Trash folder names checked (case-insensitively) when no \Trash attribute is advertised
TRASH_CANDIDATES = [
    "Trash",
    "Corbeille",
    "Deleted Items",
    "Deleted Messages",
    "Bin",
    "[Gmail]/Trash",
    "[Gmail]/Bin",
    "[Google Mail]/Trash",
]

# Characters that can't appear in a local path segment
UNSAFE_PATH_CHARS = re.compile(r'[<>:"/\\|?*]')

DATE_DISPLAY_FORMAT = "%Y-%m-%d %H:%M:%S"

_print_lock = threading.Lock()

_LIST_PATTERN = re.compile(r'^\((?P<flags>[^)]*)\)\s+(?P<delimiter>"(?:[^"\\]|\\.)*"|NIL)\s*(?P<name>.*)$', re.IGNORECASE)


def safe_print(message: str, end: str = "\n") -> None:
    """Thread-safe print with short thread names for logs."""
    t_name = threading.current_thread().name
    short_name = t_name.replace("ThreadPoolExecutor-", "T-").replace("MainThread", "MAIN")
    with _print_lock:
        print(f"[{short_name}] {message}", end=end, flush=True)


def quote_mailbox(name: str) -> str:
    """Quote a mailbox name for use as an IMAP command argument."""
    escaped = name.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def parse_list_response(item) -> Optional[MailboxRef]:
    """
    Parses one entry of an IMAP LIST response into a MailboxRef.

    Handles quoted names, NIL delimiters, and names sent as literals
    (imaplib returns those as a (prefix, name) tuple).
    Returns None for entries that can't be parsed.
    """
    literal_name = None
    if isinstance(item, tuple):
        item, literal_name = item[0], item[1]
        if isinstance(literal_name, bytes):
            literal_name = literal_name.decode("utf-8", errors="ignore")
    if item is None:
        return None
    if isinstance(item, bytes):
        item = item.decode("utf-8", errors="ignore")

    match = _LIST_PATTERN.match(item.strip())
    if not match:
        return None

    flags = tuple(match.group("flags").split())
    raw_delim = match.group("delimiter")
    delimiter = None if raw_delim.upper() == "NIL" else _unquote(raw_delim)

    if literal_name is not None:
        name = literal_name
    else:
        name = _unquote(match.group("name"))
    if not name:
        return None

    return MailboxRef(name=name, delimiter=delimiter or None, flags=flags)


def unfold_header(value) -> str:
    """Unfolds header continuation lines (CRLF/LF + whitespace) into single spaces."""
    if value is None:
        return ""
    return re.sub(r"\r?\n[ \t]+", " ", str(value)).strip()


def decode_mime_header(header_value, default: str = "(No Subject)") -> str:
    """
    Decodes MIME encoded headers (Subject, etc.) to a unicode string.
    """
    if not header_value:
        return default
    try:
        decoded_list = decode_header(unfold_header(header_value))
        text_parts = []
        for data, encoding in decoded_list:
            if isinstance(data, bytes):
                charset = encoding or "utf-8"
                try:
                    text_parts.append(data.decode(charset, errors="ignore"))
                except LookupError:
                    text_parts.append(data.decode("utf-8", errors="ignore"))
            else:
                text_parts.append(str(data))
        return "".join(text_parts)
    except Exception:
        return str(header_value)


def sanitize_path_segment(segment: str) -> str:
    """
    Makes one folder name segment safe for the local file system.
    Each of < > : " / \\ | ? * is replaced with an underscore.
    """
    if not segment:
        return "untitled"
    return UNSAFE_PATH_CHARS.sub("_", segment)


def detect_trash_folder(mailboxes: list[MailboxRef]) -> Optional[str]:
    """
    Attempts to identify the Trash folder among listed mailboxes.
    Returns the folder name or None if not found.
    The SPECIAL-USE \\Trash attribute wins over name matching.
    """
    for ref in mailboxes:
        if ref.has_flag(FLAG_TRASH):
            return ref.name

    by_lower = {}
    for ref in mailboxes:
        by_lower.setdefault(ref.name.lower(), ref.name)

    for candidate in TRASH_CANDIDATES:
        found = by_lower.get(candidate.lower())
        if found:
            return found

    return None


def format_size(size: int) -> str:
    return f"{size / 1024:.1f}KB" if size else "0KB"


def format_date(value: Optional[datetime]) -> str:
    if value is None:
        return "(no date)"
    return value.strftime(DATE_DISPLAY_FORMAT)
