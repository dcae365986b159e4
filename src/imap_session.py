"""
IMAP Session Management

Wraps an imaplib connection behind the small capability surface the tools need
(list, select, fetch-by-range, store, expunge, copy, move, delete) and maps every
imaplib outcome to a structured error once, here, so callers never inspect
server text. A SessionHolder owns the single live session for a run.
"""

from __future__ import annotations

import imaplib
import re
import urllib.parse
from collections.abc import Iterator
from typing import NamedTuple, Optional

import imap_auth
import imap_common
from mail_models import MailboxRef

# Server replies that mean the session itself is gone rather than the command being refused
SESSION_INVALID_MARKERS = (
    "not logged in",
    "not authenticated",
    "session invalidated",
    "session expired",
    "accesstokenexpired",
    "illegal in state nonauth",
    "illegal in state logout",
)

FETCH_FULL = "(UID RFC822.SIZE BODY.PEEK[])"
FETCH_HEADERS = "(UID RFC822.SIZE BODY.PEEK[HEADER.FIELDS (SUBJECT DATE)])"

_FETCH_START = re.compile(rb"^(\d+)\s+\(")
_UID_PATTERN = re.compile(rb"UID\s+(\d+)", re.IGNORECASE)
_SIZE_PATTERN = re.compile(rb"RFC822\.SIZE\s+(\d+)", re.IGNORECASE)


class SessionError(Exception):
    """Base class for failures reported by the mail session."""

    def __init__(self, command: str, detail: str = ""):
        self.command = command
        self.detail = detail
        super().__init__(f"{command}: {detail}" if detail else command)


class ConnectError(SessionError):
    """The server could not be reached."""


class AuthError(SessionError):
    """The server rejected the credentials."""


class SessionInvalidError(SessionError):
    """The session is stale (dropped, logged out, token expired); reconnecting may help."""


class CommandError(SessionError):
    """The server refused a command on a healthy session."""


class FetchedMessage(NamedTuple):
    sequence: int
    uid: Optional[int]
    size: int
    content: Optional[bytes]


def _response_text(data) -> str:
    parts = []
    for item in data or []:
        if isinstance(item, tuple):
            item = item[0]
        if isinstance(item, bytes):
            parts.append(item.decode("utf-8", errors="ignore"))
        elif item is not None:
            parts.append(str(item))
    return " ".join(parts)


def signals_invalid_session(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in SESSION_INVALID_MARKERS)


def parse_fetch_response(data) -> list[FetchedMessage]:
    """
    Turns imaplib FETCH data into FetchedMessage tuples.

    Literal items arrive as (meta, content) tuples followed by a closing b")";
    attributes a server sends after the literal are merged into the same message.
    """
    messages: list[FetchedMessage] = []
    current = None

    def _finish():
        if current is not None:
            size = current["size"]
            if size is None:
                size = len(current["content"]) if current["content"] else 0
            messages.append(FetchedMessage(current["seq"], current["uid"], size, current["content"]))

    for item in data or []:
        if isinstance(item, tuple):
            meta, content = item[0], item[1]
        elif isinstance(item, bytes):
            meta, content = item, None
        else:
            continue

        start = _FETCH_START.match(meta)
        if start:
            _finish()
            current = {"seq": int(start.group(1)), "uid": None, "size": None, "content": None}
        elif current is None:
            continue

        uid_match = _UID_PATTERN.search(meta)
        if uid_match:
            current["uid"] = int(uid_match.group(1))
        size_match = _SIZE_PATTERN.search(meta)
        if size_match:
            current["size"] = int(size_match.group(1))
        if content is not None:
            current["content"] = content

    _finish()
    return messages


class MailSession:
    """One authenticated IMAP connection."""

    def __init__(self, conn, capabilities=None):
        self._conn = conn
        self._closed = False
        self.selected: Optional[str] = None
        self.uid_validity: Optional[int] = None
        if capabilities is None:
            capabilities = getattr(conn, "capabilities", ()) or ()
        self.capabilities = frozenset(str(c).upper() for c in capabilities)

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def supports_move(self) -> bool:
        return imap_common.CAP_MOVE in self.capabilities

    @property
    def supports_uidplus(self) -> bool:
        return imap_common.CAP_UIDPLUS in self.capabilities

    def refresh_capabilities(self) -> frozenset:
        """Ask the server again; many only advertise MOVE or UIDPLUS once logged in."""
        data = self._call("CAPABILITY", self._conn.capability)
        self.capabilities = frozenset(_response_text(data).upper().split())
        return self.capabilities

    def _call(self, command, fn, *args, **kwargs):
        if self._closed:
            raise SessionInvalidError(command, "session was closed")
        try:
            typ, data = fn(*args, **kwargs)
        except imaplib.IMAP4.abort as e:
            raise SessionInvalidError(command, str(e)) from e
        except imaplib.IMAP4.error as e:
            if getattr(self._conn, "state", None) in ("NONAUTH", "LOGOUT") or signals_invalid_session(str(e)):
                raise SessionInvalidError(command, str(e)) from e
            raise CommandError(command, str(e)) from e
        except (OSError, EOFError) as e:
            raise SessionInvalidError(command, str(e) or type(e).__name__) from e

        if typ != "OK":
            text = _response_text(data)
            if signals_invalid_session(text):
                raise SessionInvalidError(command, text)
            raise CommandError(command, f"{typ} {text}".strip())
        return data

    def list_mailboxes(self) -> list[MailboxRef]:
        data = self._call("LIST", self._conn.list)
        refs = []
        for item in data or []:
            ref = imap_common.parse_list_response(item)
            if ref is not None:
                refs.append(ref)
        return refs

    def select(self, name: str, readonly: bool = True) -> int:
        """Select a mailbox and return its message count."""
        self.selected = None
        self.uid_validity = None
        data = self._call("SELECT", self._conn.select, imap_common.quote_mailbox(name), readonly=readonly)
        try:
            count = int(data[0]) if data and data[0] else 0
        except (TypeError, ValueError):
            count = 0

        try:
            _, val = self._conn.response("UIDVALIDITY")
            if val and val[0]:
                self.uid_validity = int(val[0])
        except (imaplib.IMAP4.error, TypeError, ValueError):
            self.uid_validity = None

        self.selected = name
        return count

    def fetch_range(self, start: int, end: int, headers_only: bool = False) -> Iterator[FetchedMessage]:
        """
        Fetch sequence numbers start..end of the selected mailbox.

        If the server fails the command after delivering some messages, those
        messages are yielded first and the error is raised afterwards.
        """
        items = FETCH_HEADERS if headers_only else FETCH_FULL
        message_set = f"{start}:{end}" if end != start else str(start)
        try:
            data = self._call("FETCH", self._conn.fetch, message_set, items)
        except SessionError:
            delivered = self._pop_untagged("FETCH")
            yield from parse_fetch_response(delivered)
            raise
        yield from parse_fetch_response(data)

    def _pop_untagged(self, name):
        responses = getattr(self._conn, "untagged_responses", None)
        if not isinstance(responses, dict):
            return []
        return responses.pop(name, []) or []

    def has_uid(self, uid: int) -> bool:
        """True when the selected mailbox still holds a message with this UID."""
        data = self._call("UID FETCH", self._conn.uid, imap_common.CMD_FETCH, str(uid), "(UID FLAGS)")
        return any(m.uid == uid for m in parse_fetch_response(data))

    def store_deleted(self, ids: str, by_uid: bool = True) -> None:
        if by_uid:
            self._call(
                "UID STORE",
                self._conn.uid,
                imap_common.CMD_STORE,
                ids,
                imap_common.OP_ADD_FLAGS,
                imap_common.FLAG_DELETED_LITERAL,
            )
        else:
            self._call("STORE", self._conn.store, ids, imap_common.OP_ADD_FLAGS, imap_common.FLAG_DELETED_LITERAL)

    def expunge(self) -> None:
        self._call("EXPUNGE", self._conn.expunge)

    def expunge_uid(self, uid: int) -> None:
        """Expunge one message. Without UIDPLUS every \\Deleted message in the mailbox goes."""
        if self.supports_uidplus:
            self._call("UID EXPUNGE", self._conn.uid, imap_common.CMD_EXPUNGE, str(uid))
        else:
            self.expunge()

    def close_mailbox(self) -> None:
        """Leave the selected mailbox (CLOSE also expunges \\Deleted messages)."""
        if self.selected is None:
            return
        self._call("CLOSE", self._conn.close)
        self.selected = None

    def delete_mailbox(self, name: str) -> None:
        self._call("DELETE", self._conn.delete, imap_common.quote_mailbox(name))

    def copy(self, uid: int, destination: str) -> None:
        self._call("UID COPY", self._conn.uid, imap_common.CMD_COPY, str(uid), imap_common.quote_mailbox(destination))

    def move(self, uid: int, destination: str) -> None:
        """Move one message by UID with the MOVE extension (see supports_move)."""
        self._call("UID MOVE", self._conn.uid, imap_common.CMD_MOVE, str(uid), imap_common.quote_mailbox(destination))

    def logout(self) -> None:
        """Best-effort logout; the session is unusable afterwards either way."""
        if self._closed:
            return
        self._closed = True
        self.selected = None
        try:
            self._conn.logout()
        except (imaplib.IMAP4.error, OSError, EOFError):
            # Stale connections routinely fail to say goodbye
            pass


def parse_host(host, port=None):
    """
    Resolve a host setting into (use_ssl, hostname, port).

    Accepts a bare hostname (TLS), imaps://host[:port] (TLS) or imap://host[:port] (plaintext).
    """
    use_ssl = True
    resolved_host = host
    if "://" in host:
        parsed = urllib.parse.urlparse(host)
        scheme = parsed.scheme.lower()
        if not scheme or not parsed.hostname:
            raise ValueError("Invalid IMAP host")
        if scheme in {"imap", "tcp"}:
            use_ssl = False
        elif scheme not in {"imaps", "imap+ssl", "imapssl", "ssl"}:
            raise ValueError(f"Unsupported IMAP scheme: {scheme}")
        resolved_host = parsed.hostname
        port = parsed.port or port
    return use_ssl, resolved_host, int(port) if port else None


def open_session(conf) -> MailSession:
    """
    Connects and logs in using a conf dict (see imap_auth.build_imap_conf).
    Supports both basic auth (password) and OAuth 2.0 (XOAUTH2).
    Raises ConnectError or AuthError.
    """
    host = conf.get("host")
    user = conf.get("user")
    password = conf.get("password")
    oauth2_token = conf.get("oauth2_token")

    if not host or not user:
        raise ConnectError("CONNECT", f"Invalid credentials for {host}")
    if not password and not oauth2_token:
        raise AuthError("LOGIN", f"Either password or oauth2_token is required for {host}")

    try:
        use_ssl, resolved_host, port = parse_host(host, conf.get("port"))
    except ValueError as e:
        raise ConnectError("CONNECT", str(e)) from e

    try:
        if use_ssl:
            conn = imaplib.IMAP4_SSL(resolved_host, port) if port else imaplib.IMAP4_SSL(resolved_host)
        else:
            conn = imaplib.IMAP4(resolved_host, port) if port else imaplib.IMAP4(resolved_host)
    except (OSError, imaplib.IMAP4.error) as e:
        raise ConnectError("CONNECT", f"{host}: {e}") from e

    try:
        if oauth2_token:
            auth_string = f"user={user}\x01auth=Bearer {oauth2_token}\x01\x01"
            conn.authenticate("XOAUTH2", lambda _: auth_string.encode())
        else:
            conn.login(user, password)
    except imaplib.IMAP4.abort as e:
        raise ConnectError("LOGIN", f"{host}: {e}") from e
    except imaplib.IMAP4.error as e:
        raise AuthError("LOGIN", f"{user}@{host}: {e}") from e
    except OSError as e:
        raise ConnectError("LOGIN", f"{host}: {e}") from e

    session = MailSession(conn)
    try:
        session.refresh_capabilities()
    except SessionError as e:
        session.logout()
        raise ConnectError("CAPABILITY", f"{host}: {e.detail}") from e
    return session


class SessionHolder:
    """
    Owns the one live session of a run.

    A reconnect produces a brand-new session; the stale one is logged out and
    never handed out again.
    """

    def __init__(self, conf, connect_fn=open_session, session: Optional[MailSession] = None):
        self._conf = conf
        self._connect_fn = connect_fn
        self._session = session
        self.connections = 1 if session is not None else 0

    @property
    def conf(self):
        return self._conf

    @property
    def session(self) -> Optional[MailSession]:
        return self._session

    def acquire(self) -> MailSession:
        """Return the live session, opening one if there is none."""
        if self._session is None:
            self._session = self._connect_fn(self._conf)
            self.connections += 1
        return self._session

    def invalidate(self) -> None:
        stale, self._session = self._session, None
        if stale is not None:
            stale.logout()

    def reconnect(self) -> MailSession:
        self.invalidate()
        imap_auth.refresh_credentials(self._conf)
        return self.acquire()

    def close(self) -> None:
        self.invalidate()
