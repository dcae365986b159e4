"""
Message Fingerprinting

Two interchangeable SHA-256 strategies:

- raw:       hash of the complete message octets as delivered by the server.
- canonical: hash of the decoded Subject and Date headers plus the decoded content of
             every text/plain, text/html and application/* part, in part order. MIME
             boundaries, transfer encodings and header folding don't change it.

A message that can't be fingerprinted raises FingerprintError and callers drop it.
No placeholder fingerprint is ever returned.
"""

from __future__ import annotations

import binascii
import hashlib
import re
from email import policy
from email.parser import BytesParser

import imap_common

STRATEGY_RAW = "raw"
STRATEGY_CANONICAL = "canonical"
STRATEGIES = (STRATEGY_CANONICAL, STRATEGY_RAW)

HASHED_TEXT_TYPES = {"text/plain", "text/html"}
HASHED_TYPE_PREFIX = "application/"

PREVIEW_LENGTH = 200

# Separates hashed fields so ("ab", "c") and ("a", "bc") differ
_FIELD_SEPARATOR = b"\x00"


class FingerprintError(Exception):
    pass


def _check_content(raw) -> bytes:
    if raw is None:
        raise FingerprintError("message has no content")
    if isinstance(raw, str):
        raw = raw.encode("utf-8", errors="surrogateescape")
    if not raw:
        raise FingerprintError("message has no content")
    return bytes(raw)


def _parse(raw: bytes):
    try:
        return BytesParser(policy=policy.compat32).parsebytes(raw)
    except Exception as e:
        raise FingerprintError(f"unparseable message: {e}") from e


def raw_fingerprint(raw) -> str:
    return hashlib.sha256(_check_content(raw)).hexdigest()


def is_hashed_part(content_type: str) -> bool:
    content_type = (content_type or "").lower()
    return content_type in HASHED_TEXT_TYPES or content_type.startswith(HASHED_TYPE_PREFIX)


def _decoded_part_content(part):
    try:
        return part.get_payload(decode=True)
    except (binascii.Error, ValueError, LookupError, AssertionError):
        return None


def canonical_fingerprint(raw) -> str:
    msg = _parse(_check_content(raw))
    if not msg.keys():
        raise FingerprintError("message has no headers")

    h = hashlib.sha256()
    h.update(imap_common.decode_mime_header(msg.get("Subject"), default="").encode("utf-8"))
    h.update(_FIELD_SEPARATOR)
    h.update(imap_common.unfold_header(msg.get("Date")).encode("utf-8"))

    for part in msg.walk():
        if part.is_multipart():
            continue
        if not is_hashed_part(part.get_content_type()):
            continue
        content = _decoded_part_content(part)
        if content is None:
            continue
        h.update(_FIELD_SEPARATOR)
        h.update(content)

    return h.hexdigest()


_STRATEGY_FUNCS = {
    STRATEGY_RAW: raw_fingerprint,
    STRATEGY_CANONICAL: canonical_fingerprint,
}


def get_fingerprinter(strategy: str):
    """Return the fingerprint function for a strategy name."""
    try:
        return _STRATEGY_FUNCS[strategy.lower()]
    except KeyError:
        raise ValueError(f"Unknown fingerprint strategy: {strategy} (expected one of {', '.join(STRATEGIES)})")


def extract_preview(raw, length: int = PREVIEW_LENGTH) -> str:
    """Short whitespace-collapsed excerpt of the first plain-text part, for prompts."""
    if not raw:
        return ""
    try:
        msg = _parse(_check_content(raw))
    except FingerprintError:
        return ""

    for part in msg.walk():
        if part.is_multipart() or part.get_content_type() != "text/plain":
            continue
        content = _decoded_part_content(part)
        if not content:
            continue
        charset = part.get_content_charset() or "utf-8"
        try:
            text = content.decode(charset, errors="replace")
        except LookupError:
            text = content.decode("utf-8", errors="replace")
        text = re.sub(r"\s+", " ", text).strip()
        if text:
            return text[:length]
    return ""
