"""
Mail Data Model

Read-only snapshot types shared by the scan, grouping, planning and execution stages.
Instances are only valid for the run that produced them; nothing here is persisted.
"""

from __future__ import annotations

import base64
import binascii
import enum
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

NOSELECT_FLAGS = {"\\noselect", "\\nonexistent"}

# "&" shifts into modified base64 (UTF-16BE), "-" shifts back; "&-" is a literal "&"
_SHIFTED_RUN = re.compile(r"&([A-Za-z0-9+,]*)-")


def decode_mailbox_name(name: str) -> str:
    """Decode a modified UTF-7 mailbox name (RFC 3501 5.1.3) into readable text.

    Runs that don't decode cleanly are left as they are.
    """
    if not name or "&" not in name:
        return name

    def _decode(match):
        run = match.group(1)
        if not run:
            return "&"
        encoded = run.replace(",", "/")
        encoded += "=" * (-len(encoded) % 4)
        try:
            return base64.b64decode(encoded, validate=True).decode("utf-16-be")
        except (binascii.Error, UnicodeDecodeError):
            return match.group(0)

    return _SHIFTED_RUN.sub(_decode, name)


@dataclass(frozen=True)
class MailboxRef:
    """A remote folder as reported by LIST."""

    name: str
    delimiter: Optional[str] = "/"
    flags: tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        """The name as a user would type it; commands keep using `name`."""
        return decode_mailbox_name(self.name)

    @property
    def depth(self) -> int:
        if not self.delimiter:
            return 0
        return self.name.count(self.delimiter)

    @property
    def segments(self) -> list[str]:
        if not self.delimiter:
            return [self.name]
        return self.name.split(self.delimiter)

    @property
    def selectable(self) -> bool:
        return not any(f.lower() in NOSELECT_FLAGS for f in self.flags)

    def has_flag(self, flag: str) -> bool:
        return flag.lower() in (f.lower() for f in self.flags)

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class MessageRecord:
    """One scanned message.

    `sequence` is only meaningful inside the selected-mailbox session of the scan;
    mutations address the message by `uid` and re-check `uid_validity` first.
    """

    mailbox: MailboxRef
    sequence: int
    uid: Optional[int]
    subject: str
    date: Optional[datetime]
    size: int
    fingerprint: str
    uid_validity: Optional[int] = None
    preview: str = field(default="", compare=False)

    @property
    def label(self) -> str:
        ident = f"UID {self.uid}" if self.uid is not None else f"#{self.sequence}"
        return f"[{self.mailbox.name}] {ident} {self.subject}"


@dataclass(frozen=True)
class FingerprintGroup:
    fingerprint: str
    members: tuple[MessageRecord, ...]

    @property
    def is_duplicate(self) -> bool:
        return len(self.members) > 1


class ActionKind(enum.Enum):
    DELETE = "delete"
    MOVE_TO_TRASH = "trash"

    @property
    def verb(self) -> str:
        return "Delete" if self is ActionKind.DELETE else "Move to trash"


@dataclass(frozen=True)
class PlannedAction:
    record: MessageRecord
    kind: ActionKind
