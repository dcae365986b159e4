"""
Mailbox Enumeration

Lists remote folders and narrows them down: trash/spam/junk folders are dropped by
name (several locales), and an optional folder scope keeps one subtree.
Server order is preserved.
"""

from __future__ import annotations

from typing import Iterable, Optional

from mail_models import MailboxRef

# Matched case-insensitively as substrings of the full decoded folder name
DEFAULT_EXCLUDED_PATTERNS = (
    "trash",
    "corbeille",
    "papierkorb",
    "papelera",
    "cestino",
    "lixeira",
    "prullenbak",
    "deleted items",
    "deleted messages",
    "éléments supprimés",
    "[gmail]/bin",
    "[google mail]/bin",
    "spam",
    "junk",
    "bulk mail",
    "pourriel",
    "indésirables",
    "courrier indésirable",
)


class MailboxNotFoundError(Exception):
    """A folder scope was requested but no folder falls under it."""

    def __init__(self, prefix):
        self.prefix = prefix
        super().__init__(f"no mailboxes found matching: {prefix}")


def is_excluded(name: str, patterns: Iterable[str]) -> bool:
    lowered = name.lower()
    return any(p.lower() in lowered for p in patterns if p)


def _under(name: str, prefix: str, delimiter: Optional[str]) -> bool:
    if name == prefix:
        return True
    if not delimiter:
        return False
    if prefix.endswith(delimiter):
        return name.startswith(prefix)
    return name.startswith(prefix + delimiter)


def in_scope(ref: MailboxRef, prefix: Optional[str]) -> bool:
    """
    True when the folder is the prefix folder itself or one of its descendants.
    A prefix that already ends with the delimiter matches as a plain string prefix.
    The prefix may be given as the server sends it or in decoded form.
    """
    if not prefix:
        return True
    return any(_under(name, prefix, ref.delimiter) for name in (ref.name, ref.display_name))


def filter_mailboxes(
    mailboxes: Iterable[MailboxRef],
    exclude: Iterable[str] = DEFAULT_EXCLUDED_PATTERNS,
    prefix: Optional[str] = None,
    selectable_only: bool = True,
) -> list[MailboxRef]:
    """Apply exclusion and scope rules. Raises MailboxNotFoundError for an empty scoped result."""
    exclude = tuple(exclude or ())
    result = []
    for ref in mailboxes:
        if selectable_only and not ref.selectable:
            continue
        if exclude and is_excluded(ref.display_name, exclude):
            continue
        if not in_scope(ref, prefix):
            continue
        result.append(ref)

    if prefix and not result:
        raise MailboxNotFoundError(prefix)
    return result


def list_mailboxes(
    session,
    exclude: Iterable[str] = DEFAULT_EXCLUDED_PATTERNS,
    prefix: Optional[str] = None,
    selectable_only: bool = True,
) -> list[MailboxRef]:
    """List all remote folders through the session and filter them."""
    return filter_mailboxes(session.list_mailboxes(), exclude=exclude, prefix=prefix, selectable_only=selectable_only)
