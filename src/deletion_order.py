"""
Deletion Ordering

Many servers refuse to delete a folder that still has children (or orphan them),
so folders are removed deepest-first.
"""

from __future__ import annotations

from typing import Iterable

from mail_models import MailboxRef


def order_for_deletion(mailboxes: Iterable[MailboxRef]) -> list[MailboxRef]:
    """Sort by hierarchy depth, deepest first; equal depths keep their input order."""
    return sorted(mailboxes, key=lambda ref: ref.depth, reverse=True)
