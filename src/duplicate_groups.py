"""
Duplicate Grouping

Buckets scanned messages by fingerprint. Only buckets holding more than one
message are reported, in the order their fingerprint was first seen.
"""

from __future__ import annotations

from typing import Iterable

from mail_models import FingerprintGroup, MessageRecord


def find_duplicate_groups(records: Iterable[MessageRecord]) -> list[FingerprintGroup]:
    buckets: dict[str, list[MessageRecord]] = {}
    for record in records:
        buckets.setdefault(record.fingerprint, []).append(record)

    return [FingerprintGroup(fingerprint, tuple(members)) for fingerprint, members in buckets.items() if len(members) > 1]


def count_redundant(groups: Iterable[FingerprintGroup]) -> int:
    """Number of messages that would go if one copy per group were kept."""
    return sum(len(group.members) - 1 for group in groups)
