"""
Tests for mailbox_listing.py and deletion_order.py

Tests cover:
- Trash/spam/junk exclusion in several locales, including modified UTF-7 names
- Hierarchical folder scope filtering
- Empty scope as an error
- Server order preservation
- Deepest-first deletion ordering
"""

import os
import sys
from unittest.mock import MagicMock

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

import mailbox_listing
from deletion_order import order_for_deletion
from mail_models import MailboxRef


def refs(*names, delimiter="/"):
    return [MailboxRef(n, delimiter) for n in names]


class TestExclusion:
    """Tests for default exclusion patterns."""

    @pytest.mark.parametrize(
        "name",
        ["Trash", "INBOX/Trash", "Corbeille", "Papierkorb", "Deleted Items", "Junk E-mail", "Spam", "[Gmail]/Bin"],
    )
    def test_excluded(self, name):
        assert mailbox_listing.is_excluded(name, mailbox_listing.DEFAULT_EXCLUDED_PATTERNS)

    @pytest.mark.parametrize("name", ["INBOX", "Sent", "Archive/2024", "Binders"])
    def test_kept(self, name):
        assert not mailbox_listing.is_excluded(name, mailbox_listing.DEFAULT_EXCLUDED_PATTERNS)

    def test_extra_patterns(self):
        result = mailbox_listing.filter_mailboxes(refs("INBOX", "Newsletters"), exclude=("newsletter",))
        assert [r.name for r in result] == ["INBOX"]

    def test_no_exclusion(self):
        result = mailbox_listing.filter_mailboxes(refs("Trash", "Spam"), exclude=())
        assert [r.name for r in result] == ["Trash", "Spam"]


class TestScope:
    """Tests for in_scope and prefix filtering."""

    def test_prefix_matches_self_and_descendants(self):
        mailboxes = refs("INBOX", "INBOX/Work", "INBOX/Work/2024", "INBOXES", "Archive")
        result = mailbox_listing.filter_mailboxes(mailboxes, exclude=(), prefix="INBOX")
        assert [r.name for r in result] == ["INBOX", "INBOX/Work", "INBOX/Work/2024"]

    def test_prefix_with_trailing_delimiter(self):
        mailboxes = refs("INBOX", "INBOX/Work", "INBOX/Home")
        result = mailbox_listing.filter_mailboxes(mailboxes, exclude=(), prefix="INBOX/")
        assert [r.name for r in result] == ["INBOX/Work", "INBOX/Home"]

    def test_dot_delimiter(self):
        mailboxes = refs("INBOX", "INBOX.Work", "INBOX/Work", delimiter=".")
        result = mailbox_listing.filter_mailboxes(mailboxes, exclude=(), prefix="INBOX.Work")
        assert [r.name for r in result] == ["INBOX.Work"]

    def test_no_delimiter_matches_exact_only(self):
        mailboxes = [MailboxRef("Flat", None), MailboxRef("Flat2", None)]
        assert [r.name for r in mailbox_listing.filter_mailboxes(mailboxes, exclude=(), prefix="Flat")] == ["Flat"]

    def test_prefix_matching_nothing_raises(self):
        with pytest.raises(mailbox_listing.MailboxNotFoundError) as exc:
            mailbox_listing.filter_mailboxes(refs("INBOX"), prefix="Missing")
        assert exc.value.prefix == "Missing"

    def test_no_prefix_may_be_empty(self):
        assert mailbox_listing.filter_mailboxes([], prefix=None) == []

    def test_excluded_scope_raises(self):
        """A scope that only contains excluded folders is still an empty result."""
        with pytest.raises(mailbox_listing.MailboxNotFoundError):
            mailbox_listing.filter_mailboxes(refs("Trash", "Trash/Old"), prefix="Trash")


class TestEncodedNames:
    """Folder names sent in modified UTF-7."""

    def test_accented_trash_and_junk_excluded(self):
        mailboxes = refs("INBOX", "Courrier ind&AOk-sirable", "&AMk-l&AOk-ments supprim&AOk-s", "Re&AOc-us")
        result = mailbox_listing.filter_mailboxes(mailboxes)
        assert [r.name for r in result] == ["INBOX", "Re&AOc-us"]

    def test_scope_by_decoded_name(self):
        mailboxes = refs("Archives", "Archives/&AMk-t&AOk-", "Archives/&AMk-t&AOk-/Photos", "Archives/Hiver")
        result = mailbox_listing.filter_mailboxes(mailboxes, exclude=(), prefix="Archives/Été")
        assert [r.name for r in result] == ["Archives/&AMk-t&AOk-", "Archives/&AMk-t&AOk-/Photos"]

    def test_scope_by_wire_name(self):
        mailboxes = refs("Archives/&AMk-t&AOk-", "Archives/Hiver")
        result = mailbox_listing.filter_mailboxes(mailboxes, exclude=(), prefix="Archives/&AMk-t&AOk-")
        assert [r.name for r in result] == ["Archives/&AMk-t&AOk-"]


class TestSelectable:
    def test_noselect_dropped_by_default(self):
        mailboxes = [MailboxRef("Parent", "/", ("\\Noselect",)), MailboxRef("Parent/Child")]
        assert [r.name for r in mailbox_listing.filter_mailboxes(mailboxes)] == ["Parent/Child"]

    def test_noselect_kept_for_deletion(self):
        mailboxes = [MailboxRef("Parent", "/", ("\\Noselect",)), MailboxRef("Parent/Child")]
        result = mailbox_listing.filter_mailboxes(mailboxes, exclude=(), prefix="Parent", selectable_only=False)
        assert [r.name for r in result] == ["Parent", "Parent/Child"]


class TestListMailboxes:
    def test_server_order_preserved(self):
        session = MagicMock()
        session.list_mailboxes.return_value = refs("Zeta", "INBOX", "Alpha", "Spam")
        result = mailbox_listing.list_mailboxes(session)
        assert [r.name for r in result] == ["Zeta", "INBOX", "Alpha"]


class TestOrderForDeletion:
    """Tests for order_for_deletion function."""

    def test_descendants_first(self):
        ordered = order_for_deletion(refs("INBOX", "INBOX/Work", "INBOX/Work/2024"))
        assert [r.name for r in ordered] == ["INBOX/Work/2024", "INBOX/Work", "INBOX"]

    def test_stable_for_equal_depth(self):
        ordered = order_for_deletion(refs("A", "A/x", "A/y", "A/x/1", "A/z"))
        assert [r.name for r in ordered] == ["A/x/1", "A/x", "A/y", "A/z", "A"]

    def test_every_descendant_precedes_ancestor(self):
        mailboxes = refs("P", "P/a", "P/a/b", "P/c", "P/a/b/d", "P/c/e")
        ordered = [r.name for r in order_for_deletion(mailboxes)]
        for name in ordered:
            for other in ordered:
                if other.startswith(name + "/"):
                    assert ordered.index(other) < ordered.index(name)

    def test_uses_server_delimiter(self):
        ordered = order_for_deletion(refs("Root", "Root.Sub", delimiter="."))
        assert [r.name for r in ordered] == ["Root.Sub", "Root"]

    def test_input_not_modified(self):
        mailboxes = refs("A", "A/B")
        order_for_deletion(mailboxes)
        assert [r.name for r in mailboxes] == ["A", "A/B"]
