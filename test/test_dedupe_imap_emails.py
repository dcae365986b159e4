"""
Tests for dedupe_imap_emails.py

Tests cover:
- Automatic mode (keep first copy, move others to Trash)
- Interactive choice of the copy to keep, skipping and cancelling
- Dry run changes nothing
- Delete action
- Fingerprint strategies
- Folder scope and excluded folders
- Recovery from a dropped connection while acting
- Setup errors (no Trash folder, unknown folder, missing credentials)
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))

import dedupe_imap_emails
from conftest import make_message, make_multipart_message, mock_env, temp_env


def subjects(server, folder):
    return [m["content"].split(b"Subject: ")[1].split(b"\r\n")[0].decode() for m in server.folders[folder]]


def answers(monkeypatch, *values):
    """Feeds values to input(); running out behaves like end of input."""
    queue = list(values)

    def _input(prompt=""):
        if not queue:
            raise EOFError
        return queue.pop(0)

    monkeypatch.setattr("builtins.input", _input)


@pytest.fixture
def account(single_mock_server):
    """INBOX and Archive share one message; INBOX also holds a message twice."""

    def _create(**options):
        return single_mock_server(
            {
                "INBOX": [make_message("Report"), make_message("Unique"), make_message("Invoice")],
                "Archive": [make_message("Report")],
                "Work": [make_message("Invoice")],
                "Trash": [],
            },
            **options,
        )

    return _create


def run(port, *argv, **env):
    with temp_env(mock_env(port, **env)):
        dedupe_imap_emails.main(list(argv))


class TestAutomaticMode:
    def test_moves_extra_copies_to_trash(self, account, no_dotenv, capsys):
        server, port = account()
        run(port, "--auto")
        assert subjects(server, "INBOX") == ["Report", "Unique", "Invoice"]
        assert subjects(server, "Archive") == []
        assert subjects(server, "Work") == []
        assert sorted(subjects(server, "Trash")) == ["Invoice", "Report"]
        out = capsys.readouterr().out
        assert "Using trash folder: Trash" in out
        assert "Found 2 groups of duplicates (2 extra copies)" in out
        assert "Completed: 2, Failed: 0" in out

    def test_delete_action(self, account, no_dotenv):
        server, port = account()
        run(port, "--auto", "--action", "delete")
        assert subjects(server, "Archive") == []
        assert subjects(server, "Work") == []
        assert subjects(server, "Trash") == []

    def test_action_from_environment(self, account, no_dotenv):
        server, port = account()
        run(port, "--auto", DEDUP_ACTION="delete")
        assert subjects(server, "Trash") == []
        assert subjects(server, "Archive") == []

    def test_no_duplicates(self, single_mock_server, no_dotenv, capsys):
        server, port = single_mock_server({"INBOX": [make_message("A"), make_message("B")], "Trash": []})
        run(port, "--auto")
        assert "No duplicates found." in capsys.readouterr().out
        assert subjects(server, "INBOX") == ["A", "B"]

    def test_recovers_from_dropped_connection(self, account, no_dotenv, capsys):
        server, port = account()
        server.inject_failure("UID MOVE", "bye")
        run(port, "--auto")
        assert sorted(subjects(server, "Trash")) == ["Invoice", "Report"]
        out = capsys.readouterr().out
        assert "Reconnected successfully" in out
        assert "Completed: 2, Failed: 0" in out


class TestInteractiveMode:
    def test_keep_chosen_copy(self, account, no_dotenv, monkeypatch):
        server, port = account()
        answers(monkeypatch, "2", "1", "yes")
        run(port, "--action", "delete")
        assert subjects(server, "INBOX") == ["Unique", "Invoice"]
        assert subjects(server, "Archive") == ["Report"]
        assert subjects(server, "Work") == []

    def test_skip_group(self, account, no_dotenv, monkeypatch):
        server, port = account()
        answers(monkeypatch, "s", "2", "y")
        run(port, "--action", "delete")
        assert subjects(server, "Archive") == ["Report"]
        assert subjects(server, "INBOX") == ["Report", "Unique"]
        assert subjects(server, "Work") == ["Invoice"]

    def test_quit_goes_to_summary(self, account, no_dotenv, monkeypatch, capsys):
        server, port = account()
        answers(monkeypatch, "1", "q", "yes")
        run(port, "--action", "delete")
        assert subjects(server, "Archive") == []
        assert subjects(server, "Work") == ["Invoice"]
        assert "Messages to delete: 1" in capsys.readouterr().out

    def test_cancel(self, account, no_dotenv, monkeypatch, capsys):
        server, port = account()
        answers(monkeypatch, "1", "1", "no")
        run(port)
        assert "Operation cancelled" in capsys.readouterr().out
        assert subjects(server, "Archive") == ["Report"]
        assert subjects(server, "Trash") == []

    def test_everything_skipped(self, account, no_dotenv, monkeypatch, capsys):
        server, port = account()
        answers(monkeypatch, "s", "s")
        run(port)
        assert "No actions to perform" in capsys.readouterr().out

    def test_preview_shown(self, account, no_dotenv, monkeypatch, capsys):
        server, port = account()
        answers(monkeypatch, "q")
        run(port, "--preview")
        assert "Body text" in capsys.readouterr().out


class TestDryRun:
    def test_changes_nothing(self, account, no_dotenv, capsys):
        server, port = account()
        run(port, "--dry-run")
        assert subjects(server, "Archive") == ["Report"]
        assert subjects(server, "Work") == ["Invoice"]
        assert subjects(server, "Trash") == []
        out = capsys.readouterr().out
        assert "=== Dry Run Summary ===" in out
        assert "Would move to trash: [Archive] Report" in out
        assert "2 messages in 2 groups" in out


class TestStrategies:
    def test_canonical_ignores_mime_boundary(self, single_mock_server, no_dotenv):
        server, port = single_mock_server(
            {"INBOX": [make_multipart_message(boundary="one"), make_multipart_message(boundary="two")], "Trash": []}
        )
        run(port, "--auto")
        assert len(server.folders["INBOX"]) == 1
        assert len(server.folders["Trash"]) == 1

    def test_raw_compares_bytes(self, single_mock_server, no_dotenv, capsys):
        server, port = single_mock_server(
            {"INBOX": [make_multipart_message(boundary="one"), make_multipart_message(boundary="two")], "Trash": []}
        )
        run(port, "--auto", "--strategy", "raw")
        assert len(server.folders["INBOX"]) == 2
        assert "No duplicates found." in capsys.readouterr().out


class TestScope:
    def test_folder_scope(self, account, no_dotenv, capsys):
        server, port = account()
        run(port, "--auto", "INBOX")
        assert "No duplicates found." in capsys.readouterr().out
        assert subjects(server, "Archive") == ["Report"]

    def test_spam_not_scanned(self, single_mock_server, no_dotenv, capsys):
        server, port = single_mock_server({"INBOX": [make_message("A")], "Spam": [make_message("A")], "Trash": []})
        run(port, "--auto")
        assert "No duplicates found." in capsys.readouterr().out
        assert subjects(server, "Spam") == ["A"]

    def test_accented_junk_folder_not_scanned(self, single_mock_server, no_dotenv, capsys):
        server, port = single_mock_server(
            {"INBOX": [make_message("A")], "Courrier ind&AOk-sirable": [make_message("A")], "Trash": []}
        )
        run(port, "--auto")
        assert "No duplicates found." in capsys.readouterr().out
        assert subjects(server, "Courrier ind&AOk-sirable") == ["A"]

    def test_trash_not_scanned(self, single_mock_server, no_dotenv, capsys):
        server, port = single_mock_server({"INBOX": [make_message("A")], "Trash": [make_message("A")]})
        run(port, "--auto")
        assert "No duplicates found." in capsys.readouterr().out

    def test_extra_exclude(self, account, no_dotenv, capsys):
        server, port = account()
        run(port, "--auto", "--exclude", "archive")
        assert subjects(server, "Archive") == ["Report"]
        assert subjects(server, "Trash") == ["Invoice"]


class TestSetupErrors:
    def test_no_trash_folder(self, single_mock_server, no_dotenv, capsys):
        server, port = single_mock_server({"INBOX": [make_message("A"), make_message("A")]})
        with pytest.raises(SystemExit) as exc:
            run(port, "--auto")
        assert exc.value.code == 1
        assert "Could not find a Trash folder" in capsys.readouterr().out
        assert len(server.folders["INBOX"]) == 2

    def test_unknown_folder(self, account, no_dotenv):
        server, port = account()
        with pytest.raises(SystemExit) as exc:
            run(port, "--auto", "Nowhere")
        assert exc.value.code == 1

    def test_login_rejected(self, account, no_dotenv, capsys):
        server, port = account()
        server.reject_login = True
        with pytest.raises(SystemExit) as exc:
            run(port, "--auto")
        assert exc.value.code == 1
        assert "Failed to connect" in capsys.readouterr().out

    def test_missing_credentials(self, no_dotenv, capsys):
        with temp_env({}):
            with pytest.raises(SystemExit) as exc:
                dedupe_imap_emails.main(["--auto"])
        assert exc.value.code == 1
        assert "Missing credentials" in capsys.readouterr().out

    def test_invalid_batch(self, account, no_dotenv):
        server, port = account()
        with pytest.raises(SystemExit) as exc:
            run(port, "--auto", "--batch", "0")
        assert exc.value.code == 1
