"""
Shared pytest fixtures and utilities for IMAP dedupe tools tests.
"""

import base64
import os
import sys
import time
from contextlib import contextmanager

import pytest

# Ensure src/tools are in path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../src")))
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), "../tools")))

from mock_imap_server import start_server_thread

DEFAULT_DATE = "Mon, 01 Jan 2024 10:00:00 +0000"


def make_message(subject="Hello", body="Body text", date=DEFAULT_DATE, sender="a@example.com", extra_headers=""):
    """Builds a simple single-part RFC 5322 message."""
    return (
        f"From: {sender}\r\n"
        f"To: b@example.com\r\n"
        f"Subject: {subject}\r\n"
        f"Date: {date}\r\n"
        f"{extra_headers}"
        f"Content-Type: text/plain; charset=utf-8\r\n"
        f"\r\n"
        f"{body}\r\n"
    ).encode("utf-8")


def make_multipart_message(
    subject="Report",
    text="See attached",
    attachment=b"%PDF-1.4 fake",
    date=DEFAULT_DATE,
    boundary="BOUNDARY-1",
    extra_headers="",
):
    """Builds a multipart/mixed message with a text part and a base64 PDF attachment."""
    encoded = base64.b64encode(attachment).decode("ascii")
    return (
        f"From: a@example.com\r\n"
        f"Subject: {subject}\r\n"
        f"Date: {date}\r\n"
        f"{extra_headers}"
        f"MIME-Version: 1.0\r\n"
        f'Content-Type: multipart/mixed; boundary="{boundary}"\r\n'
        f"\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: text/plain; charset=utf-8\r\n"
        f"\r\n"
        f"{text}\r\n"
        f"--{boundary}\r\n"
        f"Content-Type: application/pdf\r\n"
        f"Content-Transfer-Encoding: base64\r\n"
        f'Content-Disposition: attachment; filename="report.pdf"\r\n'
        f"\r\n"
        f"{encoded}\r\n"
        f"--{boundary}--\r\n"
    ).encode("utf-8")


def make_conf(port, user="user", password="pass"):
    """Connection config pointing at a local plaintext mock server."""
    return {
        "host": f"imap://localhost:{port}",
        "port": None,
        "user": user,
        "password": password,
        "oauth2_token": None,
        "oauth2": None,
    }


def mock_env(port, **extra):
    """Environment for running a CLI against a mock server."""
    env = {
        "IMAP_HOST": f"imap://localhost:{port}",
        "IMAP_USERNAME": "user",
        "IMAP_PASSWORD": "pass",
        "RETRY_WAIT": "0",
    }
    env.update(extra)
    return env


@pytest.fixture
def single_mock_server():
    """
    Creates a single mock IMAP server for testing scripts that only need one server.
    Keyword options are passed through to the server (folder_flags, support_move, ...).
    """
    servers = []

    def _create(initial_data=None, **options):
        server, port = start_server_thread(0, initial_data, **options)
        time.sleep(0.1)
        servers.append(server)
        return server, port

    yield _create

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def no_dotenv(monkeypatch):
    """Keeps a developer's .env file out of CLI tests."""
    import imap_cli

    monkeypatch.setattr(imap_cli, "load_dotenv", lambda *a, **k: False)


@contextmanager
def temp_env(env):
    original = os.environ.copy()
    os.environ.clear()
    os.environ.update(env)
    try:
        yield
    finally:
        os.environ.clear()
        os.environ.update(original)


@contextmanager
def temp_argv(args):
    original = sys.argv[:]
    sys.argv = list(args)
    try:
        yield
    finally:
        sys.argv = original


@pytest.fixture(autouse=True)
def clean_sys_argv():
    """Ensure sys.argv is clean for all tests."""
    original = sys.argv[:]
    sys.argv = ["test_script.py"]
    yield
    sys.argv = original


__all__ = [
    "single_mock_server",
    "make_message",
    "make_multipart_message",
    "make_conf",
    "mock_env",
    "temp_env",
    "temp_argv",
]
