"""
Shared command-line plumbing for the IMAP tools.

Connection and retry flags default to environment variables (a .env file in the
working directory is loaded first), so the same settings work from the shell,
from CI and from a checked-in .env.
"""

import os
import sys

from dotenv import load_dotenv

import imap_auth
import imap_retry
import mailbox_listing
import message_scanner
from imap_session import AuthError, ConnectError, SessionError, SessionHolder


def load_environment():
    load_dotenv()


def add_connection_args(parser):
    default_host = os.getenv("IMAP_HOST")
    default_user = os.getenv("IMAP_USERNAME") or os.getenv("IMAP_USER")
    default_pass = os.getenv("IMAP_PASSWORD")
    default_client_id = os.getenv("OAUTH2_CLIENT_ID")

    parser.add_argument("--host", default=default_host, help="IMAP Server (or IMAP_HOST)")
    parser.add_argument("--port", type=int, default=os.getenv("IMAP_PORT"), help="IMAP Port (or IMAP_PORT)")
    parser.add_argument("--user", default=default_user, help="Username (or IMAP_USERNAME / IMAP_USER)")
    parser.add_argument("--pass", dest="password", default=default_pass, help="Password (or IMAP_PASSWORD)")
    parser.add_argument(
        "--oauth2-client-id",
        default=default_client_id,
        dest="client_id",
        help="OAuth2 Client ID (or OAUTH2_CLIENT_ID)",
    )
    parser.add_argument(
        "--oauth2-client-secret",
        default=os.getenv("OAUTH2_CLIENT_SECRET"),
        dest="client_secret",
        help="OAuth2 Client Secret, required for Google (or OAUTH2_CLIENT_SECRET)",
    )


def add_batch_arg(parser):
    parser.add_argument(
        "--batch",
        type=int,
        default=int(os.getenv("BATCH_SIZE", message_scanner.DEFAULT_BATCH_SIZE)),
        help="Messages fetched per request (or BATCH_SIZE)",
    )


def add_retry_args(parser):
    parser.add_argument(
        "--retries",
        type=int,
        default=int(os.getenv("MAX_RETRIES", imap_retry.DEFAULT_MAX_RETRIES)),
        help="Reconnect attempts when the session drops (or MAX_RETRIES)",
    )
    parser.add_argument(
        "--retry-wait",
        type=float,
        default=float(os.getenv("RETRY_WAIT", imap_retry.DEFAULT_RETRY_WAIT)),
        help="Seconds to wait before reconnecting (or RETRY_WAIT)",
    )


def validate_args(args):
    """Exits with status 1 when required settings are missing or out of range."""
    missing = []
    if not args.host:
        missing.append("IMAP_HOST")
    if not args.user:
        missing.append("IMAP_USERNAME")
    if not args.password and not args.client_id:
        missing.append("IMAP_PASSWORD (or OAUTH2_CLIENT_ID)")

    if missing:
        print(f"Error: Missing credentials: {', '.join(missing)}")
        sys.exit(1)

    if getattr(args, "batch", 1) < 1:
        print("Error: --batch must be at least 1.")
        sys.exit(1)
    if getattr(args, "retries", 0) < 0 or getattr(args, "retry_wait", 0) < 0:
        print("Error: --retries and --retry-wait must not be negative.")
        sys.exit(1)


def build_conf(args):
    return imap_auth.build_imap_conf(
        args.host, args.user, args.password, args.client_id, args.client_secret, port=args.port
    )


def print_connection_summary(args, conf):
    print(f"Host            : {args.host}" + (f":{args.port}" if args.port else ""))
    print(f"User            : {args.user}")
    print(f"Auth Method     : {imap_auth.auth_description(conf)}")


def connect_or_exit(conf, connect_fn=None):
    """Opens the first session of the run. Connection and login failures exit with status 1."""
    holder = SessionHolder(conf) if connect_fn is None else SessionHolder(conf, connect_fn=connect_fn)
    try:
        holder.acquire()
    except (ConnectError, AuthError) as e:
        print(f"Error: Failed to connect to IMAP: {e}")
        sys.exit(1)
    return holder


def list_or_exit(holder):
    """Lists every mailbox on the server; any failure is a setup error."""
    try:
        return holder.acquire().list_mailboxes()
    except SessionError as e:
        print(f"Error listing mailboxes: {e}")
        holder.close()
        sys.exit(1)


def filter_or_exit(holder, mailboxes, **filters):
    """Applies mailbox_listing filters; a folder scope that matches nothing exits with status 1."""
    try:
        return mailbox_listing.filter_mailboxes(mailboxes, **filters)
    except mailbox_listing.MailboxNotFoundError as e:
        print(f"Error: {e}")
        holder.close()
        sys.exit(1)
