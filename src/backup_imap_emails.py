"""
IMAP Email Backup Script

Backs up emails from an IMAP account to a local directory.
Stores each email as a separate .eml file (RFC 5322 format) which is compatible with
most email clients (Thunderbird, Apple Mail, Outlook, etc.).

Features:
- Folder Replication: Recreates the IMAP folder hierarchy locally, one directory per level.
- Path Sanitization: Characters that aren't allowed in file names are replaced with "_".
- Batched Streaming: Messages are fetched in windows of --batch messages.
- Session Recovery: A dropped connection is replaced before the next folder.

Configuration:
  IMAP_HOST, IMAP_USERNAME, IMAP_PASSWORD: Account credentials.
  BACKUP_LOCAL_PATH (or BACKUP_DIR): Destination local directory (default: email_backup).

Usage:
  python3 backup_imap_emails.py --dest-path "./my_backup"
  python3 backup_imap_emails.py --dest-path "./my_backup" "Projects"
"""

import argparse
import os
import sys

import imap_backup
import imap_cli
import imap_common
from imap_session import SessionError, SessionInvalidError

DEFAULT_BACKUP_DIR = "email_backup"


def backup_all(holder, mailboxes, writer, batch_size):
    """Backs up mailboxes in order; returns the names of the folders that failed."""
    failed = []
    for mailbox in mailboxes:
        try:
            session = holder.acquire()
            imap_backup.backup_mailbox(session, mailbox, writer, batch_size)
        except SessionInvalidError as e:
            imap_common.safe_print(f"Connection lost in {mailbox.name}: {e}")
            holder.invalidate()
            failed.append(mailbox.name)
        except SessionError as e:
            imap_common.safe_print(f"Skipping {mailbox.name}: {e}")
            failed.append(mailbox.name)
    return failed


def build_parser():
    parser = argparse.ArgumentParser(description="Backup IMAP emails to local .eml files.")
    imap_cli.add_connection_args(parser)
    imap_cli.add_batch_arg(parser)

    env_path = os.getenv("BACKUP_LOCAL_PATH") or os.getenv("BACKUP_DIR") or DEFAULT_BACKUP_DIR
    parser.add_argument("--dest-path", default=env_path, help="Local destination path (or BACKUP_LOCAL_PATH)")
    parser.add_argument("folder", nargs="?", help="Only back up this folder and its subfolders")
    return parser


def main(argv=None):
    imap_cli.load_environment()
    args = build_parser().parse_args(argv)
    imap_cli.validate_args(args)

    local_path = os.path.expanduser(args.dest_path)
    if not os.path.exists(local_path):
        try:
            os.makedirs(local_path)
            print(f"Created backup directory: {local_path}")
        except OSError as e:
            print(f"Error creating backup directory: {e}")
            sys.exit(1)

    conf = imap_cli.build_conf(args)

    print("\n--- Configuration Summary ---")
    imap_cli.print_connection_summary(args, conf)
    print(f"Destination Path: {local_path}")
    print(f"Batch Size      : {args.batch}")
    if args.folder:
        print(f"Target Folder   : {args.folder}")
    print("-----------------------------\n")

    holder = None
    try:
        holder = imap_cli.connect_or_exit(conf)
        mailboxes = imap_cli.filter_or_exit(holder, imap_cli.list_or_exit(holder), exclude=(), prefix=args.folder)

        writer = imap_backup.BackupWriter(local_path)
        failed = backup_all(holder, mailboxes, writer, args.batch)

        print(f"\nSaved {writer.saved} messages from {len(mailboxes)} folders.")
        if failed:
            print(f"Folders with errors: {', '.join(failed)}")
        else:
            print("Backup completed successfully.")

    except KeyboardInterrupt:
        print("\nBackup interrupted by user.")
        sys.exit(0)
    finally:
        if holder is not None:
            holder.close()


if __name__ == "__main__":
    main()
