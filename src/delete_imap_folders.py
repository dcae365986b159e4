"""
IMAP Folder Deletion Script

Deletes a folder together with all of its subfolders and messages. Subfolders are
always removed before their parents, and a dropped session is re-established and
the current folder retried from the start.

Configuration (Environment Variables, a .env file is loaded if present):
    IMAP_HOST, IMAP_PORT, IMAP_USERNAME (or IMAP_USER), IMAP_PASSWORD
    OAUTH2_CLIENT_ID, OAUTH2_CLIENT_SECRET : OAuth2 instead of a password
    MAX_RETRIES, RETRY_WAIT               : Session recovery (default: 3 retries, 2s apart)

The folder argument selects that folder and everything below it in the hierarchy:
"Work" matches "Work" and "Work/Projects" but not "Workshop".

Usage Example:
    # See what would be deleted, optionally with a per-message listing
    python3 delete_imap_folders.py --dry-run "Archive/2019"

    # Delete without the confirmation prompt
    python3 delete_imap_folders.py --auto "Archive/2019"
"""

import argparse
import sys
from typing import NamedTuple, Optional

import imap_cli
import imap_common
import imap_retry
import message_scanner
import resolution
from action_executor import ActionExecutor, print_report
from deletion_order import order_for_deletion
from imap_session import SessionError


class FolderSurvey(NamedTuple):
    mailbox: object
    count: Optional[int]
    messages: list


def survey_folder(session, mailbox, with_messages=False, batch_size=message_scanner.DEFAULT_BATCH_SIZE):
    """Counts (and optionally lists as (date, subject) pairs) the messages of one folder."""
    if not mailbox.selectable:
        return FolderSurvey(mailbox, 0, [])
    if not with_messages:
        return FolderSurvey(mailbox, session.select(mailbox.name, readonly=True), [])

    messages = []
    for message in message_scanner.iter_mailbox_messages(session, mailbox, batch_size, headers_only=True):
        subject, date = message_scanner.parse_summary_headers(message.content or b"")
        messages.append((date, subject))
    return FolderSurvey(mailbox, len(messages), messages)


def survey_folders(holder, mailboxes, args, with_messages=False):
    surveys = []
    for mailbox in mailboxes:
        try:
            surveys.append(
                imap_retry.run_with_reconnect(
                    holder,
                    lambda session, m=mailbox: survey_folder(session, m, with_messages, args.batch),
                    label=f"survey of {mailbox.name}",
                    max_retries=args.retries,
                    wait=args.retry_wait,
                )
            )
        except (SessionError, imap_retry.RetryExhaustedError) as e:
            print(f"Error selecting mailbox {mailbox.name}: {e}")
            surveys.append(FolderSurvey(mailbox, None, []))
    return surveys


def _count_label(count):
    return "? messages" if count is None else f"{count} messages"


def print_folders(surveys, base_folder):
    print("\n=== Folders to be deleted ===")
    print(f"Base folder: {base_folder}\n")
    total_messages = 0
    for survey in surveys:
        suffix = " (container)" if not survey.mailbox.selectable else ""
        print(f"- {survey.mailbox.name} ({_count_label(survey.count)}){suffix}")
        total_messages += survey.count or 0
    print(f"\nTotal: {len(surveys)} folders, {total_messages} messages")


def print_message_details(surveys):
    print("\n=== Detailed Messages List ===")
    for survey in surveys:
        print(f"\nFolder: {survey.mailbox.name} ({_count_label(survey.count)})")
        for i, (date, subject) in enumerate(survey.messages, 1):
            print(f"{i}) [{imap_common.format_date(date)}] {subject}")
        print("-" * 50)


def build_parser():
    parser = argparse.ArgumentParser(description="Delete an IMAP folder and all of its subfolders.")
    imap_cli.add_connection_args(parser)
    imap_cli.add_batch_arg(parser)
    imap_cli.add_retry_args(parser)
    parser.add_argument("--dry-run", action="store_true", help="Show what would be deleted without making any changes")
    parser.add_argument("--auto", action="store_true", help="Delete without asking for confirmation")
    parser.add_argument("--details", action="store_true", help="List every message of the folders to be deleted")
    parser.add_argument("folder", help="Folder to delete (subfolders included)")
    return parser


def main(argv=None):
    imap_cli.load_environment()
    args = build_parser().parse_args(argv)
    imap_cli.validate_args(args)

    conf = imap_cli.build_conf(args)

    print("\n--- Configuration Summary ---")
    imap_cli.print_connection_summary(args, conf)
    print(f"Target Folder   : {args.folder}")
    print(f"Retries         : {args.retries} (wait {args.retry_wait:g}s)")
    if args.dry_run:
        print("Mode            : Dry run (no changes will be made)")
    print("-----------------------------\n")

    holder = None
    try:
        holder = imap_cli.connect_or_exit(conf)
        mailboxes = imap_cli.filter_or_exit(
            holder,
            imap_cli.list_or_exit(holder),
            exclude=(),
            prefix=args.folder,
            selectable_only=False,
        )
        print(f"Found {len(mailboxes)} mailboxes to delete")

        surveys = survey_folders(holder, mailboxes, args)
        print_folders(surveys, args.folder)

        show_details = args.details
        if args.dry_run and not show_details and not args.auto:
            show_details = resolution.confirm(
                "\nWould you like to see the detailed list of all messages? (yes/no): "
            )
        if show_details:
            print_message_details(survey_folders(holder, mailboxes, args, with_messages=True))

        if args.dry_run:
            print("\nDry run - no changes made")
            return

        if not args.auto and not resolution.confirm("\nDo you want to proceed with deletion? (yes/no): "):
            print("Operation cancelled")
            return

        executor = ActionExecutor(holder, max_retries=args.retries, retry_wait=args.retry_wait)
        report = executor.delete_mailboxes(order_for_deletion(mailboxes))
        print_report(report)
        if report.ok:
            print("\nAll folders deleted successfully!")

    except KeyboardInterrupt:
        print("\nInterrupted. Exiting...")
        sys.exit(0)
    finally:
        if holder is not None:
            holder.close()


if __name__ == "__main__":
    main()
