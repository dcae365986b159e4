"""
IMAP Duplicate Email Cleanup Script

Finds messages that exist more than once anywhere in an IMAP account and removes
the extra copies, keeping exactly one per group.

Features:
- Scans every folder (trash, spam and junk folders are skipped) or one folder subtree.
- Content fingerprints: "canonical" ignores MIME framing, "raw" compares exact bytes.
- Interactive: pick the copy to keep per group, skip a group, or jump to the summary.
- Automatic mode (--auto) keeps the first copy found without asking.
- Dry run (--dry-run) shows what would happen and changes nothing.
- Moves extra copies to Trash (default) or deletes them outright.
- Reconnects and retries when the server drops the session mid-run.

Configuration (Environment Variables, a .env file is loaded if present):
    IMAP_HOST             : IMAP Host (e.g., imap.example.com, imaps://host:993, imap://host:143)
    IMAP_PORT             : Optional port
    IMAP_USERNAME         : Username/Email (IMAP_USER also accepted)
    IMAP_PASSWORD         : Password (or App Password)

    OAuth2 (Optional - instead of password):
    OAUTH2_CLIENT_ID      : OAuth2 Client ID
    OAUTH2_CLIENT_SECRET  : OAuth2 Client Secret (required for Google)

  Options:
    DEDUP_ACTION          : "trash" (default) or "delete".
    FINGERPRINT_STRATEGY  : "canonical" (default) or "raw".
    BATCH_SIZE            : Messages fetched per request (default: 100).
    MAX_RETRIES           : Reconnect attempts per operation (default: 3).
    RETRY_WAIT            : Seconds between reconnect attempts (default: 2).

Usage Example:
    # Review every duplicate group interactively
    python3 dedupe_imap_emails.py

    # Only look at one folder subtree and show what would be done
    python3 dedupe_imap_emails.py --dry-run "Archive"

    # Unattended: keep the first copy, delete the others
    python3 dedupe_imap_emails.py --auto --action delete
"""

import argparse
import os
import sys

import fingerprint
import imap_cli
import imap_common
import mailbox_listing
import message_scanner
import resolution
from action_executor import ActionExecutor, print_report
from duplicate_groups import count_redundant, find_duplicate_groups
from mail_models import ActionKind


def select_decisions(args):
    if args.dry_run:
        return resolution.DryRunDecisions(show_preview=args.preview)
    if args.auto:
        return resolution.AutomaticDecisions()
    return resolution.ManualDecisions(show_preview=args.preview)


def build_parser():
    parser = argparse.ArgumentParser(description="Find and remove duplicate emails across IMAP folders.")
    imap_cli.add_connection_args(parser)
    imap_cli.add_batch_arg(parser)
    imap_cli.add_retry_args(parser)

    parser.add_argument(
        "--action",
        choices=[k.value for k in ActionKind],
        default=(os.getenv("DEDUP_ACTION") or ActionKind.MOVE_TO_TRASH.value).lower(),
        help="What to do with extra copies: move to trash or delete (or DEDUP_ACTION)",
    )
    parser.add_argument(
        "--strategy",
        choices=list(fingerprint.STRATEGIES),
        default=(os.getenv("FINGERPRINT_STRATEGY") or fingerprint.STRATEGY_CANONICAL).lower(),
        help="How messages are compared (or FINGERPRINT_STRATEGY)",
    )
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done without making any changes")
    parser.add_argument("--auto", action="store_true", help="Keep the first copy of every group without asking")
    parser.add_argument(
        "--exclude",
        action="append",
        default=[],
        metavar="PATTERN",
        help="Additional folder name pattern to skip (repeatable)",
    )
    parser.add_argument("--preview", action="store_true", help="Show a short text excerpt of each copy")
    parser.add_argument("folder", nargs="?", help="Only scan this folder and its subfolders")
    return parser


def main(argv=None):
    imap_cli.load_environment()
    args = build_parser().parse_args(argv)
    imap_cli.validate_args(args)

    try:
        kind = ActionKind(args.action)
        fingerprinter = fingerprint.get_fingerprinter(args.strategy)
    except ValueError as e:
        print(f"Error: {e}")
        sys.exit(1)

    conf = imap_cli.build_conf(args)

    print("\n--- Configuration Summary ---")
    imap_cli.print_connection_summary(args, conf)
    print(f"Action          : {kind.verb}")
    print(f"Fingerprint     : {args.strategy}")
    print(f"Batch Size      : {args.batch}")
    print(f"Retries         : {args.retries} (wait {args.retry_wait:g}s)")
    if args.folder:
        print(f"Target Folder   : {args.folder}")
    if args.exclude:
        print(f"Extra Excludes  : {', '.join(args.exclude)}")
    if args.dry_run:
        print("Mode            : Dry run (no changes will be made)")
    elif args.auto:
        print("Mode            : Automatic (keep first copy)")
    print("-----------------------------\n")

    holder = None
    try:
        holder = imap_cli.connect_or_exit(conf)
        all_mailboxes = imap_cli.list_or_exit(holder)

        trash_folder = imap_common.detect_trash_folder(all_mailboxes)
        if kind is ActionKind.MOVE_TO_TRASH and not trash_folder:
            print("Error: Could not find a Trash folder. Use --action delete to delete duplicates instead.")
            sys.exit(1)
        if trash_folder:
            print(f"Using trash folder: {trash_folder}")

        candidates = [ref for ref in all_mailboxes if ref.name != trash_folder]
        mailboxes = imap_cli.filter_or_exit(
            holder,
            candidates,
            exclude=mailbox_listing.DEFAULT_EXCLUDED_PATTERNS + tuple(args.exclude),
            prefix=args.folder,
        )
        print(f"Found {len(mailboxes)} folders to scan.\n")

        records = message_scanner.scan_mailboxes(
            holder,
            mailboxes,
            fingerprinter,
            batch_size=args.batch,
            max_retries=args.retries,
            retry_wait=args.retry_wait,
        )
        groups = find_duplicate_groups(records)
        print(f"\nScanned {len(records)} messages.")
        print(f"Found {len(groups)} groups of duplicates ({count_redundant(groups)} extra copies)")

        if not groups:
            print("\nNo duplicates found.")
            return

        plan = resolution.build_plan(groups, select_decisions(args), kind)
        if not plan.actions:
            print("\nNo actions to perform")
            return

        resolution.print_plan_summary(plan, dry_run=args.dry_run)
        if args.dry_run:
            return

        if not args.auto and not resolution.confirm():
            print("Operation cancelled")
            return

        print(f"\n{kind.verb} {len(plan.actions)} messages...")
        executor = ActionExecutor(holder, trash_folder, max_retries=args.retries, retry_wait=args.retry_wait)
        report = executor.execute(plan.actions)
        print_report(report)
        print("\nAll actions completed!")

    except KeyboardInterrupt:
        print("\nInterrupted. Exiting...")
        sys.exit(0)
    finally:
        if holder is not None:
            holder.close()


if __name__ == "__main__":
    main()
