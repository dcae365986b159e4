"""
Action Execution

Carries out planned message actions and folder deletions one at a time. Every
item is a self-contained unit (select, verify, mutate) that is restarted from
the top on a fresh session when the current one goes stale; a trash copy made
by an earlier attempt is not repeated. Items that fail for good are reported
and skipped; the run always continues.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Optional

import imap_common
import imap_retry
from imap_session import SessionError
from mail_models import ActionKind, MailboxRef, PlannedAction

OUTCOME_DONE = "done"
OUTCOME_ALREADY_GONE = "already gone"


class ActionError(Exception):
    """An action that can't be carried out on the current server state."""


class UidValidityChangedError(ActionError):
    def __init__(self, mailbox, expected, actual):
        self.mailbox = mailbox
        self.expected = expected
        self.actual = actual
        super().__init__(f"UIDVALIDITY of {mailbox} changed since the scan ({expected} -> {actual})")


@dataclass
class ActionResult:
    label: str
    outcome: str


@dataclass
class ExecutionReport:
    completed: list[ActionResult] = field(default_factory=list)
    abandoned: list[ActionResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.abandoned)

    @property
    def ok(self) -> bool:
        return not self.abandoned


class ActionExecutor:
    def __init__(
        self,
        holder,
        trash_folder: Optional[str] = None,
        max_retries=imap_retry.DEFAULT_MAX_RETRIES,
        retry_wait=imap_retry.DEFAULT_RETRY_WAIT,
        sleep_fn=time.sleep,
        log_fn=imap_common.safe_print,
    ):
        self.holder = holder
        self.trash_folder = trash_folder
        self.max_retries = max_retries
        self.retry_wait = retry_wait
        self._sleep = sleep_fn
        self._log = log_fn

    def _run(self, operation, label):
        return imap_retry.run_with_reconnect(
            self.holder,
            operation,
            label=label,
            max_retries=self.max_retries,
            wait=self.retry_wait,
            log_fn=self._log,
            sleep_fn=self._sleep,
        )

    def _attempt(self, report, operation, label):
        try:
            outcome = self._run(operation, label)
        except (ActionError, SessionError, imap_retry.RetryExhaustedError) as e:
            self._log(f"ERROR {label}: {e}")
            report.abandoned.append(ActionResult(label, str(e)))
            return False
        report.completed.append(ActionResult(label, outcome))
        return True

    def apply_action(self, session, action: PlannedAction, progress=None) -> str:
        """
        Select, re-validate and mutate one message. Returns the outcome.

        `progress` carries state across restarts of the same action; a COPY that
        already reached the trash folder is not repeated.
        """
        if progress is None:
            progress = {}
        record = action.record
        mailbox = record.mailbox.name
        if record.uid is None:
            raise ActionError(f"{record.label}: message has no UID")
        if action.kind is ActionKind.MOVE_TO_TRASH and not self.trash_folder:
            raise ActionError("no trash folder configured")

        session.select(mailbox, readonly=False)
        if (
            record.uid_validity is not None
            and session.uid_validity is not None
            and session.uid_validity != record.uid_validity
        ):
            raise UidValidityChangedError(mailbox, record.uid_validity, session.uid_validity)

        if not session.has_uid(record.uid):
            return OUTCOME_ALREADY_GONE

        if action.kind is ActionKind.MOVE_TO_TRASH:
            if session.supports_move:
                session.move(record.uid, self.trash_folder)
                return OUTCOME_DONE
            if not progress.get("copied"):
                session.copy(record.uid, self.trash_folder)
                progress["copied"] = True

        session.store_deleted(str(record.uid), by_uid=True)
        session.expunge_uid(record.uid)
        return OUTCOME_DONE

    def execute(self, actions) -> ExecutionReport:
        """Run planned actions in order with per-item progress."""
        actions = list(actions)
        report = ExecutionReport()
        total = len(actions)
        for i, action in enumerate(actions, 1):
            label = action.record.label
            self._log(f"[{i}/{total}] {action.kind.verb}: {label}")
            progress = {}
            self._attempt(report, lambda session, a=action, p=progress: self.apply_action(session, a, p), label)
        return report

    def delete_mailbox(self, session, ref: MailboxRef) -> str:
        """Empty one folder and delete it. \\Noselect containers are deleted directly."""
        if ref.selectable:
            count = session.select(ref.name, readonly=False)
            if count > 0:
                self._log(f"Marking {count} messages for deletion in {ref.name}")
                session.store_deleted(f"1:{count}", by_uid=False)
                session.expunge()
            session.close_mailbox()
        session.delete_mailbox(ref.name)
        return OUTCOME_DONE

    def delete_mailboxes(self, refs) -> ExecutionReport:
        """Delete folders in the given order (callers pass deepest-first)."""
        refs = list(refs)
        report = ExecutionReport()
        total = len(refs)
        for i, ref in enumerate(refs, 1):
            self._log(f"[{i}/{total}] Deleting mailbox: {ref.name}")
            if self._attempt(report, lambda session, r=ref: self.delete_mailbox(session, r), ref.name):
                self._log(f"Deleted {ref.name}")
        return report


def print_report(report: ExecutionReport, output_fn=print):
    output_fn(f"\nCompleted: {len(report.completed)}, Failed: {len(report.abandoned)}")
    for result in report.abandoned:
        output_fn(f"  - {result.label}: {result.outcome}")
