"""
Duplicate Resolution

Turns duplicate groups into a list of planned actions. A decision provider is
asked about each group in turn; it keeps one member (by index), skips the group,
or ends the questioning early. The plan is finished before anything is changed
on the server.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import NamedTuple

import imap_common
from mail_models import ActionKind, FingerprintGroup, PlannedAction


class Keep(NamedTuple):
    index: int


SKIP = "skip"
JUMP_TO_SUMMARY = "summary"


def describe_group(group: FingerprintGroup, position: int, total: int, output_fn=print, show_preview=False):
    first = group.members[0]
    output_fn(f"\nProcessing group {position}/{total}")
    output_fn("\n=== Duplicate Group ===")
    output_fn(f"Subject: {first.subject}")
    output_fn(f"Date: {imap_common.format_date(first.date)}")
    output_fn(f"Found {len(group.members)} copies:\n")
    for i, record in enumerate(group.members, 1):
        output_fn(
            f"{i}) [{record.mailbox.name}] {record.subject} "
            f"({imap_common.format_size(record.size)}) - {imap_common.format_date(record.date)}"
        )
        if show_preview and record.preview:
            output_fn(f"     {record.preview}")


class ManualDecisions:
    """Asks on the terminal which copy to keep."""

    executes = True

    def __init__(self, input_fn=None, output_fn=print, show_preview=False):
        self._input = input_fn or input
        self._output = output_fn
        self._show_preview = show_preview

    def present_group(self, group: FingerprintGroup, position: int, total: int):
        describe_group(group, position, total, self._output, self._show_preview)
        count = len(group.members)
        try:
            answer = self._input(f"\nEnter number to keep (1-{count}), 's' to skip or 'q' to finish: ")
        except EOFError:
            self._output("")
            return JUMP_TO_SUMMARY

        answer = answer.strip().lower()
        if answer == "s":
            return SKIP
        if answer == "q":
            return JUMP_TO_SUMMARY
        try:
            choice = int(answer)
        except ValueError:
            choice = 0
        if not 1 <= choice <= count:
            self._output(f"Invalid choice: {answer!r}, skipping this group")
            return SKIP
        return Keep(choice - 1)


class AutomaticDecisions:
    """Keeps the first-discovered copy of every group without asking."""

    executes = True

    def present_group(self, group, position, total):
        return Keep(0)


class DryRunDecisions(AutomaticDecisions):
    """Shows every group and plans like AutomaticDecisions; the plan is only reported."""

    executes = False

    def __init__(self, output_fn=print, show_preview=False):
        self._output = output_fn
        self._show_preview = show_preview

    def present_group(self, group, position, total):
        describe_group(group, position, total, self._output, self._show_preview)
        return super().present_group(group, position, total)


@dataclass
class Plan:
    kind: ActionKind
    actions: list[PlannedAction] = field(default_factory=list)
    resolved: list[FingerprintGroup] = field(default_factory=list)
    skipped: list[FingerprintGroup] = field(default_factory=list)
    stopped_early: bool = False

    def __len__(self):
        return len(self.actions)


def build_plan(groups, provider, kind: ActionKind, output_fn=print) -> Plan:
    """Collects one decision per group and plans the non-kept members of each resolved group."""
    plan = Plan(kind=kind)
    total = len(groups)
    for position, group in enumerate(groups, 1):
        decision = provider.present_group(group, position, total)
        if decision == JUMP_TO_SUMMARY:
            plan.stopped_early = True
            break
        if decision == SKIP:
            output_fn("Skipping this group")
            plan.skipped.append(group)
            continue

        plan.resolved.append(group)
        for i, record in enumerate(group.members):
            if i != decision.index:
                plan.actions.append(PlannedAction(record, kind))

    return plan


def print_plan_summary(plan: Plan, dry_run=False, output_fn=print):
    verb = plan.kind.verb
    if dry_run:
        output_fn("\n=== Dry Run Summary ===")
        for action in plan.actions:
            record = action.record
            output_fn(f"Would {verb.lower()}: [{record.mailbox.name}] {record.subject} ({imap_common.format_date(record.date)})")
        output_fn(f"\n{len(plan.actions)} messages in {len(plan.resolved)} groups")
        return

    output_fn("\n=== Summary of Actions ===")
    output_fn(f"Messages to {verb.lower()}: {len(plan.actions)}\n")
    for i, action in enumerate(plan.actions, 1):
        record = action.record
        output_fn(f"{i}) {verb}: [{record.mailbox.name}] {record.subject} ({imap_common.format_date(record.date)})")


def confirm(prompt="\nDo you want to proceed with these actions? (yes/no): ", input_fn=None) -> bool:
    """Yes/no confirmation; end of input counts as no."""
    try:
        answer = (input_fn or input)(prompt)
    except EOFError:
        return False
    return answer.strip().lower() in ("yes", "y")
