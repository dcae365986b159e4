"""
IMAP Backup Core

Writes each message of a mailbox to its own .eml file under a local directory
tree that mirrors the folder hierarchy:

    <root>/<segment>/<segment>/<timestamp_ns>_<sequence>.eml

Each hierarchy segment is sanitized on its own, so a "/" inside a folder name
never creates an extra directory level.
"""

import os
import threading
import time

import imap_common
import message_scanner
from mail_models import decode_mailbox_name

safe_print = imap_common.safe_print


class BackupWriter:
    def __init__(self, root):
        self.root = os.path.expanduser(root)
        self._lock = threading.Lock()
        self.saved = 0

    def mailbox_path(self, mailbox):
        segments = [imap_common.sanitize_path_segment(decode_mailbox_name(s)) for s in mailbox.segments]
        return os.path.join(self.root, *segments)

    def save(self, mailbox, sequence, content):
        """Stores one message and returns the file path."""
        folder = self.mailbox_path(mailbox)
        with self._lock:
            os.makedirs(folder, exist_ok=True)
            path = os.path.join(folder, f"{time.time_ns()}_{sequence}.eml")
            with open(path, "wb") as f:
                f.write(content)
            self.saved += 1
        return path


def backup_mailbox(session, mailbox, writer, batch_size=message_scanner.DEFAULT_BATCH_SIZE):
    """
    Streams one mailbox to disk. Returns the number of messages saved.
    Messages without content are reported and skipped; session errors propagate.
    """
    safe_print(f"--- Processing Folder: {mailbox.name} ---")
    saved = 0
    for message in message_scanner.iter_mailbox_messages(session, mailbox, batch_size):
        if not message.content:
            safe_print(f"[{mailbox.name}] EMPTY Content | #{message.sequence}")
            continue
        try:
            path = writer.save(mailbox, message.sequence, message.content)
        except OSError as e:
            safe_print(f"[{mailbox.name}] ERROR Write | #{message.sequence}: {e}")
            continue
        saved += 1
        safe_print(f"[{mailbox.name}] SAVED  | {os.path.basename(path)}")

    if saved == 0:
        safe_print(f"Folder {mailbox.name} is empty.")
    return saved
