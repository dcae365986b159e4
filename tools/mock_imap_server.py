import re
import socketserver
import threading

RESPONSE_SELECT_FIRST = "NO Select first"
RESPONSE_NOT_LOGGED_IN = "BAD Not logged in"
DELIMITER = "/"

# Commands that don't need an authenticated session
_NONAUTH_COMMANDS = {"CAPABILITY", "LOGIN", "LOGOUT", "NOOP", "AUTHENTICATE"}


def parse_sequence_set(text, max_value):
    """Expands an IMAP sequence set ("1:3,7,9:*") into a sorted list of numbers <= max_value."""
    result = set()
    if max_value < 1:
        return []
    for part in text.split(","):
        part = part.strip()
        if not part:
            continue
        if ":" in part:
            lo, hi = part.split(":", 1)
            lo = max_value if lo == "*" else int(lo)
            hi = max_value if hi == "*" else int(hi)
            if lo > hi:
                lo, hi = hi, lo
            result.update(range(lo, min(hi, max_value) + 1))
        else:
            value = max_value if part == "*" else int(part)
            if value <= max_value:
                result.add(value)
    return sorted(v for v in result if v >= 1)


def parse_mailbox_arg(text):
    """Returns (mailbox name, rest of the line); handles quoted names with escapes."""
    text = text.strip()
    if text.startswith('"'):
        m = re.match(r'"((?:[^"\\]|\\.)*)"\s*(.*)$', text, re.DOTALL)
        if m:
            return re.sub(r"\\(.)", r"\1", m.group(1)), m.group(2)
    name, _, rest = text.partition(" ")
    return name, rest


def extract_header_fields(content, fields):
    """Returns the requested header lines (folding kept) followed by the blank line."""
    head = re.split(rb"\r?\n\r?\n", content, maxsplit=1)[0]
    wanted = {f.upper() for f in fields}
    out = []
    keep = False
    for line in re.split(rb"\r?\n", head):
        if line[:1] in (b" ", b"\t"):
            if keep:
                out.append(line)
            continue
        name = line.split(b":", 1)[0].strip().decode("ascii", errors="ignore").upper()
        keep = name in wanted
        if keep:
            out.append(line)
    return b"\r\n".join(out) + (b"\r\n" if out else b"") + b"\r\n"


class MockIMAPHandler(socketserver.StreamRequestHandler):
    """
    A minimal IMAP4rev1 mock server handler for testing purposes.
    Supports folder hierarchies, sequence sets, MOVE, UIDPLUS and injected failures.
    """

    def handle(self):
        self.server.connections += 1
        self.selected_folder = None
        self.readonly = False
        self.authenticated = False
        self.wfile.write(b"* OK Mock IMAP Server Ready\r\n")

        while True:
            try:
                line = self.rfile.readline()
                if not line:
                    break
                line = line.decode("utf-8").rstrip("\r\n")
                if not line.strip():
                    continue

                parts = line.split(" ", 2)
                tag = parts[0]
                cmd = parts[1].upper() if len(parts) > 1 else ""
                args = parts[2] if len(parts) > 2 else ""

                full_cmd = cmd
                if cmd == "UID":
                    full_cmd = f"UID {args.split(' ', 1)[0].upper()}"

                if cmd not in _NONAUTH_COMMANDS and not self.authenticated:
                    self.send_response(tag, RESPONSE_NOT_LOGGED_IN)
                    continue

                failure = self.server.take_failure(full_cmd)
                if failure == "bye":
                    self.wfile.write(b"* BYE Connection dropped by server\r\n")
                    self.wfile.flush()
                    break
                if failure == "bad-session":
                    self.authenticated = False
                    self.selected_folder = None
                    self.send_response(tag, RESPONSE_NOT_LOGGED_IN)
                    continue
                if failure == "no-session":
                    self.send_response(tag, "NO Session invalidated - AccessTokenExpired")
                    continue
                if failure == "no":
                    self.send_response(tag, f"NO [UNAVAILABLE] {full_cmd} failed")
                    continue

                if cmd == "CAPABILITY":
                    caps = self.server.advertised(self.authenticated)
                    self.wfile.write(f"* CAPABILITY {' '.join(caps)}\r\n".encode())
                    self.send_response(tag, "OK CAPABILITY completed")

                elif cmd == "LOGIN":
                    if self.server.reject_login:
                        self.send_response(tag, "NO [AUTHENTICATIONFAILED] Invalid credentials")
                    else:
                        self.authenticated = True
                        self.server.logins += 1
                        self.send_response(tag, "OK LOGIN completed")

                elif cmd == "LOGOUT":
                    self.wfile.write(b"* BYE Logging out\r\n")
                    self.send_response(tag, "OK LOGOUT completed")
                    break

                elif cmd == "NOOP":
                    self.send_response(tag, "OK NOOP")

                elif cmd == "LIST":
                    for name in list(self.server.folders):
                        flags = " ".join(self.server.list_flags(name))
                        escaped = name.replace("\\", "\\\\").replace('"', '\\"')
                        self.wfile.write(f'* LIST ({flags}) "{DELIMITER}" "{escaped}"\r\n'.encode())
                    self.send_response(tag, "OK LIST completed")

                elif cmd in ("SELECT", "EXAMINE"):
                    folder, _ = parse_mailbox_arg(args)
                    self.selected_folder = None
                    if folder not in self.server.folders or not self.server.is_selectable(folder):
                        self.send_response(tag, "NO [NONEXISTENT] Folder not found")
                        continue
                    self.selected_folder = folder
                    self.readonly = cmd == "EXAMINE"
                    count = len(self.server.folders[folder])
                    self.wfile.write(f"* {count} EXISTS\r\n".encode())
                    self.wfile.write(b"* 0 RECENT\r\n")
                    self.wfile.write(b"* FLAGS (\\Seen \\Answered \\Flagged \\Deleted \\Draft)\r\n")
                    self.wfile.write(f"* OK [UIDVALIDITY {self.server.uid_validity.get(folder, 1)}] UIDs valid\r\n".encode())
                    mode = "READ-ONLY" if self.readonly else "READ-WRITE"
                    self.send_response(tag, f"OK [{mode}] {cmd} completed")

                elif cmd == "CREATE":
                    folder, _ = parse_mailbox_arg(args)
                    if folder in self.server.folders:
                        self.send_response(tag, "NO [ALREADYEXISTS] Folder exists")
                    else:
                        self.server.folders[folder] = []
                        self.send_response(tag, "OK CREATE completed")

                elif cmd == "DELETE":
                    folder, _ = parse_mailbox_arg(args)
                    if folder not in self.server.folders:
                        self.send_response(tag, "NO [NONEXISTENT] Folder not found")
                    elif self.server.refuse_delete_with_children and self.server.children(folder):
                        self.send_response(tag, "NO [INUSE] Folder has children")
                    else:
                        self.server.delete_folder(folder)
                        if self.selected_folder == folder:
                            self.selected_folder = None
                        self.send_response(tag, "OK DELETE completed")

                elif cmd == "CLOSE":
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    if not self.readonly:
                        self.server.expunge(self.selected_folder)
                    self.selected_folder = None
                    self.send_response(tag, "OK CLOSE completed")

                elif cmd == "EXPUNGE":
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    for seq in self.server.expunge(self.selected_folder):
                        self.wfile.write(f"* {seq} EXPUNGE\r\n".encode())
                    self.send_response(tag, "OK EXPUNGE completed")

                elif cmd in ("FETCH", "STORE"):
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    msg_set, _, rest = args.partition(" ")
                    msgs = self.server.folders[self.selected_folder]
                    targets = [(seq, msgs[seq - 1]) for seq in parse_sequence_set(msg_set, len(msgs))]
                    if cmd == "FETCH":
                        self.do_fetch(tag, targets, rest, failure)
                    else:
                        self.do_store(tag, targets, rest)

                elif cmd == "UID":
                    sub_cmd, _, sub_rest = args.partition(" ")
                    sub_cmd = sub_cmd.upper()
                    if not self.selected_folder:
                        self.send_response(tag, RESPONSE_SELECT_FIRST)
                        continue
                    uid_set, _, rest = sub_rest.partition(" ")
                    msgs = self.server.folders[self.selected_folder]
                    max_uid = max((m["uid"] for m in msgs), default=0)
                    wanted = set(parse_sequence_set(uid_set, max_uid))
                    targets = [(i, m) for i, m in enumerate(msgs, 1) if m["uid"] in wanted]

                    if sub_cmd == "FETCH":
                        self.do_fetch(tag, targets, rest, failure)
                    elif sub_cmd == "STORE":
                        self.do_store(tag, targets, rest)
                    elif sub_cmd in ("COPY", "MOVE"):
                        if sub_cmd == "MOVE" and "MOVE" not in self.server.advertised(True):
                            self.send_response(tag, "BAD Command not recognized")
                            continue
                        dest, _ = parse_mailbox_arg(rest)
                        if dest not in self.server.folders:
                            self.send_response(tag, "NO [TRYCREATE] Dest not found")
                            continue
                        for _, m in targets:
                            self.server.append(dest, m["content"], set(m["flags"]) - {"\\Deleted"})
                        if sub_cmd == "MOVE":
                            moved = {id(m) for _, m in targets}
                            for seq in reversed([s for s, m in targets]):
                                self.wfile.write(f"* {seq} EXPUNGE\r\n".encode())
                            self.server.folders[self.selected_folder] = [m for m in msgs if id(m) not in moved]
                        self.send_response(tag, f"OK {sub_cmd} completed")
                    elif sub_cmd == "EXPUNGE":
                        if "UIDPLUS" not in self.server.advertised(True):
                            self.send_response(tag, "BAD Command not recognized")
                            continue
                        for seq in self.server.expunge(self.selected_folder, {m["uid"] for _, m in targets}):
                            self.wfile.write(f"* {seq} EXPUNGE\r\n".encode())
                        self.send_response(tag, "OK UID EXPUNGE completed")
                    else:
                        self.send_response(tag, "BAD Command not recognized")

                else:
                    self.send_response(tag, "BAD Command not recognized")

                self.wfile.flush()

            except Exception:
                break

    def do_fetch(self, tag, targets, opts, failure=None):
        opts = opts.upper()
        if failure == "no-after-data":
            targets = targets[:1]

        for seq, m in targets:
            content = m["content"]
            items = [f"UID {m['uid']}"]
            if "RFC822.SIZE" in opts:
                items.append(f"RFC822.SIZE {len(content)}")
            if "FLAGS" in opts:
                items.append(f"FLAGS ({' '.join(sorted(m['flags']))})")

            literal = None
            fields = re.search(r"HEADER\.FIELDS \(([^)]*)\)", opts)
            if fields:
                literal = extract_header_fields(content, fields.group(1).split())
                items.append(f"BODY[HEADER.FIELDS ({fields.group(1)})] {{{len(literal)}}}")
            elif "BODY.PEEK[]" in opts or "BODY[]" in opts or re.search(r"RFC822(?![.\w])", opts):
                literal = content
                items.append(f"BODY[] {{{len(literal)}}}")

            if literal is None:
                self.wfile.write(f"* {seq} FETCH ({' '.join(items)})\r\n".encode())
            else:
                self.wfile.write(f"* {seq} FETCH ({' '.join(items)}\r\n".encode())
                self.wfile.write(literal)
                self.wfile.write(b")\r\n")

        if failure == "no-after-data":
            self.send_response(tag, "NO [SERVERBUG] FETCH failed part way")
        else:
            self.send_response(tag, "OK FETCH completed")

    def do_store(self, tag, targets, rest):
        action, _, flags_str = rest.partition(" ")
        action = action.upper()
        flags = {f for f in flags_str.strip().strip("()").split() if f}
        for seq, m in targets:
            if action.startswith("+FLAGS"):
                m["flags"].update(flags)
            elif action.startswith("-FLAGS"):
                m["flags"].difference_update(flags)
            elif action.startswith("FLAGS"):
                m["flags"] = set(flags)
            self.wfile.write(f"* {seq} FETCH (UID {m['uid']} FLAGS ({' '.join(sorted(m['flags']))}))\r\n".encode())
        self.send_response(tag, "OK STORE completed")

    def send_response(self, tag, message):
        self.wfile.write(f"{tag} {message}\r\n".encode())


class MockIMAPServer(socketserver.ThreadingMixIn, socketserver.TCPServer):
    allow_reuse_address = True
    daemon_threads = True

    def __init__(
        self,
        server_address,
        request_handler_class,
        initial_folders=None,
        folder_flags=None,
        support_move=True,
        support_uidplus=False,
        post_login_capabilities=(),
        refuse_delete_with_children=False,
    ):
        super().__init__(server_address, request_handler_class)
        self.lock = threading.Lock()
        self.folders = {}
        self.folder_flags = dict(folder_flags or {})
        self.uid_validity = {}
        self.next_uid = {}
        self.capabilities = ["IMAP4rev1", "AUTH=PLAIN"] + (["MOVE"] if support_move else [])
        if support_uidplus:
            self.capabilities.append("UIDPLUS")
        # Only listed once the client has logged in
        self.post_login_capabilities = list(post_login_capabilities)
        self.refuse_delete_with_children = refuse_delete_with_children
        self.reject_login = False
        self.connections = 0
        self.logins = 0
        self._failures = []

        for fname, contents in (initial_folders or {"INBOX": []}).items():
            self.folders[fname] = []
            for c in contents:
                if isinstance(c, bytes):
                    self.append(fname, c)
                else:
                    self.folders[fname].append(c)
                    self.next_uid[fname] = max(self.next_uid.get(fname, 1), c["uid"] + 1)

    def inject_failure(self, command, mode="bye", count=1):
        """Makes the next `count` occurrences of `command` (e.g. "FETCH", "UID MOVE") fail."""
        with self.lock:
            self._failures.extend([(command.upper(), mode)] * count)

    def take_failure(self, command):
        with self.lock:
            for i, (cmd, mode) in enumerate(self._failures):
                if cmd == command:
                    del self._failures[i]
                    return mode
        return None

    def advertised(self, authenticated):
        if not authenticated:
            return list(self.capabilities)
        return self.capabilities + [c for c in self.post_login_capabilities if c not in self.capabilities]

    def list_flags(self, name):
        flags = list(self.folder_flags.get(name, ()))
        flags.append("\\HasChildren" if self.children(name) else "\\HasNoChildren")
        return flags

    def is_selectable(self, name):
        return not any(f.lower() == "\\noselect" for f in self.folder_flags.get(name, ()))

    def children(self, name):
        prefix = name + DELIMITER
        return [n for n in self.folders if n.startswith(prefix)]

    def append(self, folder, content, flags=None):
        with self.lock:
            uid = self.next_uid.get(folder, 1)
            self.next_uid[folder] = uid + 1
            self.folders[folder].append({"uid": uid, "flags": set(flags or ()), "content": content})
            return uid

    def expunge(self, folder, uids=None):
        """
        Removes \\Deleted messages (only those in `uids` when given); returns the
        EXPUNGE sequence numbers in reporting order.
        """
        msgs = self.folders[folder]

        def _gone(m):
            return "\\Deleted" in m["flags"] and (uids is None or m["uid"] in uids)

        removed = [i for i, m in enumerate(msgs, 1) if _gone(m)]
        self.folders[folder] = [m for m in msgs if not _gone(m)]
        # Each EXPUNGE renumbers the following messages
        return [seq - offset for offset, seq in enumerate(removed)]

    def delete_folder(self, folder):
        del self.folders[folder]
        self.folder_flags.pop(folder, None)


def start_server_thread(port=0, initial_folders=None, **options):
    """Starts a mock server on localhost; returns (server, port). Port 0 picks a free one."""
    server = MockIMAPServer(("localhost", port), MockIMAPHandler, initial_folders, **options)
    t = threading.Thread(target=server.serve_forever)
    t.daemon = True
    t.start()
    return server, server.server_address[1]
