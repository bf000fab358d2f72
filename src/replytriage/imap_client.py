"""Gmail IMAP implementation of the Mailbox capability set.

Gmail exposes its search syntax and labels over IMAP through the X-GM-RAW,
X-GM-THRID and X-GM-LABELS extensions, which lets the pipeline use the same
``is:unread label:... -label:...`` queries as the web UI.
"""

from __future__ import annotations

import imaplib
import json
import logging
import re
from collections.abc import Callable
from typing import TYPE_CHECKING

from replytriage.email_parser import EmailParser
from replytriage.exceptions import LabelError, SelectionError
from replytriage.mailbox import LabelRef, Message, Thread

if TYPE_CHECKING:
    from replytriage.config import ImapConfig

logger = logging.getLogger(__name__)

_UID_RE = re.compile(rb"UID (\d+)")
_THRID_RE = re.compile(rb"X-GM-THRID (\d+)")
_LABELS_RE = re.compile(rb'X-GM-LABELS \(((?:"(?:[^"\\]|\\.)*"|[^()"])*)\)')
_TOKEN_RE = re.compile(rb'"((?:[^"\\]|\\.)*)"|([^\s"]+)')
_LIST_RE = re.compile(rb'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.+)')


def quote(value: str) -> str:
    """Quote a string for use as an IMAP astring."""
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def _unquote(token: bytes) -> str:
    token = token.strip()
    if token.startswith(b'"') and token.endswith(b'"'):
        token = token[1:-1].replace(b'\\"', b'"').replace(b"\\\\", b"\\")
    return token.decode("utf-8", errors="replace")


def parse_gm_labels(fetch_line: bytes) -> frozenset[str]:
    """Extract the X-GM-LABELS list from a FETCH response line."""
    match = _LABELS_RE.search(fetch_line)
    if not match:
        return frozenset()
    labels = set()
    for quoted, bare in _TOKEN_RE.findall(match.group(1)):
        raw = quoted.replace(b'\\"', b'"').replace(b"\\\\", b"\\") if quoted else bare
        labels.add(raw.decode("utf-8", errors="replace"))
    return frozenset(labels)


class IMAPClient:
    """Mailbox backed by a Gmail account over IMAPS."""

    def __init__(
        self,
        config: ImapConfig,
        parser: EmailParser | None = None,
        connection_factory: Callable[..., imaplib.IMAP4] = imaplib.IMAP4_SSL,
    ):
        """Initialize the IMAP client."""
        self.config = config
        self.parser = parser or EmailParser()
        self._connection_factory = connection_factory
        self._connection: imaplib.IMAP4 | None = None

    def __enter__(self) -> IMAPClient:
        self.connect()
        return self

    def __exit__(self, exc_type: type | None, exc_val: Exception | None, exc_tb: object) -> None:
        self.disconnect()

    def connect(self) -> None:
        """Connect, log in and select the configured folder.

        Raises:
            ConnectionError: If unable to reach the IMAP server
            ValueError: If authentication fails
        """
        logger.info(json.dumps({"event": "connecting", "host": self.config.host, "port": self.config.port}))

        try:
            self._connection = self._connection_factory(
                self.config.host,
                self.config.port,
                timeout=self.config.timeout,
            )
        except OSError as e:
            error_msg = f"Cannot connect to {self.config.host}:{self.config.port} - Check host, port, and network connection"
            logger.error(error_msg)
            raise ConnectionError(error_msg) from e

        try:
            self._connection.login(self.config.username, self.config.get_password())
        except imaplib.IMAP4.error as e:
            self._connection = None
            error_msg = f"Authentication failed for {self.config.username} - Check username and password"
            logger.error(error_msg)
            raise ValueError(error_msg) from e
        logger.info(json.dumps({"event": "logged_in", "username": self.config.username}))

        status, data = self._connection.select(quote(self.config.folder))
        if status != "OK":
            raise ConnectionError(f"Failed to select folder {self.config.folder}: {data}")
        logger.debug(f"Selected folder: {self.config.folder}")

    def disconnect(self) -> None:
        """Disconnect from the IMAP server."""
        if self._connection:
            try:
                self._connection.logout()
            except (imaplib.IMAP4.error, OSError) as e:
                logger.warning(f"Error during logout: {e}")
            finally:
                self._connection = None

    @property
    def connection(self) -> imaplib.IMAP4:
        if self._connection is None:
            raise RuntimeError("Not connected")
        return self._connection

    # Mailbox protocol

    def search(self, query: str, offset: int, limit: int) -> list[Thread]:
        """Run a Gmail search and return matching threads, newest first."""
        try:
            status, data = self.connection.uid("SEARCH", "X-GM-RAW", quote(query))
            if status != "OK":
                raise SelectionError(f"Search failed: {data}")
            uids = data[0].split() if data and data[0] else []
            if not uids:
                return []

            status, data = self.connection.uid("FETCH", b",".join(uids).decode(), "(UID X-GM-THRID X-GM-LABELS)")
            if status != "OK":
                raise SelectionError(f"Fetching thread ids failed: {data}")
        except (imaplib.IMAP4.error, OSError) as e:
            raise SelectionError(f"Search failed: {e}") from e

        # thread id -> (newest matching uid, label union)
        threads: dict[str, tuple[int, set[str]]] = {}
        for line in self._response_lines(data):
            uid_match = _UID_RE.search(line)
            thrid_match = _THRID_RE.search(line)
            if not uid_match or not thrid_match:
                continue
            thread_id = thrid_match.group(1).decode()
            uid = int(uid_match.group(1))
            newest, labels = threads.get(thread_id, (0, set()))
            labels.update(parse_gm_labels(line))
            threads[thread_id] = (max(newest, uid), labels)

        ordered = sorted(threads.items(), key=lambda item: item[1][0], reverse=True)
        logger.info(json.dumps({"event": "search", "matches": len(uids), "threads": len(ordered)}))

        results = []
        for thread_id, (_, labels) in ordered[offset : offset + limit]:
            try:
                first_message = self.get_message(thread_id)
            except SelectionError as e:
                logger.warning(f"Thread {thread_id}: could not fetch first message, skipping: {e}")
                continue
            results.append(Thread(id=thread_id, first_message=first_message, labels=frozenset(labels)))
        return results

    def get_message(self, thread_id: str) -> Message:
        """Fetch the first message of a thread without marking it as seen."""
        try:
            uids = self._thread_uids(thread_id)
            if not uids:
                raise SelectionError(f"Thread {thread_id} has no messages")
            status, data = self.connection.uid("FETCH", str(min(uids)), "(BODY.PEEK[])")
        except (imaplib.IMAP4.error, OSError) as e:
            raise SelectionError(f"Fetching thread {thread_id} failed: {e}") from e

        if status != "OK":
            raise SelectionError(f"Fetching thread {thread_id} failed: {data}")
        for item in data:
            if isinstance(item, tuple) and len(item) == 2:
                return self.parser.parse_bytes(thread_id, item[1])
        raise SelectionError(f"Thread {thread_id}: empty FETCH response")

    def get_user_label_by_name(self, name: str) -> LabelRef | None:
        try:
            status, data = self.connection.list('""', quote(name))
        except (imaplib.IMAP4.error, OSError) as e:
            raise LabelError(f"Listing label {name!r} failed: {e}") from e
        if status != "OK":
            raise LabelError(f"Listing label {name!r} failed: {data}")

        for item in data:
            if not item:
                continue
            if isinstance(item, tuple):
                # Literal mailbox name: ("(flags) \"/\" {n}", name bytes)
                match = _LIST_RE.match(item[0])
                found = item[1].decode("utf-8", errors="replace") if match else None
            else:
                match = _LIST_RE.match(item)
                found = _unquote(match.group("name")) if match else None
            if found == name:
                return LabelRef(name)
        return None

    def create_label(self, name: str) -> LabelRef:
        logger.info(f"Creating label: {name}")
        try:
            status, data = self.connection.create(quote(name))
        except (imaplib.IMAP4.error, OSError) as e:
            raise LabelError(f"Creating label {name!r} failed: {e}") from e
        if status != "OK":
            raise LabelError(f"Creating label {name!r} failed: {data}")
        return LabelRef(name)

    def get_or_create_label(self, name: str) -> LabelRef:
        label = self.get_user_label_by_name(name)
        if label is None:
            label = self.create_label(name)
        return label

    def add_label(self, thread_id: str, label: LabelRef) -> None:
        """Attach a label to every message in the thread."""
        try:
            uids = self._thread_uids(thread_id)
            if not uids:
                raise LabelError(f"Thread {thread_id} has no messages")
            uid_set = ",".join(str(uid) for uid in uids)
            status, data = self.connection.uid("STORE", uid_set, "+X-GM-LABELS", f"({quote(label.name)})")
        except (imaplib.IMAP4.error, OSError) as e:
            raise LabelError(f"Labelling thread {thread_id} with {label.name!r} failed: {e}") from e
        if status != "OK":
            raise LabelError(f"Labelling thread {thread_id} with {label.name!r} failed: {data}")
        logger.debug(f"Thread {thread_id}: added label {label.name}")

    def _thread_uids(self, thread_id: str) -> list[int]:
        status, data = self.connection.uid("SEARCH", "X-GM-THRID", thread_id)
        if status != "OK":
            raise imaplib.IMAP4.error(f"Thread search failed: {data}")
        return sorted(int(uid) for uid in (data[0] or b"").split())

    @staticmethod
    def _response_lines(data: list) -> list[bytes]:
        lines = []
        for item in data:
            if isinstance(item, tuple):
                lines.append(item[0])
            elif isinstance(item, bytes):
                lines.append(item)
        return lines
