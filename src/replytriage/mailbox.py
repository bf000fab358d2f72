"""Mailbox types and the capability set the pipeline consumes."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable


@dataclass(frozen=True)
class Message:
    """Read-only view of a single mailbox message."""

    id: str
    subject: str
    plain_body: str


@dataclass(frozen=True)
class Thread:
    """A mailbox conversation as returned by a search."""

    id: str
    first_message: Message
    labels: frozenset[str] = field(default_factory=frozenset)

    @property
    def subject(self) -> str:
        return self.first_message.subject


@dataclass(frozen=True)
class LabelRef:
    """Reference to a user label. Identity is the name."""

    name: str


@runtime_checkable
class Mailbox(Protocol):
    """Operations the triage pipeline needs from a mailbox provider.

    Implementations are the system of record for label state; the pipeline
    keeps no cache of its own between runs.
    """

    def search(self, query: str, offset: int, limit: int) -> list[Thread]:
        """Return at most ``limit`` threads matching ``query``, newest first."""
        ...

    def get_message(self, thread_id: str) -> Message:
        """Return the first message of a thread."""
        ...

    def get_user_label_by_name(self, name: str) -> LabelRef | None:
        """Look up a user label, or None if it does not exist."""
        ...

    def create_label(self, name: str) -> LabelRef:
        """Create a user label."""
        ...

    def get_or_create_label(self, name: str) -> LabelRef:
        """Look up a user label, creating it when absent."""
        ...

    def add_label(self, thread_id: str, label: LabelRef) -> None:
        """Attach a label to every message of a thread. Idempotent."""
        ...
