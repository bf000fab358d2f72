"""Candidate selection: which threads a run will triage."""

from __future__ import annotations

import logging

from replytriage.exceptions import SelectionError
from replytriage.mailbox import Mailbox, Thread

logger = logging.getLogger(__name__)


def label_term(name: str) -> str:
    """Format a label name as a Gmail search term operand."""
    if '"' in name:
        raise ValueError(f"Label name cannot be used in a search query: {name!r}")
    if any(c.isspace() for c in name):
        return f'"{name}"'
    return name


class CandidateSelector:
    """Queries the mailbox for unread, tagged, unprocessed threads."""

    def __init__(
        self,
        mailbox: Mailbox,
        inclusion_label: str,
        processed_label: str = "Processed",
        batch_size: int = 5,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be at least 1")
        self.mailbox = mailbox
        self.inclusion_label = inclusion_label
        self.processed_label = processed_label
        self.batch_size = batch_size

    def build_query(self) -> str:
        return (
            f"is:unread label:{label_term(self.inclusion_label)} "
            f"-label:{label_term(self.processed_label)}"
        )

    def select(self) -> list[Thread]:
        """Return at most ``batch_size`` candidate threads.

        Raises:
            SelectionError: If the mailbox query fails
        """
        query = self.build_query()
        logger.debug(f"Searching mailbox: {query}")
        try:
            threads = self.mailbox.search(query, 0, self.batch_size)
        except SelectionError:
            raise
        except Exception as e:
            raise SelectionError(f"Mailbox search failed: {e}") from e

        # Search indexes can lag behind label writes
        candidates = [t for t in threads if self.processed_label not in t.labels]
        skipped = len(threads) - len(candidates)
        if skipped:
            logger.debug(f"Dropped {skipped} thread(s) already labelled {self.processed_label}")
        return candidates[: self.batch_size]
