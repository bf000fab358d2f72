"""Label applicator: turns a verdict into label mutations."""

from __future__ import annotations

import logging

from replytriage.classifier import Verdict
from replytriage.exceptions import LabelError
from replytriage.mailbox import LabelRef, Mailbox, Thread

logger = logging.getLogger(__name__)


class LabelApplicator:
    """Applies ToRespond (when a reply is needed) and then Processed.

    Mutations are additive only. The two writes are not atomic: if the
    Processed write fails the thread keeps ToRespond and is selected again
    on the next run, which re-adds both.
    """

    def __init__(self, mailbox: Mailbox, processed_label: str = "Processed", to_respond_label: str = "ToRespond"):
        self.mailbox = mailbox
        self.processed_label = processed_label
        self.to_respond_label = to_respond_label
        self._labels: dict[str, LabelRef] = {}

    def labels_for(self, verdict: Verdict) -> list[str]:
        """Label names a verdict maps to, in application order."""
        names = []
        if verdict.requires_response:
            names.append(self.to_respond_label)
        names.append(self.processed_label)
        return names

    def apply(self, thread: Thread, verdict: Verdict) -> list[str]:
        """Attach the labels for ``verdict`` to ``thread``.

        Returns:
            The label names attached, in order

        Raises:
            LabelError: If a label cannot be resolved, created or attached
        """
        applied = []
        for name in self.labels_for(verdict):
            label = self._resolve(name)
            try:
                self.mailbox.add_label(thread.id, label)
            except LabelError:
                raise
            except Exception as e:
                raise LabelError(f"Attaching {name!r} to thread {thread.id} failed: {e}") from e
            applied.append(name)
            logger.debug(f"Thread {thread.id}: labelled {name}")
        return applied

    def _resolve(self, name: str) -> LabelRef:
        label = self._labels.get(name)
        if label is not None:
            return label
        try:
            label = self.mailbox.get_or_create_label(name)
        except LabelError:
            raise
        except Exception as e:
            raise LabelError(f"Resolving label {name!r} failed: {e}") from e
        self._labels[name] = label
        return label
