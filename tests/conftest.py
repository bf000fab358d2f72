"""Shared test doubles."""

import shlex

import pytest

from replytriage.classifier import Verdict
from replytriage.exceptions import ClassificationError, LabelError, SelectionError
from replytriage.mailbox import LabelRef, Message, Thread


class InMemoryMailbox:
    """Mailbox double understanding is:unread, label:X and -label:X terms."""

    def __init__(self):
        self._threads: dict[str, dict] = {}
        self._order: list[str] = []
        self.user_labels: set[str] = set()
        self.mutations: list[tuple[str, str]] = []
        self.created: list[str] = []
        self.searches: list[tuple[str, int, int]] = []
        self.fail_search = False
        self.fail_add_label: set[str] = set()

    def add_thread(self, thread_id, subject="Subject", body="Body", labels=(), unread=True):
        """Add a thread; later additions are newer."""
        self._threads[thread_id] = {
            "message": Message(id=thread_id, subject=subject, plain_body=body),
            "labels": set(labels),
            "unread": unread,
        }
        self._order.insert(0, thread_id)
        self.user_labels.update(labels)

    def labels_of(self, thread_id) -> set[str]:
        return set(self._threads[thread_id]["labels"])

    def _matches(self, thread: dict, terms: list[str]) -> bool:
        for term in terms:
            if term == "is:unread" and not thread["unread"]:
                return False
            if term.startswith("label:") and term[len("label:"):] not in thread["labels"]:
                return False
            if term.startswith("-label:") and term[len("-label:"):] in thread["labels"]:
                return False
        return True

    def search(self, query, offset, limit):
        self.searches.append((query, offset, limit))
        if self.fail_search:
            raise SelectionError("mailbox unavailable")
        terms = shlex.split(query)
        matched = [tid for tid in self._order if self._matches(self._threads[tid], terms)]
        return [
            Thread(id=tid, first_message=self._threads[tid]["message"], labels=frozenset(self._threads[tid]["labels"]))
            for tid in matched[offset : offset + limit]
        ]

    def get_message(self, thread_id):
        return self._threads[thread_id]["message"]

    def get_user_label_by_name(self, name):
        return LabelRef(name) if name in self.user_labels else None

    def create_label(self, name):
        self.created.append(name)
        self.user_labels.add(name)
        return LabelRef(name)

    def get_or_create_label(self, name):
        return self.get_user_label_by_name(name) or self.create_label(name)

    def add_label(self, thread_id, label):
        if label.name in self.fail_add_label:
            raise LabelError(f"cannot attach {label.name}")
        self.mutations.append((thread_id, label.name))
        self._threads[thread_id]["labels"].add(label.name)


class ScriptedClassifier:
    """Returns verdicts keyed by message id; exceptions are raised."""

    def __init__(self, results: dict):
        self.results = results
        self.calls: list[str] = []

    def classify(self, message):
        self.calls.append(message.id)
        result = self.results[message.id]
        if isinstance(result, Exception):
            raise result
        return Verdict(requires_response=result)


@pytest.fixture
def mailbox():
    return InMemoryMailbox()


@pytest.fixture
def scripted_classifier():
    return ScriptedClassifier


@pytest.fixture
def classification_error():
    return ClassificationError("Response is not valid JSON")
