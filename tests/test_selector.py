"""Tests for candidate selection."""

import pytest

from replytriage.exceptions import SelectionError
from replytriage.mailbox import Message, Thread
from replytriage.selector import CandidateSelector, label_term


class TestLabelTerm:
    def test_simple(self):
        assert label_term("Processed") == "Processed"

    def test_whitespace_is_quoted(self):
        assert label_term("Needs Reply") == '"Needs Reply"'

    def test_double_quote_rejected(self):
        with pytest.raises(ValueError):
            label_term('Say "hi"')


class TestCandidateSelector:
    """Tests for CandidateSelector."""

    def test_query(self, mailbox):
        selector = CandidateSelector(mailbox, "Triage", "Processed", batch_size=5)
        assert selector.build_query() == "is:unread label:Triage -label:Processed"

    def test_excludes_processed_read_and_untagged(self, mailbox):
        mailbox.add_thread("a", labels=["Triage"])
        mailbox.add_thread("b", labels=["Triage", "Processed"])
        mailbox.add_thread("c", labels=["Triage"], unread=False)
        mailbox.add_thread("d", labels=["Other"])
        selector = CandidateSelector(mailbox, "Triage")

        assert [t.id for t in selector.select()] == ["a"]

    def test_bounded_by_batch_size_newest_first(self, mailbox):
        for i in range(8):
            mailbox.add_thread(f"t{i}", labels=["Triage"])
        selector = CandidateSelector(mailbox, "Triage", batch_size=5)

        candidates = selector.select()

        assert [t.id for t in candidates] == ["t7", "t6", "t5", "t4", "t3"]
        assert mailbox.searches == [(selector.build_query(), 0, 5)]

    def test_drops_processed_threads_from_stale_index(self):
        class StaleMailbox:
            def search(self, query, offset, limit):
                message = Message(id="x", subject="s", plain_body="b")
                return [
                    Thread(id="x", first_message=message, labels=frozenset({"Triage", "Processed"})),
                    Thread(id="y", first_message=message, labels=frozenset({"Triage"})),
                ]

        selector = CandidateSelector(StaleMailbox(), "Triage")
        assert [t.id for t in selector.select()] == ["y"]

    def test_selection_error_propagates(self, mailbox):
        mailbox.fail_search = True
        with pytest.raises(SelectionError):
            CandidateSelector(mailbox, "Triage").select()

    def test_other_errors_wrapped(self):
        class BrokenMailbox:
            def search(self, query, offset, limit):
                raise OSError("connection reset")

        with pytest.raises(SelectionError, match="connection reset"):
            CandidateSelector(BrokenMailbox(), "Triage").select()

    def test_invalid_batch_size(self, mailbox):
        with pytest.raises(ValueError):
            CandidateSelector(mailbox, "Triage", batch_size=0)
