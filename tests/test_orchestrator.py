"""Tests for the batch orchestrator."""

import json

import pytest

from replytriage.exceptions import LabelError, SelectionError
from replytriage.labeler import LabelApplicator
from replytriage.orchestrator import BatchOrchestrator, OutcomeStatus
from replytriage.selector import CandidateSelector
from replytriage.structured_logger import StructuredLogger


def make_orchestrator(mailbox, classifier, audit=None, dry_run=False, batch_size=5):
    selector = CandidateSelector(mailbox, "Triage", "Processed", batch_size=batch_size)
    return BatchOrchestrator(selector, classifier, LabelApplicator(mailbox), audit=audit, dry_run=dry_run)


class TestBatchOrchestrator:
    """Tests for BatchOrchestrator."""

    def test_mixed_outcomes_end_to_end(self, mailbox, scripted_classifier, classification_error):
        mailbox.add_thread("thread1", labels=["Triage"])
        mailbox.add_thread("thread2", labels=["Triage"])
        mailbox.add_thread("thread3", labels=["Triage"])
        classifier = scripted_classifier({"thread1": True, "thread2": False, "thread3": classification_error})

        report = make_orchestrator(mailbox, classifier).run()

        assert mailbox.labels_of("thread1") == {"Triage", "ToRespond", "Processed"}
        assert mailbox.labels_of("thread2") == {"Triage", "Processed"}
        assert mailbox.labels_of("thread3") == {"Triage"}
        assert report.selected == 3
        assert report.labeled == 2
        assert report.failed == 1
        failed = [o for o in report.outcomes if o.status == OutcomeStatus.FAILED]
        assert failed[0].thread_id == "thread3"
        assert "not valid JSON" in failed[0].error

    def test_second_run_is_idempotent(self, mailbox, scripted_classifier):
        mailbox.add_thread("a", labels=["Triage"])
        mailbox.add_thread("b", labels=["Triage"])
        classifier = scripted_classifier({"a": True, "b": False})

        make_orchestrator(mailbox, classifier).run()
        mutations = list(mailbox.mutations)
        report = make_orchestrator(mailbox, classifier).run()

        assert report.selected == 0
        assert mailbox.mutations == mutations
        assert classifier.calls == ["b", "a"]

    def test_failed_thread_is_retried_next_run(self, mailbox, scripted_classifier, classification_error):
        mailbox.add_thread("a", labels=["Triage"])
        classifier = scripted_classifier({"a": classification_error})
        make_orchestrator(mailbox, classifier).run()

        classifier.results["a"] = False
        report = make_orchestrator(mailbox, classifier).run()

        assert report.labeled == 1
        assert mailbox.labels_of("a") == {"Triage", "Processed"}

    def test_label_error_does_not_stop_batch(self, mailbox, scripted_classifier):
        mailbox.add_thread("a", labels=["Triage"])
        mailbox.add_thread("b", labels=["Triage"])
        mailbox.fail_add_label.add("ToRespond")
        classifier = scripted_classifier({"a": False, "b": True})

        report = make_orchestrator(mailbox, classifier).run()

        statuses = {o.thread_id: o.status for o in report.outcomes}
        assert statuses == {"b": OutcomeStatus.FAILED, "a": OutcomeStatus.LABELED}
        assert mailbox.labels_of("b") == {"Triage"}

    def test_unexpected_error_is_isolated(self, mailbox, scripted_classifier):
        mailbox.add_thread("a", labels=["Triage"])
        mailbox.add_thread("b", labels=["Triage"])
        classifier = scripted_classifier({"a": True, "b": KeyError("boom")})

        report = make_orchestrator(mailbox, classifier).run()

        assert report.failed == 1
        assert mailbox.labels_of("a") == {"Triage", "ToRespond", "Processed"}

    def test_selection_error_is_fatal(self, mailbox, scripted_classifier):
        mailbox.fail_search = True
        with pytest.raises(SelectionError):
            make_orchestrator(mailbox, scripted_classifier({})).run()

    def test_batch_cap(self, mailbox, scripted_classifier):
        for i in range(7):
            mailbox.add_thread(f"t{i}", labels=["Triage"])
        classifier = scripted_classifier({f"t{i}": False for i in range(7)})

        report = make_orchestrator(mailbox, classifier, batch_size=5).run()

        assert report.selected == 5
        assert len(classifier.calls) == 5

    def test_dry_run_writes_nothing(self, mailbox, scripted_classifier):
        mailbox.add_thread("a", labels=["Triage"])
        classifier = scripted_classifier({"a": True})

        report = make_orchestrator(mailbox, classifier, dry_run=True).run()

        assert mailbox.mutations == []
        assert mailbox.created == []
        assert report.outcomes[0].status == OutcomeStatus.DRY_RUN
        assert report.outcomes[0].labels == ["ToRespond", "Processed"]

    def test_audit_trail(self, mailbox, scripted_classifier, tmp_path):
        mailbox.add_thread("a", subject="Need your sign-off", labels=["Triage"])
        mailbox.add_thread("b", labels=["Triage"])
        classifier = scripted_classifier({"a": True, "b": LabelError("quota")})
        audit_file = tmp_path / "audit.jsonl"

        make_orchestrator(mailbox, classifier, audit=StructuredLogger(str(audit_file))).run()

        events = [json.loads(line) for line in audit_file.read_text().splitlines()]
        assert [e["event_type"] for e in events] == [
            "run_started",
            "thread_failed",
            "thread_processed",
            "run_completed",
        ]
        assert events[1]["error_type"] == "LabelError"
        assert events[2]["subject"] == "Need your sign-off"
        assert events[3] == {**events[3], "selected": 2, "labeled": 1, "failed": 1}
