"""Error taxonomy for the triage pipeline."""


class TriageError(Exception):
    """Base class for all triage errors."""


class SelectionError(TriageError):
    """The mailbox query for candidates failed. Fatal to the run."""


class ClassificationError(TriageError):
    """The generation service failed or returned an unusable verdict."""


class LabelError(TriageError):
    """Label lookup, creation or attachment failed."""
