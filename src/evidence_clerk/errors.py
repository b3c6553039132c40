from __future__ import annotations


class EvidenceClerkError(Exception):
    """Base class for errors raised by the evidence clerk."""


class LedgerUnreadableError(EvidenceClerkError):
    """The warning ledger exists but cannot be read."""


class LedgerWriteError(EvidenceClerkError):
    """A warning record could not be appended to the ledger."""


class RunAbortedError(EvidenceClerkError):
    """A write failed in a way the run cannot recover from."""

    def __init__(self, operation: str, reason: str):
        super().__init__(f"{operation}: {reason}")
        self.operation = operation
        self.reason = reason
