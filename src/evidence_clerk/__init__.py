# SPDX-License-Identifier: Apache-2.0
"""Evidence length clerk for arbitration case pages.

Counts the words, diffs and links in each evidence section, resolves the limits
that apply to the author, annotates the section, warns users who run over and
publishes a length report. Wiki access goes through a ``PageStore``.

Usage::

    from evidence_clerk import CaseOrchestrator, ClerkSettings

    result = CaseOrchestrator(store, ClerkSettings(report_only=True)).run()
"""

from evidence_clerk.config import ClerkSettings, LimitDefaults, parse_configuration
from evidence_clerk.core import SectionCounts, count_section, normalize_for_word_count
from evidence_clerk.limits import LimitProfile, LimitResolver, MetricLimit, OverrideTable
from evidence_clerk.orchestrator import CaseOrchestrator, RunResult, RunStatus
from evidence_clerk.store import EditOutcome, PageStore

__all__ = [
    "CaseOrchestrator",
    "ClerkSettings",
    "EditOutcome",
    "LimitDefaults",
    "LimitProfile",
    "LimitResolver",
    "MetricLimit",
    "OverrideTable",
    "PageStore",
    "RunResult",
    "RunStatus",
    "SectionCounts",
    "count_section",
    "normalize_for_word_count",
    "parse_configuration",
]
