from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Optional

import mwparserfromhell as mwpfh

from evidence_clerk.config import ClerkSettings, parse_configuration
from evidence_clerk.core import count_section
from evidence_clerk.errors import RunAbortedError
from evidence_clerk.ledger import WarningLedger, WarningState, WarningTracker
from evidence_clerk.limits import LimitResolver, build_override_table, extract_party_usernames
from evidence_clerk.report import (
    compile_case_header,
    compile_defaults_preamble,
    compile_report_summary,
    compile_section_report,
)
from evidence_clerk.sections import (
    Case,
    Section,
    SectionUpdater,
    derive_username,
    enumerate_sections,
    is_valid_heading,
)
from evidence_clerk.store import EditOutcome, PageStore

logger = logging.getLogger(__name__)

UPDATE_SECTION_SUMMARY = "Bot updating evidence length information"
INVALID_SECTION_SUMMARY = "Marking section with malformed header - please correct for analysis."


class RunStatus(str, Enum):
    COMPLETED = "completed"
    STOPPED_FOR_MESSAGES = "stopped_for_messages"


@dataclass
class RunResult:
    status: RunStatus
    cases: list[str] = field(default_factory=list)
    processed: list[str] = field(default_factory=list)
    report: str = ""
    changes_made: bool = False
    published: bool = False
    warnings: list[tuple[str, str, WarningState]] = field(default_factory=list)


@dataclass
class _RunContext:
    resolver: LimitResolver
    tracker: WarningTracker
    ledger: WarningLedger
    changes_made: bool = False
    warnings: list[tuple[str, str, WarningState]] = field(default_factory=list)


def parse_open_cases(text: Optional[str], review_suffix: str = "/Review") -> list[str]:
    """Case names from ``{{ArbComOpenTasks/line|name=...|mode=...}}`` entries, in order, deduplicated."""
    cases: list[str] = []
    for template in mwpfh.parse(text or "").filter_templates():
        if not template.name.matches("ArbComOpenTasks/line") or not template.has("name"):
            continue
        name = str(template.get("name").value).strip()
        if not name:
            continue
        if template.has("mode") and str(template.get("mode").value).strip().lower() == "review":
            name += review_suffix
        if name not in cases:
            cases.append(name)
    return cases


class CaseOrchestrator:
    """Runs one pass of the evidence length clerk over every open case."""

    def __init__(self, store: PageStore, settings: Optional[ClerkSettings] = None):
        self.store = store
        self.settings = settings or ClerkSettings()
        self.updater = SectionUpdater(self.settings.annotation_template, self.settings.invalid_section_template)

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def _commit(self, operation: str, action: Callable[[], EditOutcome]) -> bool:
        """Run a write, logging back in and redoing it while the session has expired.

        Returns False when the page is protected and the write was skipped.

        Raises:
            RunAbortedError: transient or unknown failure, or re-login attempts exhausted.
        """
        attempts = 0
        while True:
            outcome = action()
            if outcome is EditOutcome.OK:
                return True
            if outcome is EditOutcome.PROTECTED_PAGE:
                logger.warning(f"Edit failed due to page protection, skipping {operation}")
                return False
            if outcome is not EditOutcome.AUTH_EXPIRED:
                raise RunAbortedError(operation, f"write failed ({outcome})")
            attempts += 1
            if attempts > self.settings.retry_max:
                raise RunAbortedError(operation, "maximum re-login attempts exceeded")
            logger.warning(f"Not logged in during {operation}, logging back in ({attempts}/{self.settings.retry_max})")
            if not self.store.login():
                logger.warning("Re-login attempt failed")

    def _edit_section(self, page: str, section: Section, text: str, summary: str, minor: bool) -> None:
        if self.settings.report_only:
            logger.info(f"Report-only mode, edit to {page} section {section.index} aborted")
            return
        self._commit(
            f"edit of {page} section {section.index}",
            lambda: self.store.edit(page, text, summary, minor, section.index),
        )

    # -----------------------------------------------------------------------
    # Cases and sections
    # -----------------------------------------------------------------------

    def load_case(self, case_name: str) -> Case:
        evidence_page = self.settings.evidence_page(case_name)
        page_text = self.store.get_text(evidence_page)
        if page_text is None:
            logger.warning(f"No evidence page for {case_name} at {evidence_page}")
            return Case(case_name)

        sections = []
        for index, name in enumerate_sections(page_text):
            text = self.store.get_section_text(evidence_page, index)
            username = derive_username(name, self.store.user_exists) if is_valid_heading(name) else ""
            if not username:
                sections.append(Section(index, name, text, valid=False))
            else:
                sections.append(Section(index, name, text, username, valid=True))
        return Case(case_name, tuple(sections))

    def _mark_malformed(self, evidence_page: str, section: Section, context: _RunContext) -> None:
        if context.ledger.has_key(section.name):
            logger.debug(f"Malformed section {section.name!r} already reported")
            return
        new_text = self.updater.mark_malformed(section.text)
        logger.warning(f"Section {section.name!r} on {evidence_page} has a malformed header")
        if self.settings.report_only:
            context.ledger.mark(section.name, evidence_page)
        else:
            context.ledger.record(section.name, evidence_page)
        if new_text is None:
            return
        context.changes_made = True
        self._edit_section(evidence_page, section, new_text, INVALID_SECTION_SUMMARY, minor=False)

    def process_case(self, case_name: str, context: _RunContext) -> str:
        case = self.load_case(case_name)
        evidence_page = self.settings.evidence_page(case_name)
        logger.info(f"Processing {case_name}: {len(case.sections)} sections")

        fragment = compile_case_header(case_name)
        for section in case.sections:
            if not section.valid:
                self._mark_malformed(evidence_page, section, context)
                continue

            counts = count_section(section.text)
            profile = context.resolver.resolve(section.username, case_name)
            logger.info(f"   {section.username}: {counts.words} words, {counts.diffs} diffs, {counts.links} links")

            fragment += compile_section_report(
                case_name, section.name, section.username, counts, profile, evidence_page
            )

            new_text = self.updater.synchronize(section.text, counts, profile)
            if new_text is not None:
                context.changes_made = True
                self._edit_section(evidence_page, section, new_text, UPDATE_SECTION_SUMMARY, minor=True)

            state = context.tracker.check(section.username, case_name, counts, profile, self.store, self._commit)
            if state is not WarningState.WITHIN_LIMITS:
                context.warnings.append((section.username, case_name, state))
        return fragment + "\n\n"

    # -----------------------------------------------------------------------
    # Run
    # -----------------------------------------------------------------------

    def _build_context(self, cases: list[str]) -> tuple[_RunContext, str]:
        ledger = WarningLedger.load(self.settings.ledger_path)
        parsed = parse_configuration(self.store.get_text(self.settings.resolved_configuration_page))
        parties = {
            case_name: extract_party_usernames(self.store.get_section_text(self.settings.case_page(case_name), 1))
            for case_name in cases
        }
        table = build_override_table(
            ((entry.username, entry.case_name, entry.profile) for entry in parsed.overrides),
            parties,
            parsed.defaults.party_profile(),
        )
        resolver = LimitResolver(parsed.defaults.base_profile(), table)
        tracker = WarningTracker(
            ledger, self.settings.bot_name, self.settings.notice_template, report_only=self.settings.report_only
        )
        preamble = compile_defaults_preamble(parsed.defaults.party_profile(), parsed.defaults.base_profile())
        return _RunContext(resolver=resolver, tracker=tracker, ledger=ledger), preamble

    def run(self) -> RunResult:
        logger.info(f"\U0001f4cf Checking evidence lengths as {self.settings.bot_name}")
        logger.info(f"   report-only: {self.settings.report_only}")

        cases = parse_open_cases(self.store.get_text(self.settings.open_tasks_page), self.settings.review_suffix)
        logger.info(f"   open cases: {cases}")
        context, report = self._build_context(cases)

        result = RunResult(status=RunStatus.COMPLETED, cases=cases)
        for case_name in cases:
            if self.store.has_pending_messages():
                logger.warning(f"New messages received, stopping before {case_name}")
                result.status = RunStatus.STOPPED_FOR_MESSAGES
                break
            report += self.process_case(case_name, context)
            result.processed.append(case_name)

        result.report = report
        result.changes_made = context.changes_made
        result.warnings = context.warnings
        if context.changes_made:
            summary = compile_report_summary(result.processed)
            result.published = self._commit(
                "length report",
                lambda: self.store.edit(self.settings.resolved_report_page, report, summary, False),
            )
        else:
            logger.info("No changes detected, length report not published")
        return result
