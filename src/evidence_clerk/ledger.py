from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import mwparserfromhell as mwpfh

from evidence_clerk.core import SectionCounts
from evidence_clerk.errors import LedgerUnreadableError, LedgerWriteError
from evidence_clerk.limits import LimitProfile
from evidence_clerk.store import EditOutcome, PageStore

logger = logging.getLogger(__name__)

RECORD_SEPARATOR = ">>>"
NOTICE_HEADER = "Your Arbitration evidence is too long"


class WarningLedger:
    """Append-only record of which users were warned for which cases.

    One ``username>>>caseName`` record per line. The file is opened, appended,
    flushed and closed for every record so nothing is lost if the run dies.
    """

    def __init__(self, path: str | Path, warned: Optional[dict[str, set[str]]] = None):
        self.path = Path(path)
        self._warned: dict[str, set[str]] = warned if warned is not None else {}

    @classmethod
    def load(cls, path: str | Path) -> WarningLedger:
        path = Path(path)
        if not path.exists():
            logger.info(f"No warning ledger at {path}, starting fresh")
            return cls(path)
        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise LedgerUnreadableError(f"Cannot read warning ledger {path}: {e}") from e

        warned: dict[str, set[str]] = {}
        for lineno, line in enumerate(content.splitlines(), start=1):
            if not line.strip():
                continue
            user, sep, case_name = line.partition(RECORD_SEPARATOR)
            if not sep:
                logger.warning(f"Skipping malformed ledger line {lineno}: {line!r}")
                continue
            warned.setdefault(user, set()).add(case_name)
        logger.info(f"Loaded warning ledger with {sum(len(v) for v in warned.values())} records")
        return cls(path, warned)

    def has_key(self, key: str) -> bool:
        return key in self._warned

    def has_warned(self, username: str, case_name: str) -> bool:
        return case_name in self._warned.get(username, set())

    def mark(self, username: str, case_name: str) -> None:
        """Mark a pair as warned for this run only."""
        self._warned.setdefault(username, set()).add(case_name)

    def record(self, username: str, case_name: str) -> None:
        """Mark a pair as warned and append it to the ledger file."""
        try:
            with self.path.open("a", encoding="utf-8") as fh:
                fh.write(f"{username}{RECORD_SEPARATOR}{case_name}\n")
                fh.flush()
        except OSError as e:
            raise LedgerWriteError(f"Cannot write to warning ledger {self.path}: {e}") from e
        self.mark(username, case_name)

    def cases_for(self, username: str) -> frozenset[str]:
        return frozenset(self._warned.get(username, set()))


def bots_allowed(page_text: Optional[str], bot_name: str) -> bool:
    """Honour ``{{bots}}``/``{{nobots}}`` exclusion templates on a page."""
    if not page_text:
        return True
    for template in mwpfh.parse(page_text).filter_templates():
        if not template.name.matches(("bots", "nobots")):
            continue
        for key in ("allow", "deny"):
            if not template.has(key):
                continue
            names = {name.strip().lower() for name in str(template.get(key).value).split(",")}
            listed = "all" in names or bot_name.lower() in names
            return listed if key == "allow" else not listed
        return not template.name.matches("nobots")
    return True


class WarningState(str, Enum):
    WITHIN_LIMITS = "within_limits"
    ALREADY_WARNED = "already_warned"
    WARNED = "warned"
    EXCLUDED = "excluded"
    SUPPRESSED = "suppressed"
    SKIPPED = "skipped"


# Runs a store write, applying the caller's retry policy. Returns True if it went through.
Committer = Callable[[str, Callable[[], EditOutcome]], bool]


class WarningTracker:
    """Warns each user at most once per case about over-length evidence.

    NOT_WARNED moves to WARNED when any count exceeds ``limit * tolerance``. The
    transition posts one talk-page notice (unless the page excludes the bot) and
    appends one ledger record. In report-only mode no notice is posted and nothing is
    written, but the pair counts as warned for the rest of the run.
    """

    def __init__(self, ledger: WarningLedger, bot_name: str, notice_template: str, report_only: bool = False):
        self.ledger = ledger
        self.bot_name = bot_name
        self.notice_template = notice_template
        self.report_only = report_only

    def notice_body(self, case_name: str, counts: SectionCounts) -> str:
        return (
            f"{{{{subst:{self.notice_template}|case={case_name}"
            f"|words={counts.words}|diffs={counts.diffs}|links={counts.links}}}}}"
        )

    def check(
        self,
        username: str,
        case_name: str,
        counts: SectionCounts,
        profile: LimitProfile,
        store: PageStore,
        commit: Committer,
    ) -> WarningState:
        if not profile.exceeded_by(counts):
            return WarningState.WITHIN_LIMITS
        if self.ledger.has_warned(username, case_name):
            logger.info(f"Notice already given to {username} for {case_name}")
            return WarningState.ALREADY_WARNED
        if self.report_only:
            logger.info(f"Notice to {username} for {case_name} suppressed, report-only mode")
            self.ledger.mark(username, case_name)
            return WarningState.SUPPRESSED

        talk_page = f"User talk:{username}"
        if not bots_allowed(store.get_text(talk_page), self.bot_name):
            logger.info(f"{talk_page} excludes {self.bot_name}, recording without notice")
            self.ledger.record(username, case_name)
            return WarningState.EXCLUDED

        body = self.notice_body(case_name, counts)
        if not commit(f"notice to {username}", lambda: store.new_section(talk_page, NOTICE_HEADER, body)):
            return WarningState.SKIPPED
        self.ledger.record(username, case_name)
        logger.info(f"Warned {username} about evidence length in {case_name}")
        return WarningState.WARNED
