from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from evidence_clerk.limits import DISABLED, LimitProfile, MetricLimit

logger = logging.getLogger(__name__)

_ENTRY_RE = re.compile(r"^\s*\*\s*([A-Z_]+)\s*=(.*)$", re.MULTILINE)

OVERRIDE_KEY = "OVERRIDE"
OVERRIDE_FIELD_COUNT = 8


class ClerkSettings(BaseModel):
    """Where the clerk reads and writes, and how it behaves on failures.

    Attributes:
        bot_name: Account name used for bot-exclusion checks and template paths.
        report_only: Compute and publish the length report but make no edits outside
            the bot's own report page and post no notices.
        retry_max: Re-authentication attempts before an expired session aborts the run.
        ledger_path: Append-only file recording issued warnings.
    """

    model_config = ConfigDict(frozen=True)

    bot_name: str = "EvidenceClerkBot"
    case_prefix: str = "Wikipedia:Arbitration/Requests/Case/"
    evidence_suffix: str = "/Evidence"
    review_suffix: str = "/Review"
    open_tasks_page: str = "Template:ArbComOpenTasks/Cases"
    configuration_page: Optional[str] = None
    report_page: Optional[str] = None
    ledger_path: str = "warningLog.txt"
    report_only: bool = False
    retry_max: int = Field(default=2, ge=0, description="Re-login attempts before giving up")

    @property
    def resolved_configuration_page(self) -> str:
        return self.configuration_page or f"User:{self.bot_name}/Configuration"

    @property
    def resolved_report_page(self) -> str:
        return self.report_page or f"User:{self.bot_name}/Length reports"

    @property
    def annotation_template(self) -> str:
        return f"User:{self.bot_name}/Length header"

    @property
    def invalid_section_template(self) -> str:
        return f"User:{self.bot_name}/InvalidSectionName"

    @property
    def notice_template(self) -> str:
        return f"User:{self.bot_name}/User Notice"

    def case_page(self, case_name: str) -> str:
        return f"{self.case_prefix}{case_name}"

    def evidence_page(self, case_name: str) -> str:
        return f"{self.case_prefix}{case_name}{self.evidence_suffix}"


class LimitDefaults(BaseModel):
    """Default limits for parties and for everyone else. ``None`` means disabled."""

    model_config = ConfigDict(frozen=True)

    word_limit: Optional[int] = Field(default=500, ge=0)
    diff_limit: Optional[int] = Field(default=50, ge=0)
    link_limit: Optional[int] = Field(default=DISABLED, ge=0)
    word_tolerance: float = Field(default=1.10, gt=0)
    diff_tolerance: float = Field(default=1.10, gt=0)
    link_tolerance: float = Field(default=1.00, gt=0)
    party_word_limit: Optional[int] = Field(default=1000, ge=0)
    party_diff_limit: Optional[int] = Field(default=100, ge=0)
    party_link_limit: Optional[int] = Field(default=DISABLED, ge=0)

    def base_profile(self) -> LimitProfile:
        return LimitProfile(
            word=MetricLimit.of(self.word_limit, self.word_tolerance),
            diff=MetricLimit.of(self.diff_limit, self.diff_tolerance),
            link=MetricLimit.of(self.link_limit, self.link_tolerance),
        )

    def party_profile(self) -> LimitProfile:
        return LimitProfile(
            word=MetricLimit.of(self.party_word_limit, self.word_tolerance),
            diff=MetricLimit.of(self.party_diff_limit, self.diff_tolerance),
            link=MetricLimit.of(self.party_link_limit, self.link_tolerance),
        )


@dataclass(frozen=True)
class OverrideEntry:
    username: str
    case_name: str
    profile: LimitProfile


@dataclass(frozen=True)
class ParsedConfiguration:
    defaults: LimitDefaults = field(default_factory=LimitDefaults)
    overrides: tuple[OverrideEntry, ...] = ()
    skipped_overrides: int = 0


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

# key -> (limit field, tolerance key or None)
_LIMIT_KEYS = {
    "WORD_LENGTH": ("word_limit", "WORD_TOLERANCE"),
    "DIFF_COUNT": ("diff_limit", "DIFF_TOLERANCE"),
    "LINK_COUNT": ("link_limit", "LINK_TOLERANCE"),
    "PARTY_LENGTH": ("party_word_limit", None),
    "PARTY_DIFF_COUNT": ("party_diff_limit", None),
    "PARTY_LINK_COUNT": ("party_link_limit", None),
}
_TOLERANCE_FIELDS = {
    "WORD_TOLERANCE": "word_tolerance",
    "DIFF_TOLERANCE": "diff_tolerance",
    "LINK_TOLERANCE": "link_tolerance",
}


def _scan_entries(text: str) -> tuple[dict[str, str], list[str]]:
    """Split configuration text into scalar entries (first occurrence wins) and override blocks."""
    scalars: dict[str, str] = {}
    overrides: list[str] = []
    for m in _ENTRY_RE.finditer(text):
        key, value = m.group(1), m.group(2).strip()
        if key == OVERRIDE_KEY:
            overrides.append(value)
        elif key not in scalars:
            scalars[key] = value
    return scalars, overrides


def _parse_int(key: str, raw: Optional[str]) -> Optional[int]:
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Configuration value {key}={raw!r} is not an integer, keeping default")
        return None


def _parse_float(key: str, raw: Optional[str]) -> Optional[float]:
    if raw is None:
        return None
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"Configuration value {key}={raw!r} is not a number, keeping default")
        return None


def _accept(updates: dict[str, object], key: str, candidate: dict[str, object]) -> None:
    """Merge ``candidate`` into ``updates`` if the result is still a valid LimitDefaults."""
    try:
        LimitDefaults.model_validate({**updates, **candidate})
    except ValidationError as e:
        reason = "; ".join(err["msg"] for err in e.errors())
        logger.warning(f"Configuration value {key} rejected, keeping default: {reason}")
        return
    updates.update(candidate)


def _parse_defaults(scalars: dict[str, str]) -> LimitDefaults:
    updates: dict[str, object] = {}
    for key, (limit_field, tolerance_key) in _LIMIT_KEYS.items():
        limit = _parse_int(key, scalars.get(key))
        if limit is None:
            continue
        if limit == -1:
            candidate: dict[str, object] = {limit_field: DISABLED}
            if tolerance_key is not None:
                candidate[_TOLERANCE_FIELDS[tolerance_key]] = 1.0
            _accept(updates, key, candidate)
            continue
        _accept(updates, key, {limit_field: limit})
        if tolerance_key is not None:
            tolerance = _parse_float(tolerance_key, scalars.get(tolerance_key))
            if tolerance is not None:
                _accept(updates, tolerance_key, {_TOLERANCE_FIELDS[tolerance_key]: tolerance})
    return LimitDefaults(**updates)


def parse_override(raw: str) -> OverrideEntry:
    """Parse one ``user|case|wordLimit|diffLimit|linkLimit|wordTol|diffTol|linkTol`` block.

    Raises:
        ValueError: wrong field count, a non-numeric field, a limit below -1 or a
            tolerance that is not positive.
    """
    fields = [part.strip() for part in raw.split("|")]
    if len(fields) != OVERRIDE_FIELD_COUNT:
        raise ValueError(f"expected {OVERRIDE_FIELD_COUNT} fields, got {len(fields)}")
    username, case_name = fields[0], fields[1]
    if not username or not case_name:
        raise ValueError("username and case name are required")
    limits = [int(value) for value in fields[2:5]]
    tolerances = [float(value) for value in fields[5:8]]
    if any(limit < -1 for limit in limits):
        raise ValueError(f"limits must be -1 or non-negative, got {limits}")
    if not all(tolerance > 0 for tolerance in tolerances):
        raise ValueError(f"tolerances must be positive, got {tolerances}")
    word, diff, link = (
        MetricLimit.of(DISABLED if limit == -1 else limit, tolerance)
        for limit, tolerance in zip(limits, tolerances)
    )
    return OverrideEntry(username, case_name, LimitProfile(word=word, diff=diff, link=link, is_override=True))


def parse_configuration(text: Optional[str]) -> ParsedConfiguration:
    """Read the ``*KEY=value`` configuration page.

    Missing keys keep the compiled-in defaults. A malformed ``*OVERRIDE=`` block is
    skipped with a warning and parsing continues.
    """
    if not text:
        logger.info("No configuration text found, using compiled-in defaults")
        return ParsedConfiguration()

    scalars, raw_overrides = _scan_entries(text)
    entries: list[OverrideEntry] = []
    skipped = 0
    for raw in raw_overrides:
        try:
            entries.append(parse_override(raw))
        except ValueError as e:
            skipped += 1
            logger.warning(f"Override {raw!r} malformed, ignoring: {e}")
    return ParsedConfiguration(defaults=_parse_defaults(scalars), overrides=tuple(entries), skipped_overrides=skipped)
