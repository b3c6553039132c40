from __future__ import annotations

from typing import Iterable

from evidence_clerk.core import SectionCounts
from evidence_clerk.limits import LimitProfile, MetricLimit

DEFAULT_EVIDENCE_PAGE_PREFIX = "Wikipedia:Arbitration/Requests/Case/"
REPORT_SUMMARY_PREFIX = "Updating evidence length data for cases: "


def _format_limit(limit: MetricLimit, disabled: str = "unlimited") -> str:
    return disabled if limit.unbounded else str(limit.limit)


def _metric_line(label: str, count: int, limit: MetricLimit, is_override: bool) -> str:
    if limit.exceeded(count):
        line = f"**'''{{{{red|{label} count: {count}}}}}'''"
    elif limit.at_limit(count):
        line = f"**'''{label} count: {count}'''"
    else:
        line = f"**{label} count: {count}"
    if is_override:
        line += f" ''(Custom limits: {_format_limit(limit)}/{limit.tolerance})''"
    return line


def compile_section_report(
    case_name: str,
    section_name: str,
    username: str,
    counts: SectionCounts,
    profile: LimitProfile,
    evidence_page: str | None = None,
) -> str:
    """Render the report entry for one evidence section.

    Counts above ``limit * tolerance`` are shown in red, counts above the limit but
    within tolerance in bold. Custom limits are noted inline when the profile is an
    override. The output depends only on the arguments.
    """
    page = evidence_page or f"{DEFAULT_EVIDENCE_PAGE_PREFIX}{case_name}/Evidence"
    lines = [f"* '''[[{page}#{section_name}|{username}]]''' ([[User talk:{username}|user talk page]])"]
    lines.extend(
        _metric_line(label, count, limit, profile.is_override)
        for label, count, limit in profile.metrics(counts)
    )
    return "\n".join(lines) + "\n"


def compile_case_header(case_name: str) -> str:
    return f"== Length reports for {case_name}, ~~~~~ ==\n\n"


def _defaults_block(title: str, profile: LimitProfile) -> str:
    rows = []
    for label, limit in (("Word limit", profile.word), ("Diff limit", profile.diff), ("Link limit", profile.link)):
        value = "Disabled" if limit.unbounded else f"{limit.limit} Tolerance: {limit.tolerance}"
        rows.append(f"* {label}: {value}")
    return f"Currently using the following default settings for {title}:\n" + "\n".join(rows) + "\n\n"


def compile_defaults_preamble(party: LimitProfile, base: LimitProfile) -> str:
    return _defaults_block("parties", party) + _defaults_block("all other users", base)


def compile_report_summary(case_names: Iterable[str]) -> str:
    return REPORT_SUMMARY_PREFIX + ", ".join(case_names)
