from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

import mwparserfromhell as mwpfh

from evidence_clerk.core import SectionCounts
from evidence_clerk.limits import LimitProfile, MetricLimit

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Compiled patterns
# ---------------------------------------------------------------------------

_VALID_HEADING_RE = re.compile(r"^Evidence (?:presented|submitted) by .+")
_BRACES_RE = re.compile(r"\{.*\}")
_HEADING_PREFIX_RE = re.compile(r"^\s*Evidence (?:presented|submitted) by\s+")
_UNINVOLVED_RES = [
    re.compile(r"\s*\(uninvolved editor\)\s*", re.IGNORECASE),
    re.compile(r"\s*\(uninvolved\)\s*", re.IGNORECASE),
    re.compile(r"\s*uninvolved editor\s*", re.IGNORECASE),
    re.compile(r"\s*\buninvolved\b\s*", re.IGNORECASE),
]
_USER_PREFIX_RE = re.compile(r"\bUser\s*:\s*", re.IGNORECASE)
_PARENTHETICAL_RE = re.compile(r"\(.*\)")
_CHAR_REF_RE = re.compile(r"&#(?:(\d+)|[xX]([0-9a-fA-F]+));")
_HEADING_LINE_RE = re.compile(r"^(={1,6})[ \t]*(.+?)[ \t]*\1[ \t]*$", re.MULTILINE)
_FIRST_L2_HEADING_RE = re.compile(r"^==[^=].*?==[ \t]*$", re.MULTILINE)


@dataclass(frozen=True)
class Section:
    index: int
    name: str
    text: str = ""
    username: str = ""
    valid: bool = True


@dataclass(frozen=True)
class Case:
    name: str
    sections: tuple[Section, ...] = ()


# ---------------------------------------------------------------------------
# Headings and usernames
# ---------------------------------------------------------------------------


def is_valid_heading(name: str) -> bool:
    """``Evidence presented by ...`` or ``Evidence submitted by ...`` with no template braces."""
    return bool(_VALID_HEADING_RE.match(name)) and not _BRACES_RE.search(name)


def decode_char_refs(text: str) -> str:
    def _replace(m: re.Match[str]) -> str:
        code = int(m.group(1)) if m.group(1) else int(m.group(2), 16)
        try:
            return chr(code)
        except (ValueError, OverflowError):
            return m.group(0)

    return _CHAR_REF_RE.sub(_replace, text)


def _unlink_users(text: str) -> str:
    """Replace ``[[User:Name|...]]`` and ``[[User talk:Name]]`` links with the bare name."""
    code = mwpfh.parse(text)
    for link in reversed(code.filter_wikilinks()):
        namespace, _, rest = str(link.title).partition(":")
        if namespace.strip().lower() in {"user", "user talk"} and rest.strip():
            code.replace(link, rest.split("/")[0].strip())
    return str(code)


def derive_username(heading: str, user_exists: Callable[[str], bool]) -> str:
    """Work out whose evidence a section heading introduces.

    Qualifiers such as ``(uninvolved)`` and ``User:`` link syntax are removed. If the
    remaining name is not a known account and still has a parenthetical, that is
    dropped once. Numeric character references are decoded last. An empty result
    means the heading names nobody.
    """
    name = _HEADING_PREFIX_RE.sub("", heading)
    for pattern in _UNINVOLVED_RES:
        name = pattern.sub(" ", name)
    name = _unlink_users(name)
    name = " ".join(_USER_PREFIX_RE.sub("", name).split())
    if "{" not in name and "(" in name and not user_exists(name):
        name = " ".join(_PARENTHETICAL_RE.sub("", name).split())
    return decode_char_refs(name)


def enumerate_sections(page_text: Optional[str]) -> list[tuple[int, str]]:
    """Level-2 headings of a page with their section numbers.

    Section numbers count every heading on the page, as the edit API does.
    """
    if not page_text:
        return []
    found = []
    for index, m in enumerate(_HEADING_LINE_RE.finditer(page_text), start=1):
        if len(m.group(1)) == 2:
            found.append((index, m.group(2)))
    return found


def _insert_below_heading(text: str, line: str) -> str:
    m = _FIRST_L2_HEADING_RE.search(text)
    if not m:
        return f"{line}\n{text}"
    return f"{text[:m.end()]}\n{line}{text[m.end():]}"


# ---------------------------------------------------------------------------
# Annotation
# ---------------------------------------------------------------------------


def _annotation_limit(limit: MetricLimit) -> str:
    return "-1" if limit.unbounded else str(limit.limit)


class SectionUpdater:
    """Keeps the length annotation under each evidence heading current.

    The annotation is a single template call located by its literal start marker
    ``{{<template>|`` and closing ``}}``. It is only rewritten when it differs from
    the canonical rendering.
    """

    def __init__(self, annotation_template: str, invalid_template: str):
        self.annotation_template = annotation_template
        self.marker = "{{" + invalid_template + "}}"
        pattern = r"\{\{" + re.escape(annotation_template) + r"\|[^\n]*?\}\}"
        self._annotation_re = re.compile(pattern)
        self._annotation_line_re = re.compile(pattern + r"[ \t]*\n?")

    def annotation(self, counts: SectionCounts, profile: LimitProfile) -> str:
        return (
            f"{{{{{self.annotation_template}"
            f"|word={counts.words}|diff={counts.diffs}|link={counts.links}"
            f"|wLimit={_annotation_limit(profile.word)}"
            f"|dLimit={_annotation_limit(profile.diff)}"
            f"|lLimit={_annotation_limit(profile.link)}}}}}"
        )

    def existing_annotation(self, text: str) -> Optional[str]:
        m = self._annotation_re.search(text)
        return m.group(0) if m else None

    def synchronize(self, text: str, counts: SectionCounts, profile: LimitProfile) -> Optional[str]:
        """Return the section text with a current annotation, or None if nothing changes."""
        canonical = self.annotation(counts, profile)
        existing = self.existing_annotation(text)
        if existing == canonical:
            return None
        if existing is None:
            return _insert_below_heading(text, canonical)
        updated = self._annotation_re.sub(lambda _: canonical, text, count=1)
        head, _, tail = updated.partition(canonical)
        return head + canonical + self._annotation_re.sub("", tail)

    def mark_malformed(self, text: str) -> Optional[str]:
        """Swap any length annotation for the malformed-heading marker.

        Returns None when the marker is already present and no annotation remains.
        """
        stripped = self._annotation_line_re.sub("", text)
        if self.marker in stripped:
            return None if stripped == text else stripped
        return _insert_below_heading(stripped, self.marker)
