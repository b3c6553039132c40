# Evidence length counter for arbitration evidence sections.
#
# Normalizes wiki markup into countable text with a fixed-order chain of transforms
# and derives word, diff and link counts for one section. Templates are handled on
# the parsed wikitext tree; the remaining transforms are compiled regexes.

from __future__ import annotations

import re
from dataclasses import dataclass
from functools import reduce
from typing import Callable, Optional

import mwparserfromhell as mwpfh
from mwparserfromhell.nodes import Template

# ---------------------------------------------------------------------------
# Dataclasses
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SectionCounts:
    words: int = 0
    diffs: int = 0
    links: int = 0

    def to_payload(self) -> dict[str, object]:
        return {
            "type": "SectionCounts",
            "words": self.words,
            "diffs": self.diffs,
            "links": self.links,
        }


_Transform = Callable[[str], str]

# ---------------------------------------------------------------------------
# Compiled patterns
# ---------------------------------------------------------------------------

# Dummy diff URL substituted for diff templates. The word counter discards it with
# the other bare URLs; the diff counter recognizes it as a diff.
PSEUDO_DIFF_LINK = "http://en.wikipedia.org/w/index.php?title=foo&diff=123"

_ARCHIVED_BLOCK_RE = re.compile(
    r"\{\{\s*(?:hat|hidden archive top)\s*(?:\|[^{}]*)?\}\}"
    r".*?"
    r"\{\{\s*(?:hab|hidden archive bottom)\s*\}\}",
    re.IGNORECASE | re.DOTALL,
)
_LIST_MARKER_RE = re.compile(r"^[*#:;]+", re.MULTILINE)
_NEWLINE_RE = re.compile(r"\r?\n")
_HEADER_RES = [re.compile("=" * depth + r"[^=]*" + "=" * depth) for depth in range(6, 1, -1)]
_HTML_COMMENT_RE = re.compile(r"<!--.*?-->", re.DOTALL)
_HTML_TAG_RE = re.compile(r"<[^<>]*>")
_EXTERNAL_LINK_RE = re.compile(r"\[(?:https?:)?//[^\s\]]*\s*([^\]]*)\]")
_BARE_URL_RE = re.compile(r"(?:https?:)?//\S+")
_INTERNAL_LINK_TARGET_RE = re.compile(r"\[\[[^\[\]|]*\|")
_LINK_BRACKETS_RE = re.compile(r"\[\[|\]\]")
_TIMESTAMP_RE = re.compile(r"[0-2]?\d:[0-5]\d, [1-3]?\d [A-Z][a-z]{2,8} \d{4} \(UTC\)")
_MULTI_SPACE_RE = re.compile(r"\s\s+")

DIFF_LINK_RE = re.compile(r"/w/index\.php[^\]\s]*?diff")
_PROTOCOL_RE = re.compile(r"https?://")

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _rewrite_templates(text: str, rewrite: Callable[[Template], Optional[str]]) -> str:
    """Replace every template for which ``rewrite`` returns a string.

    Nested templates are visited before the templates that contain them, so an
    outer template sees its arguments already rewritten.
    """
    code = mwpfh.parse(text)
    for template in reversed(code.filter_templates()):
        replacement = rewrite(template)
        if replacement is not None:
            code.replace(template, replacement)
    return str(code)


def _is_diff(template: Template) -> bool:
    return template.name.matches(("diff", "diff2"))


def _diff_label(template: Template) -> str:
    """Return the visible label of a diff template.

    ``{{diff|page|diffid|oldid|label}}`` keeps its label in the fourth positional
    argument; ``{{diff2|diffid|...|label}}`` takes a variable number of optional
    arguments and shows the last one. A named ``label=`` argument wins for both.
    """
    if template.has("label"):
        return str(template.get("label").value).strip()
    positional = [str(param.value).strip() for param in template.params if not param.showkey]
    if template.name.matches("diff2"):
        return positional[-1] if len(positional) > 1 else ""
    return " ".join(positional[3:])


def _substitute_diffs(text: str, keep_label: bool) -> str:
    def _replace(template: Template) -> Optional[str]:
        if not _is_diff(template):
            return None
        if not keep_label:
            return f" {PSEUDO_DIFF_LINK} "
        return f" {PSEUDO_DIFF_LINK} {_diff_label(template)} "

    return _rewrite_templates(text, _replace)


def strip_archived(text: str) -> str:
    return _ARCHIVED_BLOCK_RE.sub(" ", text)


def strip_templates(text: str) -> str:
    return _rewrite_templates(text, lambda _: " ")


def strip_lists(text: str) -> str:
    return _LIST_MARKER_RE.sub(" ", text)


def strip_newlines(text: str) -> str:
    return _NEWLINE_RE.sub(" ", text)


def strip_headers(text: str) -> str:
    for pattern in _HEADER_RES:
        text = pattern.sub(" ", text)
    return text


def strip_html(text: str) -> str:
    return _HTML_TAG_RE.sub("", _HTML_COMMENT_RE.sub("", text))


def strip_external_links(text: str) -> str:
    text = _EXTERNAL_LINK_RE.sub(lambda m: f" {m.group(1)} ", text)
    return _BARE_URL_RE.sub(" ", text)


def clean_internal_links(text: str) -> str:
    return _LINK_BRACKETS_RE.sub("", _INTERNAL_LINK_TARGET_RE.sub(" ", text))


def strip_timestamps(text: str) -> str:
    return _TIMESTAMP_RE.sub(" ", text)


def collapse_whitespace(text: str) -> str:
    return _MULTI_SPACE_RE.sub(" ", text)


# ---------------------------------------------------------------------------
# Pipeline wiring
# ---------------------------------------------------------------------------

# Diff substitution runs before generic template stripping, otherwise the diff
# templates are removed along with everything else.
_WORD_PIPELINE: list[_Transform] = [
    strip_archived,
    lambda text: _substitute_diffs(text, keep_label=True),
    strip_templates,
    strip_lists,
    strip_newlines,
    strip_headers,
    strip_html,
    strip_external_links,
    clean_internal_links,
    strip_timestamps,
    collapse_whitespace,
    str.strip,
]

_LINK_PIPELINE: list[_Transform] = [
    strip_newlines,
    strip_archived,
    lambda text: _substitute_diffs(text, keep_label=False),
    strip_templates,
    strip_html,
]


def _run_pipeline(text: str, pipeline: list[_Transform]) -> str:
    return reduce(lambda acc, transform: transform(acc), pipeline, text)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def normalize_for_word_count(text: str) -> str:
    """Reduce section wikitext to the plain text whose words are counted."""
    return _run_pipeline(text or "", _WORD_PIPELINE)


def strip_for_link_count(text: str) -> str:
    """Lighter strip used for diff and link counting; links and headers survive."""
    return _run_pipeline(text or "", _LINK_PIPELINE)


def word_count(normalized_text: str) -> int:
    return sum(1 for token in normalized_text.split() if any(ch.isalnum() for ch in token))


def diff_count(text: str) -> int:
    stripped = strip_for_link_count(text)
    return max(0, len(DIFF_LINK_RE.split(stripped)) - 1)


def link_count(text: str, diffs: int) -> int:
    stripped = strip_for_link_count(text)
    return max(0, len(_PROTOCOL_RE.split(stripped)) - 1 - diffs)


def count_section(text: str) -> SectionCounts:
    """Count the words, diffs and other links in one evidence section.

    Args:
        text: Raw wikitext of the section, heading included.

    Returns:
        A SectionCounts. Empty or whitespace-only text counts as zero throughout.
    """
    if not text or not text.strip():
        return SectionCounts()
    diffs = diff_count(text)
    return SectionCounts(
        words=word_count(normalize_for_word_count(text)),
        diffs=diffs,
        links=link_count(text, diffs),
    )
