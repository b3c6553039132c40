from __future__ import annotations

import re
from typing import Optional

import pytest

from evidence_clerk.store import EditOutcome

_HEADING_RE = re.compile(r"^(={1,6})[ \t]*(.+?)[ \t]*\1[ \t]*$", re.MULTILINE)


class FakePageStore:
    """In-memory wiki. Queued outcomes are returned by the next writes, OK otherwise."""

    def __init__(self) -> None:
        self.pages: dict[str, str] = {}
        self.users: set[str] = set()
        self.outcomes: list[EditOutcome] = []
        self.pending: list[bool] = []
        self.edits: list[tuple[str, str, str, bool, Optional[int]]] = []
        self.new_sections: list[tuple[str, str, str]] = []
        self.logins = 0

    def _span(self, text: str, index: int) -> tuple[int, int]:
        headings = list(_HEADING_RE.finditer(text))
        if not 1 <= index <= len(headings):
            raise KeyError(index)
        current = headings[index - 1]
        level = len(current.group(1))
        end = len(text)
        for later in headings[index:]:
            if len(later.group(1)) <= level:
                end = later.start()
                break
        return current.start(), end

    def _next_outcome(self) -> EditOutcome:
        return self.outcomes.pop(0) if self.outcomes else EditOutcome.OK

    def get_text(self, title: str) -> Optional[str]:
        return self.pages.get(title)

    def get_section_text(self, title: str, index: int) -> str:
        text = self.pages.get(title, "")
        try:
            start, end = self._span(text, index)
        except KeyError:
            return ""
        return text[start:end].rstrip("\n")

    def edit(self, title, text, summary, minor=False, section=None) -> EditOutcome:
        outcome = self._next_outcome()
        if outcome is not EditOutcome.OK:
            return outcome
        self.edits.append((title, text, summary, minor, section))
        if section is None:
            self.pages[title] = text
        else:
            page = self.pages[title]
            start, end = self._span(page, section)
            old = page[start:end]
            trailing = old[len(old.rstrip("\n")):]
            self.pages[title] = page[:start] + text + trailing + page[end:]
        return outcome

    def new_section(self, title, header, body) -> EditOutcome:
        outcome = self._next_outcome()
        if outcome is not EditOutcome.OK:
            return outcome
        self.new_sections.append((title, header, body))
        self.pages[title] = self.pages.get(title, "") + f"\n\n== {header} ==\n{body}"
        return outcome

    def user_exists(self, name: str) -> bool:
        return name in self.users

    def has_pending_messages(self) -> bool:
        return self.pending.pop(0) if self.pending else False

    def login(self) -> bool:
        self.logins += 1
        return True


@pytest.fixture
def store() -> FakePageStore:
    return FakePageStore()
