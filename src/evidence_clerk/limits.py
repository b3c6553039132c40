from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional

import mwparserfromhell as mwpfh

from evidence_clerk.core import SectionCounts

logger = logging.getLogger(__name__)

DISABLED = None
ALL = "all"


@dataclass(frozen=True)
class MetricLimit:
    """A limit and its tolerance. ``limit=None`` is unbounded and always carries tolerance 1.0."""

    limit: Optional[int]
    tolerance: float = 1.0

    @classmethod
    def of(cls, limit: Optional[int], tolerance: float) -> MetricLimit:
        if limit is DISABLED:
            return cls(DISABLED, 1.0)
        return cls(limit, tolerance)

    @property
    def unbounded(self) -> bool:
        return self.limit is None

    @property
    def threshold(self) -> float:
        return float("inf") if self.limit is None else self.limit * self.tolerance

    def exceeded(self, count: int) -> bool:
        return count > self.threshold

    def at_limit(self, count: int) -> bool:
        return self.limit is not None and self.limit < count <= self.threshold


@dataclass(frozen=True)
class LimitProfile:
    word: MetricLimit
    diff: MetricLimit
    link: MetricLimit
    is_override: bool = False

    def metrics(self, counts: SectionCounts) -> list[tuple[str, int, MetricLimit]]:
        return [
            ("Word", counts.words, self.word),
            ("Diff", counts.diffs, self.diff),
            ("Link", counts.links, self.link),
        ]

    def exceeded_by(self, counts: SectionCounts) -> bool:
        return any(limit.exceeded(count) for _, count, limit in self.metrics(counts))

    def to_payload(self) -> dict[str, object]:
        return {
            "type": "LimitProfile",
            "word": [self.word.limit, self.word.tolerance],
            "diff": [self.diff.limit, self.diff.tolerance],
            "link": [self.link.limit, self.link.tolerance],
            "override": self.is_override,
        }


@dataclass
class OverrideTable:
    """Per-user, per-case limit profiles.

    Explicit overrides come from the configuration page. Party defaults are added for
    users named in a case's party list and never displace an existing entry; an
    explicit override always replaces a party default.
    """

    explicit: dict[str, dict[str, LimitProfile]] = field(default_factory=dict)
    party: dict[str, dict[str, LimitProfile]] = field(default_factory=dict)

    def set_override(self, username: str, case_name: str, profile: LimitProfile) -> None:
        self.explicit.setdefault(username, {})[case_name] = profile
        self.party.get(username, {}).pop(case_name, None)

    def add_party_default(self, username: str, case_name: str, profile: LimitProfile) -> bool:
        if self.get(username, case_name) is not None:
            return False
        self.party.setdefault(username, {})[case_name] = profile
        return True

    def get(self, username: str, case_name: str) -> Optional[LimitProfile]:
        found = self.explicit.get(username, {}).get(case_name)
        if found is None:
            found = self.party.get(username, {}).get(case_name)
        return found

    def explicit_for(self, username: str, case_name: str) -> Optional[LimitProfile]:
        return self.explicit.get(username, {}).get(case_name)

    def party_for(self, username: str, case_name: str) -> Optional[LimitProfile]:
        return self.party.get(username, {}).get(case_name)


class LimitResolver:
    """Resolve the limit profile that applies to a user in a case.

    Precedence: explicit (user, case), explicit (user, "all"), explicit ("all", case),
    then the party default when the user is a party to the case, else the base default.
    """

    def __init__(self, base: LimitProfile, table: Optional[OverrideTable] = None):
        self.base = base
        self.table = table if table is not None else OverrideTable()

    def resolve(self, username: str, case_name: str) -> LimitProfile:
        for user_key, case_key in ((username, case_name), (username, ALL), (ALL, case_name)):
            found = self.table.explicit_for(user_key, case_key)
            if found is not None:
                return found
        party = self.table.party_for(username, case_name)
        return party if party is not None else self.base


def extract_party_usernames(party_section: Optional[str]) -> list[str]:
    """Usernames named by ``{{admin|...}}`` or ``{{userlinks|...}}`` in a party list."""
    if not party_section:
        return []
    names = []
    for template in mwpfh.parse(party_section).filter_templates():
        if template.name.matches(("admin", "userlinks")) and template.has("1"):
            name = str(template.get("1").value).strip()
            if name:
                names.append(name)
    return names


def build_override_table(
    overrides: Iterable[tuple[str, str, LimitProfile]],
    parties: dict[str, list[str]],
    party_profile: LimitProfile,
) -> OverrideTable:
    """Build the run's override table from configuration overrides and case party lists."""
    table = OverrideTable()
    for username, case_name, profile in overrides:
        table.set_override(username, case_name, profile)
    for case_name, usernames in parties.items():
        for username in usernames:
            if table.add_party_default(username, case_name, party_profile):
                logger.debug(f"Party default applied to {username} in {case_name}")
    return table
