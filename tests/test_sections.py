from evidence_clerk.config import LimitDefaults
from evidence_clerk.core import SectionCounts
from evidence_clerk.sections import (
    SectionUpdater,
    decode_char_refs,
    derive_username,
    enumerate_sections,
    is_valid_heading,
)


BASE = LimitDefaults().base_profile()
UPDATER = SectionUpdater("User:EvidenceClerkBot/Length header", "User:EvidenceClerkBot/InvalidSectionName")
ANNOTATION = "{{User:EvidenceClerkBot/Length header|word=2|diff=0|link=0|wLimit=500|dLimit=50|lLimit=-1}}"
MARKER = "{{User:EvidenceClerkBot/InvalidSectionName}}"

EVIDENCE_PAGE = """Intro text.
== Evidence presented by A ==
text
=== Sub heading ===
more
== Evidence presented by B ==
x
"""


def _nobody(_name):
    return False


class TestHeadings:
    def test_valid_headings(self):
        assert is_valid_heading("Evidence presented by Foo")
        assert is_valid_heading("Evidence submitted by Bar (uninvolved)")

    def test_invalid_headings(self):
        assert not is_valid_heading("Statement by Foo")
        assert not is_valid_heading("evidence presented by foo")
        assert not is_valid_heading("Evidence presented by {{u|Foo}}")

    def test_enumerate_sections_counts_every_heading(self):
        assert enumerate_sections(EVIDENCE_PAGE) == [(1, "Evidence presented by A"), (3, "Evidence presented by B")]
        assert enumerate_sections(None) == []


class TestUsernames:
    def test_plain(self):
        assert derive_username("Evidence presented by Foo", _nobody) == "Foo"

    def test_uninvolved_qualifiers(self):
        assert derive_username("Evidence presented by Foo (uninvolved)", _nobody) == "Foo"
        assert derive_username("Evidence presented by Foo (uninvolved editor)", _nobody) == "Foo"
        assert derive_username("Evidence presented by uninvolved editor Zed", _nobody) == "Zed"

    def test_user_links(self):
        assert derive_username("Evidence presented by [[User:Foo Bar|Foo]]", _nobody) == "Foo Bar"
        assert derive_username("Evidence submitted by User:Baz", _nobody) == "Baz"

    def test_user_talk_links(self):
        assert derive_username("Evidence presented by [[User talk:Foo/Archive|talk]]", _nobody) == "Foo"

    def test_qualifier_only_heading_names_nobody(self):
        assert derive_username("Evidence presented by uninvolved", _nobody) == ""
        assert derive_username("Evidence presented by (uninvolved editor)", _nobody) == ""

    def test_parenthetical_dropped_for_unknown_account(self):
        assert derive_username("Evidence presented by Qux (party)", _nobody) == "Qux"

    def test_parenthetical_kept_for_known_account(self):
        assert derive_username("Evidence presented by Qux (party)", lambda name: name == "Qux (party)") == "Qux (party)"

    def test_char_refs_decoded(self):
        assert derive_username("Evidence presented by O&#39;Brien", _nobody) == "O'Brien"
        assert decode_char_refs("A&#x26;B") == "A&B"


class TestSectionUpdater:
    def test_annotation_format(self):
        assert UPDATER.annotation(SectionCounts(2, 0, 0), BASE) == ANNOTATION

    def test_inserts_below_heading(self):
        text = "== Evidence presented by Foo ==\nSome words."
        updated = UPDATER.synchronize(text, SectionCounts(2, 0, 0), BASE)
        assert updated == f"== Evidence presented by Foo ==\n{ANNOTATION}\nSome words."

    def test_second_application_is_noop(self):
        text = "== Evidence presented by Foo ==\nSome words."
        updated = UPDATER.synchronize(text, SectionCounts(2, 0, 0), BASE)
        assert UPDATER.synchronize(updated, SectionCounts(2, 0, 0), BASE) is None

    def test_rewrites_stale_annotation(self):
        stale = ANNOTATION.replace("word=2", "word=1")
        text = f"== Evidence presented by Foo ==\n{stale}\nSome words."
        updated = UPDATER.synchronize(text, SectionCounts(2, 0, 0), BASE)
        assert updated == f"== Evidence presented by Foo ==\n{ANNOTATION}\nSome words."
        assert updated.count("Length header") == 1

    def test_mark_malformed_replaces_annotation(self):
        text = f"== Statement by Foo ==\n{ANNOTATION}\nStuff"
        assert UPDATER.mark_malformed(text) == f"== Statement by Foo ==\n{MARKER}\nStuff"

    def test_mark_malformed_is_idempotent(self):
        marked = UPDATER.mark_malformed("== Statement by Foo ==\nStuff")
        assert marked == f"== Statement by Foo ==\n{MARKER}\nStuff"
        assert UPDATER.mark_malformed(marked) is None
