"""Tests for query patterns, ranking modes and case handling."""

import pytest

from frecent import (
    CaseMode,
    Entry,
    Matcher,
    QueryPattern,
    Ranking,
    best_match,
    frecency,
)


def table(*rows):
    """Build {path: Entry} from (path, rank, last_access) rows."""
    return {path: Entry(path, float(rank), when) for path, rank, when in rows}


class TestQueryPattern:
    """Test the ordered-substring tokenizer."""

    def test_parse_tokens(self):
        """Test whitespace tokenization."""
        pattern = QueryPattern.parse("  foo   bar ")

        assert pattern.tokens == ("foo", "bar")
        assert pattern.anchor is None

    def test_tokens_in_order(self):
        """Test that tokens must appear in order, not adjacent."""
        pattern = QueryPattern.parse("foo bar")

        assert pattern.matches("/foo/bat/bar/quux")
        assert not pattern.matches("/bar/foo")

    def test_tokens_do_not_overlap(self):
        """Test that each token consumes its own characters."""
        assert not QueryPattern.parse("ab ba").matches("/aba")
        assert QueryPattern.parse("ab ba").matches("/abba")

    def test_empty_query_matches_everything(self):
        """Test that no tokens match any path."""
        assert QueryPattern.parse("").matches("/anything")

    def test_ignore_case(self):
        """Test case-insensitive comparison."""
        pattern = QueryPattern.parse("foo")

        assert not pattern.matches("/Foo/Bar")
        assert pattern.matches("/Foo/Bar", ignore_case=True)

    def test_anchor_restricts_to_descendants(self):
        """Test anchoring to a root directory."""
        pattern = QueryPattern.parse("docs", anchor="/src/project")

        assert pattern.matches("/src/project/docs")
        assert not pattern.matches("/src/projectX/docs")
        assert not pattern.matches("/elsewhere/docs")

    def test_anchor_tokens_searched_after_root(self):
        """Test that the anchor text itself cannot satisfy a token."""
        pattern = QueryPattern.parse("project", anchor="/src/project")

        assert not pattern.matches("/src/project/docs")
        assert pattern.matches("/src/project/sub-project")

    def test_has_uppercase(self):
        """Test detection of mixed-case queries."""
        assert QueryPattern.parse("Foo").has_uppercase()
        assert not QueryPattern.parse("foo bar").has_uppercase()

    def test_count_in(self):
        """Test occurrence counting used by uncommon trimming."""
        pattern = QueryPattern.parse("foo")

        assert pattern.count_in("/foo/x/foo") == 2
        assert pattern.count_in("/Foo/x/foo") == 1
        assert pattern.count_in("/Foo/x/foo", ignore_case=True) == 2


class TestFrecency:
    """Test the continuous frecency curve."""

    def test_just_visited(self):
        """Test the 4x multiplier at zero age."""
        assert frecency(10, 1000, 1000) == pytest.approx(40.0)

    def test_known_value(self):
        """Test the formula at one hour."""
        expected = 2 * (3.75 / (0.0001 * 3600 + 1) + 0.25)

        assert frecency(2, 0, 3600) == pytest.approx(expected)

    def test_tends_to_quarter(self):
        """Test the long-term floor of 0.25x."""
        assert frecency(8, 0, 10 ** 12) == pytest.approx(2.0, rel=1e-3)


class TestMatcher:
    """Test scoring and best-match selection."""

    def test_rank_mode(self):
        """Test that rank mode picks the highest stored rank."""
        entries = table(("/a", 6, 100), ("/b", 3, 900))
        found = Matcher(Ranking.RANK, now=1000).match(entries, QueryPattern.parse("/"))

        assert found.best == "/a"
        assert found.matches == {"/a": 6.0, "/b": 3.0}

    def test_time_mode(self):
        """Test that time mode picks the most recent access."""
        entries = table(("/a", 6, 100), ("/b", 3, 900))
        found = Matcher(Ranking.TIME, now=1000).match(entries, QueryPattern.parse("/"))

        assert found.best == "/b"
        assert found.matches == {"/a": -900.0, "/b": -100.0}

    def test_frecency_mode(self):
        """Test that frecency balances rank against age."""
        entries = table(("/old", 10, 0), ("/new", 2, 10 ** 6))
        found = Matcher(now=10 ** 6).match(entries, QueryPattern.parse(""))

        # 10 * ~0.287 vs 2 * 4
        assert found.best == "/new"

    def test_ties_resolve_to_smallest_path(self):
        """Test deterministic tie-breaking."""
        entries = table(("/b", 5, 1), ("/a", 5, 1), ("/c", 5, 1))

        for _ in range(3):
            found = Matcher(Ranking.RANK, now=2).match(entries, QueryPattern.parse(""))
            assert found.best == "/a"

    def test_no_match(self):
        """Test that nothing matching is an empty result."""
        found = Matcher(now=1).match(table(("/a", 1, 1)), QueryPattern.parse("zzz"))

        assert found.best is None
        assert found.matches == {}
        assert found.case_insensitive is False

    def test_case_insensitive_fallback(self):
        """Test that a lowercase query finds a mixed-case path."""
        found = Matcher(now=1).match(table(("/Foo/Bar", 1, 1)), QueryPattern.parse("foo"))

        assert found.best == "/Foo/Bar"
        assert found.case_insensitive is True

    def test_case_sensitive_preferred(self):
        """Test that a case-sensitive match beats a better insensitive one."""
        entries = table(("/Foo/Bar", 100, 1), ("/foo/bar", 1, 1))
        found = Matcher(now=1).match(entries, QueryPattern.parse("foo"))

        assert found.best == "/foo/bar"
        assert found.matches == {"/foo/bar": pytest.approx(frecency(1, 1, 1))}
        assert found.case_insensitive is False

    def test_ignore_mode(self):
        """Test that ignore mode pools both spellings."""
        entries = table(("/Foo/Bar", 100, 1), ("/foo/bar", 1, 1))
        found = Matcher(Ranking.RANK, CaseMode.IGNORE, now=1).match(
            entries, QueryPattern.parse("FOO")
        )

        assert found.best == "/Foo/Bar"
        assert set(found.matches) == {"/Foo/Bar", "/foo/bar"}
        assert found.case_insensitive is True

    def test_smart_mode_lowercase_query(self):
        """Test that an all-lowercase query ignores case."""
        entries = table(("/Foo/Bar", 100, 1), ("/foo/bar", 1, 1))
        found = Matcher(Ranking.RANK, CaseMode.SMART, now=1).match(
            entries, QueryPattern.parse("foo")
        )

        assert found.best == "/Foo/Bar"
        assert found.case_insensitive is True

    def test_smart_mode_uppercase_query(self):
        """Test that a query with capitals is case-sensitive only."""
        entries = table(("/foo/bar", 100, 1), ("/FOO/bar", 1, 1))
        pattern = QueryPattern.parse("Foo")

        assert Matcher(Ranking.RANK, CaseMode.SMART, now=1).match(entries, pattern).best is None

    def test_accepts_string_modes(self):
        """Test that plain strings select modes."""
        matcher = Matcher("rank", "ignore", now=1)

        assert matcher.ranking is Ranking.RANK
        assert matcher.case_mode is CaseMode.IGNORE

    def test_best_match_helper(self):
        """Test best_match directly."""
        assert best_match({}) is None
        assert best_match({"/z": 2.0, "/y": 2.0, "/x": 1.0}) == "/y"
