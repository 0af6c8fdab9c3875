"""Tests for fuzzy text scoring and the merchant rule registry."""

import pytest

from receipt_finder.matching.fuzzy import is_fuzzy_match, levenshtein_distance, similarity
from receipt_finder.matching.merchant_rules import MERCHANT_RULES, get_merchant_rule


class TestLevenshtein:
    """Tests for edit distance."""

    @pytest.mark.parametrize(
        "a,b,expected",
        [
            ("", "", 0),
            ("abc", "", 3),
            ("kitten", "sitting", 3),
            ("uber", "uber", 0),
            ("flaw", "lawn", 2),
        ],
    )
    def test_distance(self, a, b, expected) -> None:
        """Test known edit distances."""
        assert levenshtein_distance(a, b) == expected

    def test_symmetric(self) -> None:
        """Test distance does not depend on argument order."""
        assert levenshtein_distance("spotify", "spotfy") == levenshtein_distance("spotfy", "spotify")


class TestSimilarity:
    """Tests for normalized similarity."""

    def test_identical(self) -> None:
        """Test identical strings score 1.0."""
        assert similarity("uber", "uber") == 1.0

    def test_case_insensitive(self) -> None:
        """Test case does not matter."""
        assert similarity("Uber", "UBER") == 1.0

    def test_empty_scores_zero(self) -> None:
        """Test empty input on either side scores 0.0."""
        assert similarity("", "x") == 0.0
        assert similarity("x", "") == 0.0

    def test_bounded(self) -> None:
        """Test completely different strings stay within [0, 1]."""
        value = similarity("abc", "xyz")
        assert 0.0 <= value <= 1.0
        assert value == 0.0

    def test_one_typo(self) -> None:
        """Test one substitution in eight chars."""
        assert similarity("hetzener", "hetzner") == pytest.approx(0.875)

    def test_fuzzy_match_threshold(self) -> None:
        """Test is_fuzzy_match honours the threshold."""
        assert is_fuzzy_match("spotify", "spotfy", 0.8) is True
        assert is_fuzzy_match("spotify", "netflix", 0.8) is False


class TestMerchantRules:
    """Tests for the merchant rule registry."""

    def test_direct_key(self) -> None:
        """Test lookup by canonical key."""
        assert get_merchant_rule("Uber") is MERCHANT_RULES["uber"]

    def test_contained_name(self) -> None:
        """Test lookup when the merchant string contains a rule name."""
        rule = get_merchant_rule("Spotify AB Stockholm")
        assert rule is not None
        assert rule.name == "Spotify"

    def test_unknown_merchant(self) -> None:
        """Test unknown merchants have no rule."""
        assert get_merchant_rule("Corner Bakery") is None

    def test_keyword_and_domain(self) -> None:
        """Test keyword and domain lookups are case-insensitive."""
        rule = MERCHANT_RULES["uber"]
        assert rule.find_keyword("Your TRIP with Uber") == "Trip"
        assert rule.find_domain("Uber Receipts <NoReply@Uber.com>") == "uber.com"
        assert rule.find_keyword("Newsletter") is None
