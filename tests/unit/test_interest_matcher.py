"""Unit tests for interest similarity, normalization and matcher strategies."""

from __future__ import annotations

import pytest

from pairchat.configurations.configuration_constants import NO_INTEREST
from pairchat.server.interest_matcher import (ExactInterestMatcher,
                                              FuzzyInterestMatcher,
                                              normalize_interests, similar)


class TestSimilar:
    """similar() compares two tags by containment or shared prefix."""

    def test_substring_matches(self) -> None:
        assert similar("dog", "dog sitting")
        assert similar("dog sitting", "dog")

    def test_shared_prefix_matches(self) -> None:
        assert similar("photography", "photos")

    def test_case_and_whitespace_ignored(self) -> None:
        assert similar("  Anime ", "ANIME")

    def test_unrelated_tags_do_not_match(self) -> None:
        assert not similar("cats", "birds")

    def test_prefix_shorter_than_minimum_does_not_match(self) -> None:
        # "ca" is shared but below the default minimum of 3
        assert not similar("cars", "cats")

    def test_custom_prefix_length(self) -> None:
        assert similar("cars", "cats", min_prefix_length=2)

    def test_empty_and_none_never_match(self) -> None:
        assert not similar("", "anything")
        assert not similar("   ", "   ")
        assert not similar(None, "x")

    def test_short_strings_do_not_raise(self) -> None:
        assert similar("a", "a")
        assert not similar("a", "b")


class TestNormalizeInterests:
    def test_none_gives_no_interest(self) -> None:
        assert normalize_interests(None) == [NO_INTEREST]

    def test_empty_list_gives_no_interest(self) -> None:
        assert normalize_interests([]) == [NO_INTEREST]
        assert normalize_interests(["", "   "]) == [NO_INTEREST]

    def test_comma_separated_string(self) -> None:
        assert normalize_interests("music, movies ,  ") == ["music", "movies"]

    def test_dedupes_case_insensitively_keeping_first(self) -> None:
        assert normalize_interests(["Music", "music", "MUSIC", "art"]) == ["Music", "art"]

    def test_collapses_inner_whitespace(self) -> None:
        assert normalize_interests(["  video    games "]) == ["video games"]

    def test_caps_count_and_length(self) -> None:
        tags = normalize_interests([f"tag{i}" for i in range(20)], max_interests=3, max_length=4)
        assert tags == ["tag0", "tag1", "tag2"]
        assert normalize_interests(["abcdefgh"], max_length=4) == ["abcd"]

    def test_client_cannot_send_sentinel(self) -> None:
        assert normalize_interests([NO_INTEREST, "chess"]) == ["chess"]

    def test_rejects_non_string_items(self) -> None:
        with pytest.raises(TypeError):
            normalize_interests(["ok", 3])

    def test_rejects_other_types(self) -> None:
        with pytest.raises(TypeError):
            normalize_interests({"music": True})


class TestFuzzyInterestMatcher:
    def test_overlap_on_any_pair(self) -> None:
        matcher = FuzzyInterestMatcher()
        assert matcher.overlaps(["cats", "dogs"], ["surfing", "dog sitting"])

    def test_no_interest_never_overlaps(self) -> None:
        matcher = FuzzyInterestMatcher()
        assert not matcher.overlaps([NO_INTEREST], [NO_INTEREST])
        assert not matcher.overlaps([NO_INTEREST], ["music"])

    def test_shared_interests_uses_first_sides_wording(self) -> None:
        matcher = FuzzyInterestMatcher()
        assert matcher.shared_interests(["Dogs", "chess", "movies"], ["dog sitting", "film"]) == "Dogs"

    def test_shared_interests_joins_multiple(self) -> None:
        matcher = FuzzyInterestMatcher()
        assert matcher.shared_interests(["music", "movies"], ["movie nights", "musicals"]) == "music, movies"

    def test_shared_interests_none_without_interests(self) -> None:
        matcher = FuzzyInterestMatcher()
        assert matcher.shared_interests([NO_INTEREST], ["music"]) is None
        assert matcher.shared_interests(["music"], ["surfing"]) is None


class TestExactInterestMatcher:
    def test_requires_equal_tags(self) -> None:
        matcher = ExactInterestMatcher()
        assert matcher.overlaps(["Chess"], ["chess "])
        assert not matcher.overlaps(["dogs"], ["dog sitting"])
