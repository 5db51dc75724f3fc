"""Tests for content-identity deduplication."""

from typing import List

import pytest

from content_deduplicator import ContentDeduplicator, deduplicate

MZ = "https://is1-ssl.mzstatic.com/image/thumb/PurpleSource126/v4"
UUID_A = "0a1b2c3d-1111-4222-8333-444455556661"
UUID_B = "0a1b2c3d-1111-4222-8333-444455556662"


@pytest.fixture
def deduplicator() -> ContentDeduplicator:
    return ContentDeduplicator()


class TestNamingScheme:
    def test_sequential_beats_hash_on_tie(self, deduplicator: ContentDeduplicator) -> None:
        urls = [f"{MZ}/{UUID_A}/1_of_2.png/392x696bb.jpg", f"{MZ}/{UUID_B}/2_of_2.png/392x696bb.jpg"]
        naming = deduplicator.analyze_naming(urls)

        assert naming.counts["sequential"] == 2
        assert naming.counts["hash"] == 2
        assert naming.scheme == "sequential"

    def test_numeric_suffix_ignored_with_sequence_token(self, deduplicator: ContentDeduplicator) -> None:
        naming = deduplicator.analyze_naming(["https://cdn/x/1_of_2-3.png", "https://cdn/x/screen-4.png"])
        assert naming.counts["numbered"] == 1

    def test_no_scheme(self, deduplicator: ContentDeduplicator) -> None:
        assert deduplicator.analyze_naming(["https://cdn/x/home.png"]).scheme == "none"

    def test_content_id_falls_back_to_base_name(self, deduplicator: ContentDeduplicator) -> None:
        assert deduplicator.content_id("https://cdn/x/home_new.png", "sequential") == "fallback_home"
        assert deduplicator.content_id("https://cdn/x/3_of_5.png", "sequential") == "seq_3"
        assert deduplicator.content_id("https://cdn/x/Slice_2.png", "slice") == "slice_2"


class TestDeduplicate:
    def test_prefers_new_over_orig(self, sequence_urls: List[str]) -> None:
        assert deduplicate(sequence_urls, "phone") == [
            "a/1_of_3_new.jpg",
            "a/2_of_3_new.jpg",
            "a/3_of_3_new.jpg",
        ]

    def test_retry_loses_to_new(self) -> None:
        assert deduplicate(["a/1_of_2_retry.jpg", "a/1_of_2_new.jpg"]) == ["a/1_of_2_new.jpg"]

    def test_largest_non_thumbnail_wins(self) -> None:
        variants = [
            "HomeScreen_300x0w.png",
            "HomeScreen_thumb.png",
            "HomeScreen_640x1136.png",
            "HomeScreen_1242x2688_thumb.png",
            "HomeScreen_750x1334.png",
            "HomeScreen_1242x2688.png",
            "HomeScreen_828x1792.png",
            "HomeScreen_300x0w_thumb.png",
            "HomeScreen_1125x2436.png",
            "HomeScreen_392x696bb.jpg",
        ]
        urls = [f"https://cdn.example.com/shots/{name}" for name in variants]

        assert deduplicate(urls, "phone") == ["https://cdn.example.com/shots/HomeScreen_1242x2688.png"]

    def test_cdn_renditions_collapse_to_largest(self) -> None:
        small = f"{MZ}/{UUID_A}/1_of_2.png/392x696bb.jpg"
        large = f"{MZ}/{UUID_A}/1_of_2.png/1242x2688bb.jpg"
        other = f"{MZ}/{UUID_B}/2_of_2.png/392x696bb.jpg"

        assert deduplicate([small, other, large]) == [large, other]

    def test_hyphenated_sizes_collapse_to_one(self) -> None:
        urls = ["https://cdn/x/Home-640x1136.png", "https://cdn/x/Home-1242x2688.png"]
        assert deduplicate(urls, "phone") == ["https://cdn/x/Home-1242x2688.png"]

    def test_same_rendition_size_keeps_distinct_screens(self) -> None:
        urls = ["https://cdn/x/home.png/392x696bb.jpg", "https://cdn/x/settings.png/392x696bb.jpg"]
        assert deduplicate(urls, "phone") == urls

    def test_tablet_prefers_simpler_names(self) -> None:
        simple_but_long = "https://cdn/x/Slice_1-ipadproportraitversion.png"
        complex_but_short = "https://cdn/x/Slice_1_a_b.png"

        assert deduplicate([complex_but_short, simple_but_long], "tablet") == [simple_but_long]
        assert deduplicate([complex_but_short, simple_but_long], "phone") == [complex_but_short]

    def test_sorted_by_index(self) -> None:
        urls = ["https://cdn/x/screen-3.png", "https://cdn/x/screen-1.png", "https://cdn/x/screen-2.png"]
        assert deduplicate(urls) == [
            "https://cdn/x/screen-1.png",
            "https://cdn/x/screen-2.png",
            "https://cdn/x/screen-3.png",
        ]

    def test_indexed_before_unindexed(self) -> None:
        urls = ["https://cdn/x/zeta.png", "https://cdn/x/alpha.png", "https://cdn/x/screen-2.png"]
        assert deduplicate(urls) == [
            "https://cdn/x/screen-2.png",
            "https://cdn/x/alpha.png",
            "https://cdn/x/zeta.png",
        ]

    def test_exact_duplicates_and_blanks_removed(self) -> None:
        assert deduplicate(["a/1_of_1.jpg", "", "a/1_of_1.jpg"]) == ["a/1_of_1.jpg"]

    def test_empty(self) -> None:
        assert deduplicate([]) == []

    def test_output_is_pure_function_of_input(self, sequence_urls: List[str]) -> None:
        assert deduplicate(sequence_urls) == deduplicate(list(sequence_urls))
