"""
Strategy-driven screenshot filtering

Applies the strategy chosen by the pattern analyzer instead of a fixed cap.
"""

import logging
import math
from typing import Dict, List, Optional, Set, Tuple

from content_deduplicator import unique_urls
from image_urls import base_name, parse_dimensions, sequence_info, slice_index
from pattern_analyzer import FilterDecision, PatternAnalyzer
from screenshot_rules import score_quality

logger = logging.getLogger(__name__)


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _best(urls: List[str]) -> str:
    """Highest quality score, earliest URL on ties"""
    return max(urls, key=score_quality)


def _rank_by_quality(urls: List[str]) -> List[str]:
    # sorted() is stable so equal scores keep their input order
    return sorted(urls, key=score_quality, reverse=True)


def _in_input_order(urls: List[str], kept: Set[str]) -> List[str]:
    # Each kept URL once, at its first position
    return [url for url in dict.fromkeys(urls) if url in kept]


class SmartFilter:
    """Filters a platform's screenshots according to their detected patterns"""

    def __init__(self, analyzer: Optional[PatternAnalyzer] = None):
        self.analyzer = analyzer or PatternAnalyzer()

    def filter(self, screenshots: List[str], platform: str = 'phone') -> List[str]:
        screenshots = unique_urls(screenshots or [])
        if not screenshots:
            return []

        decision = self.analyzer.analyze_collection(screenshots, platform)
        if not decision.needs_filtering:
            logger.debug(f"No filtering needed - keeping all {len(screenshots)} screenshots")
            return list(screenshots)

        logger.debug(f"Applying {decision.strategy} strategy: {decision.recommendation.rationale}")
        filtered = self.apply_strategy(screenshots, decision)
        logger.info(
            f"Filtered {platform} screenshots from {len(screenshots)} to {len(filtered)} "
            f"using {decision.strategy}"
        )
        return filtered

    def apply_strategy(self, screenshots: List[str], decision: FilterDecision) -> List[str]:
        strategies = {
            'respect_sequence': self.respect_sequence,
            'respect_slices': self.respect_slices,
            'deduplicate_aggressive': self.deduplicate_aggressive,
            'quality_filter': self.quality_filter,
            'platform_optimize': self.platform_optimize,
        }
        apply = strategies.get(decision.strategy)
        if apply is None:
            return list(screenshots)
        return apply(screenshots, decision.recommendation.max_count)

    def respect_sequence(self, screenshots: List[str], expected: int) -> List[str]:
        by_index: Dict[int, List[str]] = {}
        for url in screenshots:
            info = sequence_info(url)
            if info is None:
                continue
            k, total = info
            if total == expected and 1 <= k <= expected:
                by_index.setdefault(k, []).append(url)

        return [_best(by_index[k]) for k in range(1, expected + 1) if k in by_index]

    def respect_slices(self, screenshots: List[str], expected: int) -> List[str]:
        by_index: Dict[int, List[str]] = {}
        for url in screenshots:
            k = slice_index(url)
            if k is not None and 0 <= k < expected:
                by_index.setdefault(k, []).append(url)

        return [_best(by_index[k]) for k in range(expected) if k in by_index]

    def deduplicate_aggressive(self, screenshots: List[str], max_count: int) -> List[str]:
        groups: Dict[str, List[str]] = {}
        for url in screenshots:
            groups.setdefault(base_name(url), []).append(url)

        ranked = sorted(
            groups.values(),
            key=lambda urls: sum(score_quality(u) for u in urls) / len(urls),
            reverse=True,
        )
        kept = {_best(urls) for urls in ranked[:max_count]}
        logger.debug(f"Aggressive deduplication: {len(groups)} groups -> {len(kept)} screenshots")
        return _in_input_order(screenshots, kept)

    def quality_filter(self, screenshots: List[str], max_count: int) -> List[str]:
        kept = set(_rank_by_quality(screenshots)[:max_count])
        return _in_input_order(screenshots, kept)

    def platform_optimize(self, screenshots: List[str], max_count: int) -> List[str]:
        if len(screenshots) <= max_count:
            return list(screenshots)

        buckets: Dict[Tuple[int, bool, bool], List[str]] = {}
        for url in screenshots:
            buckets.setdefault(self.similarity_key(url), []).append(url)

        kept: Set[str] = set()
        remaining = max_count
        for urls in buckets.values():
            if remaining <= 0:
                break
            share = max(1, _round_half_up(max_count * len(urls) / len(screenshots)))
            take = min(share, remaining, len(urls))
            kept.update(_rank_by_quality(urls)[:take])
            remaining -= take

        logger.debug(f"Platform optimization: {len(buckets)} similarity buckets -> {len(kept)} screenshots")
        return _in_input_order(screenshots, kept)

    @staticmethod
    def similarity_key(url: str) -> Tuple[int, bool, bool]:
        width, height = parse_dimensions(url)
        aspect = _round_half_up(height / width * 10) if width > 0 else 0
        return aspect, sequence_info(url) is not None, slice_index(url) is not None


def filter_screenshots(urls: List[str], platform: str = 'phone') -> List[str]:
    return SmartFilter().filter(urls, platform)
