"""
Pattern analysis for screenshot URL collections

Looks for observable regularities in a platform's screenshot URLs (numbered
sequences, slices, size tiers, version markers) and recommends how the
collection should be filtered, instead of applying a fixed cap.
"""

import logging
import math
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional

from image_urls import (
    VERSION_MARKERS,
    base_name,
    pixel_area,
    sequence_info,
    size_token,
    slice_index,
)
from screenshot_rules import (
    HIGH_QUALITY_MIN_AREA,
    LOW_QUALITY_MAX_AREA,
    PLATFORM_LIMITS,
    SEQUENCE_COMPLETE_RATIO,
    SIGNIFICANT_REDUNDANCY_RATIO,
    PlatformLimits,
    normalize_platform,
)

logger = logging.getLogger(__name__)

PATTERN_NAMES = ('sequential', 'slice', 'quality_tiers', 'size_variations', 'version_variations')


# -----------------------------
# Data models
# -----------------------------

@dataclass
class PatternDetection:
    found: bool = False
    coverage: float = 0.0
    strength: float = 0.0
    expected_count: int = 0
    actual_count: int = 0
    is_complete: bool = False
    unique_count: int = 0
    redundancy: float = 0.0


@dataclass
class QualityAssessment:
    high_quality_ratio: float = 0.0
    low_quality_ratio: float = 0.0
    overall_quality: str = 'mixed'  # high | low | mixed


@dataclass
class RedundancyAssessment:
    redundancy_ratio: float = 0.0
    unique_base_names: int = 0
    average_duplicates_per_base: float = 0.0
    has_significant_redundancy: bool = False


@dataclass
class PatternAnalysis:
    total_count: int
    platform: str
    patterns: Dict[str, PatternDetection] = field(default_factory=dict)
    dominant_pattern: str = 'none'
    quality: QualityAssessment = field(default_factory=QualityAssessment)
    redundancy: RedundancyAssessment = field(default_factory=RedundancyAssessment)


@dataclass
class Recommendation:
    action: str
    max_count: int
    rationale: str


@dataclass
class FilterDecision:
    strategy: str
    confidence: float
    recommendation: Recommendation
    analysis: Optional[PatternAnalysis] = None

    @property
    def needs_filtering(self) -> bool:
        return self.strategy != 'none'

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data['needs_filtering'] = self.needs_filtering
        return data


# -----------------------------
# Strategy rules (first match wins)
# -----------------------------

@dataclass(frozen=True)
class StrategyRule:
    strategy: str
    action: str
    confidence: float
    applies: Callable[[PatternAnalysis], bool]
    max_count: Callable[[PatternAnalysis], int]
    rationale: Callable[[PatternAnalysis], str]


def platform_limits(analysis: PatternAnalysis) -> PlatformLimits:
    """Platform limits, narrowed to a detected sequence length when one fits inside them."""
    limits = PLATFORM_LIMITS[normalize_platform(analysis.platform)]
    sequential = analysis.patterns.get('sequential')
    if sequential and sequential.found and 0 < sequential.expected_count <= limits.reasonable:
        return PlatformLimits(reasonable=sequential.expected_count, optimal=sequential.expected_count)
    return limits


STRATEGY_RULES: List[StrategyRule] = [
    StrategyRule(
        strategy='respect_sequence',
        action='keep_complete_sequence',
        confidence=0.9,
        applies=lambda a: a.patterns['sequential'].found and a.patterns['sequential'].is_complete,
        max_count=lambda a: a.patterns['sequential'].expected_count,
        rationale=lambda a: f"Complete sequence detected ({a.patterns['sequential'].expected_count} screenshots)",
    ),
    StrategyRule(
        strategy='respect_slices',
        action='keep_complete_slices',
        confidence=0.9,
        applies=lambda a: a.patterns['slice'].found and a.patterns['slice'].is_complete,
        max_count=lambda a: a.patterns['slice'].expected_count,
        rationale=lambda a: f"Complete slice pattern detected ({a.patterns['slice'].expected_count} slices)",
    ),
    StrategyRule(
        strategy='deduplicate_aggressive',
        action='aggressive_deduplication',
        confidence=0.8,
        applies=lambda a: a.redundancy.has_significant_redundancy,
        max_count=lambda a: max(3, math.ceil(a.redundancy.unique_base_names * 0.8)),
        rationale=lambda a: f"High redundancy detected ({a.redundancy.redundancy_ratio * 100:.1f}% duplicate content)",
    ),
    StrategyRule(
        strategy='quality_filter',
        action='prefer_high_quality',
        confidence=0.7,
        applies=lambda a: a.patterns['quality_tiers'].found and a.quality.overall_quality == 'mixed',
        max_count=lambda a: max(4, math.ceil(a.total_count * (1 - a.patterns['quality_tiers'].redundancy))),
        rationale=lambda a: 'Multiple quality tiers detected, filtering to best versions',
    ),
    StrategyRule(
        strategy='platform_optimize',
        action='apply_platform_limits',
        confidence=0.6,
        applies=lambda a: a.total_count > platform_limits(a).reasonable,
        max_count=lambda a: platform_limits(a).optimal,
        rationale=lambda a: (
            f"Excessive count for {a.platform} ({a.total_count} > {platform_limits(a).reasonable} typical)"
        ),
    ),
]


class PatternAnalyzer:
    """Classifies a URL collection and recommends a filtering strategy"""

    def analyze_collection(self, screenshots: List[str], platform: str = 'phone') -> FilterDecision:
        """
        Analyze a screenshot collection and decide how to filter it

        Args:
            screenshots: Screenshot URLs, in their current order
            platform: 'phone', 'tablet' or 'tv'

        Returns:
            FilterDecision with the analysis attached
        """
        platform = normalize_platform(platform)
        if not screenshots:
            return FilterDecision(
                strategy='none',
                confidence=1.0,
                recommendation=Recommendation('keep_all', 0, 'No screenshots to analyze'),
                analysis=PatternAnalysis(
                    total_count=0,
                    platform=platform,
                    patterns={name: PatternDetection() for name in PATTERN_NAMES},
                ),
            )

        logger.debug(f"Analyzing {len(screenshots)} {platform} screenshots for filtering patterns")
        patterns = self.identify_patterns(screenshots)
        analysis = PatternAnalysis(
            total_count=len(screenshots),
            platform=platform,
            patterns=patterns,
            dominant_pattern=self.dominant_pattern(patterns),
            quality=self.assess_quality(screenshots),
            redundancy=self.detect_redundancy(screenshots),
        )
        decision = self.determine_filtering_strategy(analysis)
        logger.debug(f"Analysis complete - strategy: {decision.strategy}, confidence: {decision.confidence}")
        return decision

    def identify_patterns(self, screenshots: List[str]) -> Dict[str, PatternDetection]:
        return {
            'sequential': self.detect_sequential_pattern(screenshots),
            'slice': self.detect_slice_pattern(screenshots),
            'quality_tiers': self.detect_quality_tiers(screenshots),
            'size_variations': self.detect_size_variations(screenshots),
            'version_variations': self.detect_version_variations(screenshots),
        }

    @staticmethod
    def dominant_pattern(patterns: Dict[str, PatternDetection]) -> str:
        best_name, best_score = 'none', 0.0
        for name in PATTERN_NAMES:
            score = patterns[name].strength * patterns[name].coverage
            if score > best_score:
                best_name, best_score = name, score
        return best_name

    def detect_sequential_pattern(self, screenshots: List[str]) -> PatternDetection:
        # total N -> distinct k values seen with it, in first-seen order
        sequences: Dict[int, set] = {}
        sequential_count = 0
        for url in screenshots:
            info = sequence_info(url)
            if info is None:
                continue
            sequential_count += 1
            k, total = info
            sequences.setdefault(total, set()).add(k)

        expected = 0
        completeness = 0.0
        if sequences:
            expected, found_numbers = max(sequences.items(), key=lambda item: len(item[1]))
            if expected > 0:
                in_range = {k for k in found_numbers if 1 <= k <= expected}
                completeness = len(in_range) / expected

        return PatternDetection(
            found=sequential_count > 0,
            coverage=sequential_count / len(screenshots),
            strength=completeness,
            expected_count=expected,
            actual_count=sequential_count,
            is_complete=completeness > SEQUENCE_COMPLETE_RATIO,
        )

    def detect_slice_pattern(self, screenshots: List[str]) -> PatternDetection:
        slice_numbers = set()
        slice_count = 0
        for url in screenshots:
            index = slice_index(url)
            if index is None:
                continue
            slice_count += 1
            slice_numbers.add(index)

        # Slices are numbered from 0
        expected = max(slice_numbers) + 1 if slice_numbers else 0
        return PatternDetection(
            found=slice_count > 0,
            coverage=slice_count / len(screenshots),
            strength=len(slice_numbers) / expected if expected else 0.0,
            expected_count=expected,
            actual_count=slice_count,
            is_complete=expected > 0 and len(slice_numbers) == expected,
        )

    def detect_quality_tiers(self, screenshots: List[str]) -> PatternDetection:
        tiers: Dict[int, int] = {}
        for url in screenshots:
            area = pixel_area(url)
            if area > 0:
                tiers[area] = tiers.get(area, 0) + 1

        has_multiple = len(tiers) > 1
        redundancy = 0.0
        if has_multiple:
            redundancy = (len(screenshots) - max(tiers.values())) / len(screenshots)
        return PatternDetection(
            found=has_multiple,
            coverage=1.0 if has_multiple else 0.0,
            strength=redundancy,
            unique_count=len(tiers),
            redundancy=redundancy,
        )

    def detect_size_variations(self, screenshots: List[str]) -> PatternDetection:
        sizes = set()
        sized_urls = 0
        for url in screenshots:
            token = size_token(url)
            if token:
                sizes.add(token)
                sized_urls += 1

        return PatternDetection(
            found=len(sizes) > 1,
            coverage=sized_urls / len(screenshots),
            strength=(len(sizes) - 1) / len(sizes) if len(sizes) > 1 else 0.0,
            unique_count=len(sizes),
            actual_count=sized_urls,
        )

    def detect_version_variations(self, screenshots: List[str]) -> PatternDetection:
        marker_counts: Dict[str, int] = {}
        versioned_urls = 0
        for url in screenshots:
            found = [marker for marker in VERSION_MARKERS if marker in url]
            if found:
                versioned_urls += 1
                for marker in found:
                    marker_counts[marker] = marker_counts.get(marker, 0) + 1

        return PatternDetection(
            found=len(marker_counts) > 0,
            coverage=versioned_urls / len(screenshots),
            strength=len(marker_counts) / len(VERSION_MARKERS),
            unique_count=len(marker_counts),
            actual_count=versioned_urls,
        )

    def assess_quality(self, screenshots: List[str]) -> QualityAssessment:
        high = low = 0
        for url in screenshots:
            area = pixel_area(url)
            if area > HIGH_QUALITY_MIN_AREA:
                high += 1
            elif 0 < area < LOW_QUALITY_MAX_AREA:
                low += 1

        if high > low:
            overall = 'high'
        elif low > high:
            overall = 'low'
        else:
            overall = 'mixed'
        return QualityAssessment(
            high_quality_ratio=high / len(screenshots),
            low_quality_ratio=low / len(screenshots),
            overall_quality=overall,
        )

    def detect_redundancy(self, screenshots: List[str]) -> RedundancyAssessment:
        base_counts: Dict[str, int] = {}
        for url in screenshots:
            name = base_name(url)
            base_counts[name] = base_counts.get(name, 0) + 1

        ratio = (len(screenshots) - len(base_counts)) / len(screenshots)
        return RedundancyAssessment(
            redundancy_ratio=ratio,
            unique_base_names=len(base_counts),
            average_duplicates_per_base=len(screenshots) / len(base_counts),
            has_significant_redundancy=ratio > SIGNIFICANT_REDUNDANCY_RATIO,
        )

    def determine_filtering_strategy(self, analysis: PatternAnalysis) -> FilterDecision:
        for rule in STRATEGY_RULES:
            if not rule.applies(analysis):
                continue
            # Never recommend keeping more than there is
            max_count = min(rule.max_count(analysis), analysis.total_count)
            return FilterDecision(
                strategy=rule.strategy,
                confidence=rule.confidence,
                recommendation=Recommendation(rule.action, max_count, rule.rationale(analysis)),
                analysis=analysis,
            )

        return FilterDecision(
            strategy='none',
            confidence=1.0,
            recommendation=Recommendation('keep_all', analysis.total_count, 'No problematic patterns detected'),
            analysis=analysis,
        )


def analyze_patterns(urls: List[str], platform: str = 'phone') -> FilterDecision:
    return PatternAnalyzer().analyze_collection(urls, platform)
