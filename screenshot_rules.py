"""
Screenshot heuristics as data

The weights and thresholds below were tuned against the App Store's CDN
naming conventions (mzstatic.com). They are not general image-quality facts,
so they live here as tables that can be read, tested, and tuned on their own
instead of being buried in the algorithms that use them.
"""

from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from image_urls import has_thumbnail_marker, is_jpeg, is_png, pixel_area


PLATFORMS: Tuple[str, ...] = ('phone', 'tablet', 'tv')
DEFAULT_PLATFORM = 'phone'

# ExtractionResult / AppRecord attribute holding each platform's collection
PLATFORM_FIELDS: Dict[str, str] = {
    'phone': 'screenshots',
    'tablet': 'tablet_screenshots',
    'tv': 'tv_screenshots',
}


def normalize_platform(platform: Optional[str]) -> str:
    """Unknown or missing platforms are treated as phone"""
    if platform and platform.lower() in PLATFORMS:
        return platform.lower()
    return DEFAULT_PLATFORM


# -----------------------------
# Pattern analysis / smart filter
# -----------------------------

@dataclass(frozen=True)
class PlatformLimits:
    reasonable: int  # above this many screenshots the set is considered bloated
    optimal: int     # how many to keep when trimming a bloated set


PLATFORM_LIMITS: Dict[str, PlatformLimits] = {
    'phone': PlatformLimits(reasonable=8, optimal=6),    # most phone listings carry 4-6
    'tablet': PlatformLimits(reasonable=10, optimal=8),  # landscape variants push tablets higher
    'tv': PlatformLimits(reasonable=6, optimal=4),
}

HIGH_QUALITY_MIN_AREA = 500_000  # e.g. 800x600 and up
LOW_QUALITY_MAX_AREA = 100_000   # thumbnails
SEQUENCE_COMPLETE_RATIO = 0.8
SIGNIFICANT_REDUNDANCY_RATIO = 0.3


@dataclass(frozen=True)
class ScoreRule:
    name: str
    weight: float
    applies: Callable[[str], bool]


# Quality score = min(area / 100k, 10) + sum of matching rule weights. Higher is better.
QUALITY_AREA_DIVISOR = 100_000
QUALITY_AREA_CAP = 10.0

QUALITY_SCORE_RULES: List[ScoreRule] = [
    ScoreRule('new_version', 5, lambda u: '_new' in u),
    ScoreRule('superseded_version', -3, lambda u: '_orig' in u or '_retry' in u),
    ScoreRule('thumb_version', -5, lambda u: '_thumb' in u),
    ScoreRule('jpeg', 1, is_jpeg),
    ScoreRule('small_png', 2, lambda u: is_png(u) and pixel_area(u) < 200_000),
    ScoreRule('thumbnail_size', -3, lambda u: '300x0w' in u),
]


def score_quality(url: str) -> float:
    score = 0.0
    area = pixel_area(url)
    if area > 0:
        score += min(area / QUALITY_AREA_DIVISOR, QUALITY_AREA_CAP)
    for rule in QUALITY_SCORE_RULES:
        if rule.applies(url):
            score += rule.weight
    return score


def representative_sort_key(url: str, platform: str) -> Tuple:
    """
    Ordering for picking one URL among variants of the same content
    (smallest key wins): "_new" first, "_orig"/"_retry" last, then larger
    area, non-thumbnails, simpler tablet names, shorter URLs.
    """
    is_new = '_new' in url
    is_superseded = '_orig' in url or '_retry' in url
    complexity = url.count('_') if platform == 'tablet' else 0
    return (
        not is_new,
        is_superseded,
        -pixel_area(url),
        has_thumbnail_marker(url),
        complexity,
        len(url),
    )


# -----------------------------
# Page extraction
# -----------------------------

IMAGE_HOST_MARKER = 'mzstatic.com'
IMAGE_EXTENSIONS = ('.png', '.jpg')
NON_SCREENSHOT_MARKERS = ('AppIcon', 'artworkUrl', 'icon', 'logo')
SCREENSHOT_MARKERS = ('screenshot', 'ImageGen', '_of_', 'Slice_', '1242x2688', '2048x2732')
SIZE_TEMPLATE = '{w}x{h}{c}.{f}'
SIZE_TEMPLATE_DEFAULT = '392x696bb.jpg'


@dataclass(frozen=True)
class DeviceMarkers:
    device: str
    markers: Tuple[str, ...]
    weight: int
    bonuses: Tuple[Tuple[Tuple[str, ...], int], ...] = ()


# Checked in order; the first device whose markers appear in a group's sample URL claims it
DEVICE_MARKERS: List[DeviceMarkers] = [
    DeviceMarkers(
        'tablet', ('iPad', 'Slice_', '2048x2732', 'APP_IPAD_PRO'), 2,
        bonuses=((('APP_IPAD_PRO',), 2), (('iPad13', 'iPad12'), 2)),
    ),
    DeviceMarkers('tv', ('appletv', 'AppleTV', '1920x1080'), 2),
    DeviceMarkers('phone', ('1242x2688', 'ImageGen'), 2),
]

# Applied to the group's base pattern ("<uuid>/<filename>")
GROUP_CONFIDENCE_RULES: List[ScoreRule] = [
    ScoreRule('sequential_naming', 3, lambda p: '_of_' in p),
    ScoreRule('new_version', 1, lambda p: '_new.' in p),
    ScoreRule('orig_version', -1, lambda p: '_orig.' in p),
    ScoreRule('official_imagegen', 2, lambda p: 'ImageGen' in p),
]
SINGLETON_GROUP_PENALTY = -1

# Max screenshots kept per device when choosing scraped groups, and at the very end
SCRAPE_GROUP_CAPS: Dict[str, int] = {'phone': 8, 'tablet': 8, 'tv': 6}
SCRAPE_OUTPUT_CAPS: Dict[str, int] = {'phone': 8, 'tablet': 8, 'tv': 6}
FIRST_GROUP_MIN_CONFIDENCE = 1
NEXT_GROUP_MIN_CONFIDENCE = 2


def classify_device(sample_url: str) -> Tuple[str, int]:
    """(device, marker confidence) for a scraped group's sample URL. Defaults to phone with 0."""
    for entry in DEVICE_MARKERS:
        if any(marker in sample_url for marker in entry.markers):
            confidence = entry.weight
            for bonus_markers, bonus in entry.bonuses:
                if any(marker in sample_url for marker in bonus_markers):
                    confidence += bonus
            return entry.device, confidence
    return DEFAULT_PLATFORM, 0


def group_confidence(pattern: str, urls: List[str]) -> Tuple[str, int]:
    device, confidence = classify_device(urls[0])
    for rule in GROUP_CONFIDENCE_RULES:
        if rule.applies(pattern):
            confidence += int(rule.weight)
    if len(urls) == 1:
        confidence += SINGLETON_GROUP_PENALTY
    return device, confidence


# Conservative validation: prefer an empty collection to a contaminated one.
# These cut-offs are empirical and can discard legitimate sets with unusual naming.
MAX_BASE_PATTERNS: Dict[str, int] = {'phone': 10, 'tablet': 6, 'tv': 10}
TABLET_MIN_INDICATOR_SCORE = 2
TABLET_MIN_PASS_RATIO = 0.7
TABLET_STRICT_MIN_CANDIDATES = 8

CONTAMINATION_KEYWORDS: Tuple[str, ...] = (
    '_snap_', 'snapchat', '_hive_', 'mastodon', 'baseball', 'mlb', 'snla', 'sport', 'league',
)
CONTAMINATED_IDENTIFIERS: Tuple[str, ...] = (
    '87193092-0ef8-49c2-b620-3655c1aa9a3b',  # Hive screenshot seen leaking into Threads
)

TABLET_INDICATORS: List[ScoreRule] = [
    ScoreRule('ipad_pro', 3, lambda u: 'ipad_pro' in u),
    ScoreRule('ipad_generation', 3, lambda u: 'ipad13' in u or 'ipad12' in u),
    ScoreRule('imagegen', 2, lambda u: 'imagegen' in u),
    ScoreRule('tablet_size', 2, lambda u: '2048x2732' in u),
    ScoreRule('display_portrait', 2, lambda u: 'display_portrait' in u),
    ScoreRule('ipad_slice', 2, lambda u: 'slice_' in u and 'ipad' in u),
    ScoreRule('ipad_pro_129_3gen', 2, lambda u: '3gen_129' in u),
    ScoreRule('tablet_word', 1, lambda u: 'tablet' in u),
]


def is_contaminated(url: str) -> bool:
    lower = url.lower()
    if any(identifier in url for identifier in CONTAMINATED_IDENTIFIERS):
        return True
    return any(keyword in lower for keyword in CONTAMINATION_KEYWORDS)


def tablet_indicator_score(url: str) -> int:
    lower = url.lower()
    return int(sum(rule.weight for rule in TABLET_INDICATORS if rule.applies(lower)))


# -----------------------------
# Validation
# -----------------------------

@dataclass(frozen=True)
class KnownMismatch:
    """Imagery from another catalog entry known to leak into this subject's listing"""
    subject_id: str
    forbidden_substrings: Tuple[str, ...]
    issue: str = 'content_mismatch'


KNOWN_MISMATCHES: Dict[str, KnownMismatch] = {
    '6446901002': KnownMismatch(  # Threads
        subject_id='6446901002',
        forbidden_substrings=('mastodon', 'toot', 'fediverse'),
        issue='threads_mastodon_mismatch',
    ),
}

# Confidence multiplier applied once per failed check
VALIDATION_PENALTIES: Dict[str, float] = {
    'potentially_stale_urls': 0.5,
    'content_mismatch': 0.2,
    'excessive_duplicates': 0.6,
    'screenshots_not_accessible': 0.3,
    'some_screenshots_inaccessible': 0.7,
    'no_screenshots': 0.3,
}

VALID_CONFIDENCE_THRESHOLD = 0.7
FORCE_REFRESH_BELOW = 0.3
CLEAR_CACHE_BELOW = 0.7
DUPLICATE_RATIO_LIMIT = 0.4
REACHABILITY_SAMPLE_SIZE = 3
REACHABLE_RATIO_FAIL = 0.5
REACHABLE_RATIO_WARN = 0.8

INACCESSIBLE_ISSUES = ('screenshots_not_accessible', 'some_screenshots_inaccessible')


def is_duplicate_issue(issue: str) -> bool:
    return issue.startswith('excessive_') and issue.endswith('_duplicates')


def recommend(issues: List[str], confidence: float, mismatch_issues: Optional[List[str]] = None) -> List[str]:
    """
    Recommendations for a validation outcome

    Args:
        issues: Issue tags recorded during validation
        confidence: Final validation confidence
        mismatch_issues: Issue tags that mean leaked wrong-catalog imagery

    Returns:
        Ordered, de-duplicated recommendation tags
    """
    recommendations: List[str] = []
    if confidence < FORCE_REFRESH_BELOW:
        recommendations.append('force_refresh')
    elif confidence < CLEAR_CACHE_BELOW:
        recommendations.append('clear_cache')

    mismatch_issues = mismatch_issues or ['content_mismatch']
    if any(is_duplicate_issue(issue) for issue in issues):
        recommendations.append('rerun_deduplication')
    if any(issue in mismatch_issues for issue in issues):
        recommendations.append('force_web_scraping')
    if any(issue in INACCESSIBLE_ISSUES for issue in issues):
        recommendations.append('refresh_screenshot_urls')
    if 'app_not_found' in issues:
        recommendations.append('app_removed')

    if not recommendations and issues:
        recommendations.append('manual_review')
    return list(dict.fromkeys(recommendations))
