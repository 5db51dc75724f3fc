"""
Screenshot extraction from the public App Store product page

Used when the lookup API has no usable screenshots. Candidate image URLs are
collected from the markup and the serialized page data, grouped by CDN
asset, classified per device, and then pruned conservatively: an empty
platform is preferred over one that mixes in another app's images.
"""

import re
import logging
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional

from bs4 import BeautifulSoup

import store_client
from errors import ParseFailureError
from image_urls import SIZE_PATTERN, pixel_area
from screenshot_rules import (
    FIRST_GROUP_MIN_CONFIDENCE,
    IMAGE_EXTENSIONS,
    IMAGE_HOST_MARKER,
    MAX_BASE_PATTERNS,
    NEXT_GROUP_MIN_CONFIDENCE,
    NON_SCREENSHOT_MARKERS,
    PLATFORM_FIELDS,
    PLATFORMS,
    SCRAPE_GROUP_CAPS,
    SCRAPE_OUTPUT_CAPS,
    SCREENSHOT_MARKERS,
    SIZE_TEMPLATE,
    SIZE_TEMPLATE_DEFAULT,
    TABLET_MIN_INDICATOR_SCORE,
    TABLET_MIN_PASS_RATIO,
    TABLET_STRICT_MIN_CANDIDATES,
    group_confidence,
    is_contaminated,
    tablet_indicator_score,
)

logger = logging.getLogger(__name__)

FetchPage = Callable[..., Awaitable[str]]


# -----------------------------
# Data models
# -----------------------------

@dataclass
class ExtractionResult:
    screenshots: List[str] = field(default_factory=list)
    tablet_screenshots: List[str] = field(default_factory=list)
    tv_screenshots: List[str] = field(default_factory=list)
    warning: Optional[str] = None
    last_error: Optional[str] = None
    source: str = 'scrape'  # primary | scrape | fallback
    attempts: int = 0

    def platforms(self) -> Dict[str, List[str]]:
        return {platform: getattr(self, PLATFORM_FIELDS[platform]) for platform in PLATFORMS}

    def total(self) -> int:
        return sum(len(urls) for urls in self.platforms().values())

    def has_any(self) -> bool:
        return self.total() > 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_record(cls, record: Any, source: str = 'primary') -> 'ExtractionResult':
        """Copy the three platform collections out of an AppRecord, ExtractionResult or dict"""
        if record is None:
            return cls(source=source)
        collections = {}
        for name in PLATFORM_FIELDS.values():
            urls = record.get(name) if isinstance(record, dict) else getattr(record, name, None)
            collections[name] = list(urls or [])
        return cls(source=source, **collections)


@dataclass
class ScrapedGroup:
    pattern: str
    urls: List[str]
    device: str
    confidence: int

    @property
    def count(self) -> int:
        return len(self.urls)


# -----------------------------
# Helpers
# -----------------------------

# "https://...mzstatic.com/..." as it appears in markup and in escaped JSON blobs
RAW_IMAGE_URL_PATTERN = re.compile(r"https:(?:\\?/){2}[^\"'\s]*\.mzstatic\.com[^\"'\s]*", re.I)
# ".../<uuid>/<filename>.<ext>/<rendition>"
BASE_PATTERN = re.compile(r"/([a-f0-9-]{36})/([^/]+)\.[^/]+/[^/]+$")
SEMANTIC_SUFFIX = re.compile(r"_(new|orig|updated|v\d+)$")


def clean_screenshot_url(url: str) -> Optional[str]:
    url = (url or '').replace('\\', '').strip()
    url = url.replace(SIZE_TEMPLATE, SIZE_TEMPLATE_DEFAULT)
    if not url.startswith('http'):
        return None
    return url


def _srcset_urls(srcset: str) -> List[str]:
    return [part.split()[0] for part in (p.strip() for p in srcset.split(',')) if part]


def collect_candidates(html: str) -> List[str]:
    """Every image-host URL on the page, first-seen order, cleaned and de-duplicated"""
    if not isinstance(html, str):
        raise ParseFailureError('Product page body is not text', data_type='html')
    try:
        soup = BeautifulSoup(html, 'lxml')
    except Exception as e:
        raise ParseFailureError(f"Unable to parse product page: {e}", data_type='html') from e

    urls: List[str] = []
    for img in soup.find_all('img'):
        if img.get('src'):
            urls.append(img['src'])
        if img.get('srcset'):
            urls.extend(_srcset_urls(img['srcset']))
    for source in soup.find_all('source'):
        if source.get('srcset'):
            urls.extend(_srcset_urls(source['srcset']))
    for meta in soup.find_all('meta'):
        prop = (meta.get('property') or meta.get('name') or '').lower()
        if prop == 'og:image' and meta.get('content'):
            urls.append(meta['content'])

    # Most screenshots only appear inside serialized page data
    urls.extend(RAW_IMAGE_URL_PATTERN.findall(html))

    cleaned = (clean_screenshot_url(u) for u in urls)
    return [u for u in dict.fromkeys(cleaned) if u and IMAGE_HOST_MARKER in u]


def is_screenshot_candidate(url: str) -> bool:
    if not any(ext in url for ext in IMAGE_EXTENSIONS):
        return False
    if any(marker in url for marker in NON_SCREENSHOT_MARKERS):
        return False
    return any(marker in url for marker in SCREENSHOT_MARKERS) or bool(SIZE_PATTERN.search(url))


def base_pattern(url: str) -> Optional[str]:
    match = BASE_PATTERN.search(url)
    return f"{match.group(1)}/{match.group(2)}" if match else None


def group_by_pattern(urls: List[str]) -> List[ScrapedGroup]:
    grouped: Dict[str, List[str]] = {}
    for url in urls:
        pattern = base_pattern(url)
        if pattern:
            grouped.setdefault(pattern, []).append(url)

    groups = []
    for pattern, members in grouped.items():
        device, confidence = group_confidence(pattern, members)
        groups.append(ScrapedGroup(pattern, members, device, confidence))
    return groups


def select_primary_groups(groups: List[ScrapedGroup]) -> Dict[str, List[str]]:
    """Largest rendition of each confidently-classified group, per device"""
    selected: Dict[str, List[str]] = {platform: [] for platform in PLATFORMS}
    for platform in PLATFORMS:
        candidates = sorted(
            (g for g in groups if g.device == platform),
            key=lambda g: (g.confidence, g.count),
            reverse=True,
        )
        for group in candidates:
            if len(selected[platform]) >= SCRAPE_GROUP_CAPS[platform]:
                break
            min_confidence = FIRST_GROUP_MIN_CONFIDENCE if not selected[platform] else NEXT_GROUP_MIN_CONFIDENCE
            if group.confidence >= min_confidence:
                selected[platform].append(max(group.urls, key=pixel_area))
    return selected


def drop_semantic_duplicates(urls: List[str]) -> List[str]:
    """'1_of_6_new' and '1_of_6_orig' are the same screenshot; keep the first"""
    seen = set()
    result = []
    for url in urls:
        match = BASE_PATTERN.search(url)
        if not match:
            result.append(url)
            continue
        key = SEMANTIC_SUFFIX.sub('', match.group(2))
        if key in seen:
            logger.debug(f"Skipping semantic duplicate: {url}")
            continue
        seen.add(key)
        result.append(url)
    return result


def conservative_validation(urls: List[str], platform: str) -> List[str]:
    """Return an empty collection rather than one that probably mixes in other apps' images"""
    if not urls:
        return []

    patterns = {base_pattern(url) for url in urls} - {None}
    if len(patterns) > MAX_BASE_PATTERNS[platform]:
        logger.info(f"Too many base patterns ({len(patterns)}) for {platform}, discarding scraped set")
        return []

    if platform != 'tablet':
        return urls

    if any(is_contaminated(url) for url in urls):
        logger.info('Contaminated tablet screenshots detected, discarding scraped set')
        return []
    passing = [url for url in urls if tablet_indicator_score(url) >= TABLET_MIN_INDICATOR_SCORE]
    if len(urls) > TABLET_STRICT_MIN_CANDIDATES and len(passing) < len(urls) * TABLET_MIN_PASS_RATIO:
        logger.info(f"Only {len(passing)}/{len(urls)} tablet candidates look like tablet screenshots, discarding")
        return []
    return passing


def extract_from_html(html: str) -> ExtractionResult:
    candidates = [url for url in collect_candidates(html) if is_screenshot_candidate(url)]
    groups = group_by_pattern(candidates)
    logger.debug(f"{len(candidates)} screenshot candidates in {len(groups)} pattern groups")

    selected = select_primary_groups(groups)
    collections = {}
    for platform in PLATFORMS:
        urls = drop_semantic_duplicates(selected[platform])
        urls = conservative_validation(urls, platform)
        collections[PLATFORM_FIELDS[platform]] = urls[:SCRAPE_OUTPUT_CAPS[platform]]
    return ExtractionResult(source='scrape', **collections)


# -----------------------------
# Public API
# -----------------------------

async def extract_screenshots_from_page(
    subject_id: str,
    country: str = 'us',
    fetch_page: Optional[FetchPage] = None,
) -> ExtractionResult:
    """
    Scrape screenshot URLs from the public product page

    Fetch errors (SourceUnavailableError / NotFoundError) propagate to the caller.
    Markup that cannot be parsed yields an empty result.
    """
    fetch = fetch_page or store_client.fetch_page
    url = store_client.page_url(subject_id, country)
    logger.info(f"Extracting screenshots from {url}")
    html = await fetch(url, store_client.BROWSER_HEADERS, store_client.PAGE_TIMEOUT)

    try:
        result = extract_from_html(html)
    except ParseFailureError as e:
        logger.warning(f"Could not parse product page for {subject_id}: {e}")
        return ExtractionResult(source='scrape')

    logger.info(
        f"Extracted {len(result.screenshots)} phone, {len(result.tablet_screenshots)} tablet, "
        f"{len(result.tv_screenshots)} tv screenshots for {subject_id}"
    )
    return result


async def fill_missing_platforms(
    record: Any,
    subject_id: str,
    country: str = 'us',
    fetch_page: Optional[FetchPage] = None,
) -> Any:
    """Scrape only the platforms the record lacks; existing collections are never replaced"""
    if record is None:
        record = ExtractionResult(source='primary')
    existing = ExtractionResult.from_record(record).platforms()
    missing = [PLATFORM_FIELDS[platform] for platform in PLATFORMS if not existing[platform]]
    if not missing:
        return record

    try:
        scraped = await extract_screenshots_from_page(subject_id, country, fetch_page=fetch_page)
        updates = {name: list(getattr(scraped, name)) for name in missing}
        if isinstance(record, dict):
            return {**record, **updates}
        return replace(record, **updates)
    except Exception as e:
        logger.warning(f"Page fallback failed for {subject_id}: {e}")
        return record
