"""
Freshness and correctness checks for screenshot collections

Scores a candidate result with multiplicative confidence penalties (stale
URLs, imagery known to belong to another app, duplicate renditions,
unreachable images) and caches the verdict per (subject, country).
"""

import os
import time
import asyncio
import logging
import threading
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import store_client
from image_urls import is_stale, visual_identifier
from screenshot_rules import (
    DUPLICATE_RATIO_LIMIT,
    KNOWN_MISMATCHES,
    PLATFORM_FIELDS,
    PLATFORMS,
    REACHABILITY_SAMPLE_SIZE,
    REACHABLE_RATIO_FAIL,
    REACHABLE_RATIO_WARN,
    VALID_CONFIDENCE_THRESHOLD,
    VALIDATION_PENALTIES,
    KnownMismatch,
    recommend,
)

logger = logging.getLogger(__name__)

VALIDATION_TTL = float(os.getenv('SCREENSHOT_VALIDATION_TTL', '60'))
EXISTENCE_TIMEOUT = float(os.getenv('SCREENSHOT_EXISTENCE_TIMEOUT', '5'))
HEAD_TIMEOUT = float(os.getenv('SCREENSHOT_HEAD_TIMEOUT', '3'))

HeadCheck = Callable[[str, float], Awaitable[Optional[int]]]


@dataclass
class ValidationResult:
    is_valid: bool
    confidence: float
    issues: List[str] = field(default_factory=list)
    recommendations: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _copy(result: ValidationResult) -> ValidationResult:
    return replace(result, issues=list(result.issues), recommendations=list(result.recommendations))


class ValidationCache:
    """
    In-memory TTL cache of validation results. Expired entries are evicted on
    read. Results are copied in and out so callers cannot edit a cached verdict.
    """

    def __init__(self, ttl: float = VALIDATION_TTL, clock: Callable[[], float] = time.monotonic):
        self.ttl = ttl
        self.clock = clock
        self._entries: Dict[Tuple[str, str], Tuple[float, ValidationResult]] = {}
        self._lock = threading.Lock()

    def get(self, key: Tuple[str, str]) -> Optional[ValidationResult]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, result = entry
            if self.clock() - stored_at >= self.ttl:
                del self._entries[key]
                return None
            return _copy(result)

    def set(self, key: Tuple[str, str], result: ValidationResult) -> None:
        with self._lock:
            self._entries[key] = (self.clock(), _copy(result))

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def platform_urls(collections: Any, platform: str) -> List[str]:
    """A platform's URLs from an AppRecord, ExtractionResult or plain dict"""
    name = PLATFORM_FIELDS[platform]
    if isinstance(collections, dict):
        urls = collections.get(name)
    else:
        urls = getattr(collections, name, None)
    return [url for url in urls or [] if url]


class ScreenshotValidator:
    def __init__(
        self,
        head_check: Optional[HeadCheck] = None,
        known_mismatches: Optional[Dict[str, KnownMismatch]] = None,
        cache: Optional[ValidationCache] = None,
    ):
        self.head_check = head_check or store_client.head_check
        self.known_mismatches = KNOWN_MISMATCHES if known_mismatches is None else known_mismatches
        self.cache = ValidationCache() if cache is None else cache

    async def validate(
        self, collections: Any, subject_id: str, country: str = 'us', use_cache: bool = True
    ) -> ValidationResult:
        """
        Validate candidate screenshot collections for an app

        Args:
            collections: Object or dict with screenshots / tablet_screenshots / tv_screenshots
            subject_id: App id the collections claim to belong to
            country: Store country code
            use_cache: Serve and store the verdict through the TTL cache

        Returns:
            ValidationResult, served from cache when validated within the TTL
        """
        key = (str(subject_id), country)
        cached = self.cache.get(key) if use_cache else None
        if cached is not None:
            logger.debug(f"Using cached validation result for {subject_id}")
            return cached

        logger.debug(f"Validating screenshots for app {subject_id} in country {country}")
        try:
            result = await self._perform_validation(collections, str(subject_id), country)
        except Exception as e:
            logger.warning(f"Validation failed for app {subject_id}: {e}")
            return ValidationResult(
                is_valid=False,
                confidence=0.0,
                issues=['validation_failed'],
                recommendations=['force_refresh'],
            )

        if use_cache:
            self.cache.set(key, result)
        return result

    def clear_cache(self) -> None:
        self.cache.clear()
        logger.info('Validation cache cleared')

    async def _perform_validation(self, collections: Any, subject_id: str, country: str) -> ValidationResult:
        issues: List[str] = []
        confidence = 1.0

        status = await self.head_check(store_client.page_url(subject_id, country), EXISTENCE_TIMEOUT)
        if status != 200:
            issues.append('app_not_found')
            return ValidationResult(False, 0.0, issues, recommend(issues, 0.0, self._mismatch_issues()))

        by_platform = {platform: platform_urls(collections, platform) for platform in PLATFORMS}
        all_urls = [url for urls in by_platform.values() for url in urls]

        if any(is_stale(url) for url in all_urls):
            issues.append('potentially_stale_urls')
            confidence *= VALIDATION_PENALTIES['potentially_stale_urls']

        mismatch = self._detect_mismatch(subject_id, all_urls)
        if mismatch:
            issues.append(mismatch)
            confidence *= VALIDATION_PENALTIES['content_mismatch']

        duplicate_issues = [
            f"excessive_{platform}_duplicates"
            for platform, urls in by_platform.items()
            if self._count_visual_duplicates(urls) > len(urls) * DUPLICATE_RATIO_LIMIT
        ]
        if duplicate_issues:
            issues.extend(duplicate_issues)
            confidence *= VALIDATION_PENALTIES['excessive_duplicates']

        reachability_issue = await self._check_reachability(all_urls)
        if reachability_issue:
            issues.append(reachability_issue)
            confidence *= VALIDATION_PENALTIES[reachability_issue]

        is_valid = confidence > VALID_CONFIDENCE_THRESHOLD and not issues
        result = ValidationResult(is_valid, confidence, issues, recommend(issues, confidence, self._mismatch_issues()))
        logger.info(f"Validation of {subject_id}: valid={is_valid}, confidence={confidence:.2f}, issues={issues}")
        return result

    def _mismatch_issues(self) -> List[str]:
        return ['content_mismatch'] + [entry.issue for entry in self.known_mismatches.values()]

    def _detect_mismatch(self, subject_id: str, urls: List[str]) -> Optional[str]:
        entry = self.known_mismatches.get(subject_id)
        if entry is None:
            return None
        for url in urls:
            lower = url.lower()
            if any(pattern in lower for pattern in entry.forbidden_substrings):
                return entry.issue
        return None

    @staticmethod
    def _count_visual_duplicates(urls: List[str]) -> int:
        seen = set()
        duplicates = 0
        for url in urls:
            identifier = visual_identifier(url)
            if identifier in seen:
                duplicates += 1
            else:
                seen.add(identifier)
        return duplicates

    async def _check_reachability(self, urls: List[str]) -> Optional[str]:
        if not urls:
            return 'no_screenshots'

        sample = urls[:REACHABILITY_SAMPLE_SIZE]
        statuses = await asyncio.gather(*(self.head_check(url, HEAD_TIMEOUT) for url in sample))
        reachable = sum(1 for status in statuses if status == 200)
        ratio = reachable / len(sample)
        if ratio < REACHABLE_RATIO_FAIL:
            return 'screenshots_not_accessible'
        if ratio < REACHABLE_RATIO_WARN:
            return 'some_screenshots_inaccessible'
        return None
