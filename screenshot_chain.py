"""
Screenshot resolution chain

Primary lookup data first, then page scraping with exponential backoff, and
finally whatever primary data exists, annotated with a warning. Every
candidate collection goes through deduplication and smart filtering before it
is returned. ``resolve`` never raises.

States and transitions::

    TRY_PRIMARY --accepted--> DONE
    TRY_PRIMARY --rejected--> TRY_SCRAPE
    TRY_SCRAPE  --accepted--> DONE
    TRY_SCRAPE  --failed----> TRY_SCRAPE   (after backoff)
    TRY_SCRAPE  --exhausted-> FALLBACK
    FALLBACK    --accepted--> DONE
"""

import os
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from content_deduplicator import ContentDeduplicator, unique_urls
from page_extractor import ExtractionResult, extract_screenshots_from_page
from screenshot_rules import PLATFORM_FIELDS
from screenshot_validator import ScreenshotValidator
from smart_filter import SmartFilter

logger = logging.getLogger(__name__)

MAX_RETRIES = int(os.getenv('SCREENSHOT_MAX_RETRIES', '2'))
BACKOFF_BASE_SECONDS = 1.0
BACKOFF_FACTOR = 2
SCRAPE_MIN_CONFIDENCE = 0.5
FALLBACK_WARNING = 'Screenshot extraction failed, using available data'
UNKNOWN_ERROR = 'Unknown error'

Extractor = Callable[[str, str], Awaitable[ExtractionResult]]


class ChainState(Enum):
    TRY_PRIMARY = 'try_primary'
    TRY_SCRAPE = 'try_scrape'
    FALLBACK = 'fallback'
    DONE = 'done'


class Outcome(Enum):
    ACCEPTED = 'accepted'
    REJECTED = 'rejected'
    FAILED = 'failed'
    EXHAUSTED = 'exhausted'


TRANSITIONS: Dict[Tuple[ChainState, Outcome], ChainState] = {
    (ChainState.TRY_PRIMARY, Outcome.ACCEPTED): ChainState.DONE,
    (ChainState.TRY_PRIMARY, Outcome.REJECTED): ChainState.TRY_SCRAPE,
    (ChainState.TRY_SCRAPE, Outcome.ACCEPTED): ChainState.DONE,
    (ChainState.TRY_SCRAPE, Outcome.FAILED): ChainState.TRY_SCRAPE,
    (ChainState.TRY_SCRAPE, Outcome.EXHAUSTED): ChainState.FALLBACK,
    (ChainState.FALLBACK, Outcome.ACCEPTED): ChainState.DONE,
}


@dataclass
class ChainRun:
    """Per-call state; nothing here outlives a resolve() call"""
    primary: ExtractionResult
    subject_id: str
    country: str
    force_refresh: bool
    skip_validation: bool
    max_retries: int
    attempts: int = 0
    last_error: Optional[str] = None
    result: Optional[ExtractionResult] = None


def backoff_delay(attempt: int) -> float:
    """Seconds to wait after a failed scrape attempt (1-based)"""
    return BACKOFF_BASE_SECONDS * BACKOFF_FACTOR ** (attempt - 1)


class ScreenshotChain:
    def __init__(
        self,
        validator: Optional[ScreenshotValidator] = None,
        deduplicator: Optional[ContentDeduplicator] = None,
        smart_filter: Optional[SmartFilter] = None,
        extractor: Optional[Extractor] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.validator = validator or ScreenshotValidator()
        self.deduplicator = deduplicator or ContentDeduplicator()
        self.smart_filter = smart_filter or SmartFilter()
        self.extractor = extractor or extract_screenshots_from_page
        self.sleep = sleep

    async def resolve(
        self,
        record: Any,
        subject_id: str,
        country: str = 'us',
        force_refresh: bool = False,
        skip_validation: bool = False,
        max_retries: int = MAX_RETRIES,
    ) -> ExtractionResult:
        """
        Resolve a trustworthy screenshot set for an app

        Args:
            record: Primary lookup data (AppRecord, ExtractionResult, dict or None)
            subject_id: App id used for scraping and validation
            country: Store country code
            force_refresh: Skip the primary data and go straight to scraping
            skip_validation: Accept candidates without consulting the validator
            max_retries: Scrape attempts before falling back (0 disables scraping)

        Returns:
            ExtractionResult; on total failure it carries a warning and last_error
        """
        run = ChainRun(
            primary=ExtractionResult.from_record(record, source='primary'),
            subject_id=str(subject_id),
            country=country,
            force_refresh=force_refresh,
            skip_validation=skip_validation,
            max_retries=max(0, max_retries),
        )
        handlers = {
            ChainState.TRY_PRIMARY: self._try_primary,
            ChainState.TRY_SCRAPE: self._try_scrape,
            ChainState.FALLBACK: self._fallback,
        }

        logger.info(f"Resolving screenshots for app {run.subject_id} ({country})")
        state = ChainState.TRY_PRIMARY
        while state is not ChainState.DONE:
            outcome = await handlers[state](run)
            next_state = TRANSITIONS[(state, outcome)]
            logger.debug(f"{run.subject_id}: {state.value} --{outcome.value}--> {next_state.value}")
            state = next_state

        run.result.attempts = run.attempts
        return run.result

    def process(self, collections: ExtractionResult) -> ExtractionResult:
        """Deduplicate then smart-filter every platform of a candidate result"""
        processed = {}
        for platform, urls in collections.platforms().items():
            urls = unique_urls(urls)
            if urls:
                urls = self.deduplicator.deduplicate(urls, platform)
                urls = self.smart_filter.filter(urls, platform)
            processed[PLATFORM_FIELDS[platform]] = urls
        logger.debug(
            f"Processing complete - phone: {len(processed['screenshots'])}, "
            f"tablet: {len(processed['tablet_screenshots'])}, tv: {len(processed['tv_screenshots'])}"
        )
        return ExtractionResult(
            warning=collections.warning,
            last_error=collections.last_error,
            source=collections.source,
            attempts=collections.attempts,
            **processed,
        )

    async def _try_primary(self, run: ChainRun) -> Outcome:
        if run.force_refresh:
            logger.info(f"Force refresh requested for {run.subject_id}, skipping primary data")
            return Outcome.REJECTED
        if not run.primary.has_any():
            logger.info(f"No primary screenshots for {run.subject_id}")
            return Outcome.REJECTED

        try:
            if not run.skip_validation:
                validation = await self.validator.validate(run.primary, run.subject_id, run.country)
                if not validation.is_valid:
                    logger.info(f"Primary screenshots for {run.subject_id} failed validation: {', '.join(validation.issues)}")
                    return Outcome.REJECTED
            run.result = self.process(run.primary)
        except Exception as e:
            logger.warning(f"Primary screenshot processing failed for {run.subject_id}: {e}")
            run.last_error = str(e) or type(e).__name__
            return Outcome.REJECTED

        logger.info(f"Primary data provided valid screenshots for {run.subject_id}")
        return Outcome.ACCEPTED

    async def _try_scrape(self, run: ChainRun) -> Outcome:
        if run.attempts >= run.max_retries:
            return Outcome.EXHAUSTED

        run.attempts += 1
        logger.info(f"Scrape attempt {run.attempts}/{run.max_retries} for {run.subject_id}")
        try:
            accepted = await self._scrape_once(run)
        except Exception as e:
            logger.warning(f"Scrape attempt {run.attempts} for {run.subject_id} raised: {e}")
            run.last_error = str(e) or type(e).__name__
            accepted = False

        if accepted:
            return Outcome.ACCEPTED
        if run.attempts >= run.max_retries:
            return Outcome.EXHAUSTED
        await self.sleep(backoff_delay(run.attempts))
        return Outcome.FAILED

    async def _scrape_once(self, run: ChainRun) -> bool:
        scraped = await self.extractor(run.subject_id, run.country)
        if not scraped.has_any():
            logger.info(f"Scrape attempt {run.attempts} found no screenshots for {run.subject_id}")
            return False

        processed = self.process(scraped)
        processed.source = 'scrape'
        if not run.skip_validation:
            # Scraped data must not be judged by the cached verdict on the primary data
            validation = await self.validator.validate(processed, run.subject_id, run.country, use_cache=False)
            if not validation.is_valid and validation.confidence < SCRAPE_MIN_CONFIDENCE:
                logger.info(
                    f"Scraped screenshots for {run.subject_id} rejected "
                    f"(confidence {validation.confidence:.2f}): {', '.join(validation.issues)}"
                )
                return False

        run.result = processed
        logger.info(f"Scrape attempt {run.attempts} succeeded for {run.subject_id}")
        return True

    async def _fallback(self, run: ChainRun) -> Outcome:
        logger.warning(f"All extraction methods failed for {run.subject_id}, returning best available data")
        fallback = ExtractionResult(
            screenshots=list(run.primary.screenshots),
            tablet_screenshots=list(run.primary.tablet_screenshots),
            tv_screenshots=list(run.primary.tv_screenshots),
            warning=FALLBACK_WARNING,
            last_error=run.last_error or UNKNOWN_ERROR,
            source='fallback',
        )
        try:
            run.result = self.process(fallback)
        except Exception as e:
            logger.warning(f"Fallback processing failed for {run.subject_id}: {e}")
            run.result = fallback
        return Outcome.ACCEPTED


_default_chain: Optional[ScreenshotChain] = None


def get_default_chain() -> ScreenshotChain:
    global _default_chain
    if _default_chain is None:
        _default_chain = ScreenshotChain()
    return _default_chain


async def resolve_screenshots(
    record: Any,
    subject_id: str,
    country: str = 'us',
    force_refresh: bool = False,
    skip_validation: bool = False,
    max_retries: int = MAX_RETRIES,
) -> ExtractionResult:
    return await get_default_chain().resolve(
        record,
        subject_id,
        country,
        force_refresh=force_refresh,
        skip_validation=skip_validation,
        max_retries=max_retries,
    )
