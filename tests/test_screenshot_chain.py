"""Tests for the primary -> scrape -> fallback resolution chain."""

import asyncio
from typing import List
from unittest.mock import AsyncMock, Mock, call

import pytest

import screenshot_chain
from errors import SourceUnavailableError
from page_extractor import ExtractionResult
from screenshot_chain import (
    FALLBACK_WARNING,
    TRANSITIONS,
    ChainState,
    Outcome,
    ScreenshotChain,
    backoff_delay,
    get_default_chain,
    resolve_screenshots,
)
from screenshot_validator import ValidationResult
from store_client import AppRecord

SCRAPED = ["https://cdn.example.com/s/1_of_2.png", "https://cdn.example.com/s/2_of_2.png"]

VALID = ValidationResult(True, 1.0)
INVALID = ValidationResult(False, 0.2, ["potentially_stale_urls"])


def scraper(*results) -> AsyncMock:
    """Extractor returning the given results in turn (the last one repeats)."""
    results = list(results) or [ExtractionResult(screenshots=SCRAPED)]
    extractor = AsyncMock()
    extractor.side_effect = lambda subject_id, country: results.pop(0) if len(results) > 1 else results[0]
    return extractor


def make_chain(validator, extractor=None, sleep=None, **kwargs) -> ScreenshotChain:
    return ScreenshotChain(
        validator=validator,
        extractor=extractor or scraper(),
        sleep=sleep or AsyncMock(),
        **kwargs,
    )


def run(chain: ScreenshotChain, record, **kwargs) -> ExtractionResult:
    return asyncio.run(chain.resolve(record, "123", "us", **kwargs))


# =============================================================================
# Primary data
# =============================================================================


class TestPrimary:
    def test_valid_primary_is_returned(self, make_validator, store_urls: List[str]) -> None:
        extractor = scraper()
        chain = make_chain(make_validator(VALID), extractor)

        result = run(chain, AppRecord(id=123, screenshots=store_urls))

        assert result.source == "primary"
        assert result.screenshots == store_urls
        assert result.warning is None
        assert result.attempts == 0
        extractor.assert_not_awaited()

    def test_primary_validated_with_cache(self, make_validator, store_urls: List[str]) -> None:
        validator = make_validator(VALID)
        run(make_chain(validator), {"screenshots": store_urls})

        collections, subject_id, country, use_cache = validator.calls[0]
        assert (subject_id, country, use_cache) == ("123", "us", True)
        assert collections.screenshots == store_urls

    def test_primary_is_deduplicated(self, make_validator, sequence_urls: List[str]) -> None:
        result = run(make_chain(make_validator(VALID)), {"screenshots": sequence_urls})

        assert result.screenshots == ["a/1_of_3_new.jpg", "a/2_of_3_new.jpg", "a/3_of_3_new.jpg"]

    def test_invalid_primary_falls_through_to_scrape(self, make_validator, store_urls: List[str]) -> None:
        validator = make_validator(INVALID, VALID)
        result = run(make_chain(validator), {"screenshots": store_urls})

        assert result.source == "scrape"
        assert result.screenshots == SCRAPED
        assert result.attempts == 1
        assert validator.calls[1][3] is False

    def test_missing_primary_goes_to_scrape(self, make_validator) -> None:
        validator = make_validator(VALID)
        result = run(make_chain(validator), None)

        assert result.source == "scrape"
        assert len(validator.calls) == 1

    def test_force_refresh_skips_primary(self, make_validator, store_urls: List[str]) -> None:
        validator = make_validator(VALID)
        result = run(make_chain(validator), {"screenshots": store_urls}, force_refresh=True)

        assert result.source == "scrape"
        assert len(validator.calls) == 1
        assert validator.calls[0][3] is False

    def test_skip_validation(self, make_validator, store_urls: List[str]) -> None:
        validator = make_validator(INVALID)
        result = run(make_chain(validator), {"screenshots": store_urls}, skip_validation=True)

        assert result.source == "primary"
        assert validator.calls == []


# =============================================================================
# Scraping and retries
# =============================================================================


class TestScrape:
    def test_backoff_between_failed_attempts(self, make_validator, no_sleep: AsyncMock) -> None:
        extractor = scraper(ExtractionResult())
        chain = make_chain(make_validator(VALID), extractor, sleep=no_sleep)

        result = run(chain, None, max_retries=3)

        assert extractor.await_count == 3
        assert no_sleep.await_args_list == [call(1.0), call(2.0)]
        assert result.attempts == 3
        assert result.source == "fallback"

    def test_retry_succeeds(self, make_validator, no_sleep: AsyncMock) -> None:
        extractor = scraper(ExtractionResult(), ExtractionResult(screenshots=SCRAPED))
        chain = make_chain(make_validator(VALID), extractor, sleep=no_sleep)

        result = run(chain, None, max_retries=3)

        assert result.source == "scrape"
        assert result.attempts == 2
        assert no_sleep.await_args_list == [call(1.0)]

    def test_low_confidence_scrape_rejected(self, make_validator, store_urls: List[str]) -> None:
        validator = make_validator(INVALID, ValidationResult(False, 0.2))
        result = run(make_chain(validator), {"screenshots": store_urls}, max_retries=1)

        assert result.source == "fallback"
        assert result.screenshots == store_urls

    def test_invalid_but_confident_scrape_accepted(self, make_validator, store_urls: List[str]) -> None:
        validator = make_validator(INVALID, ValidationResult(False, 0.6, ["some_screenshots_inaccessible"]))
        result = run(make_chain(validator), {"screenshots": store_urls}, max_retries=1)

        assert result.source == "scrape"
        assert result.screenshots == SCRAPED

    def test_extractor_error_becomes_last_error(self, make_validator, no_sleep: AsyncMock) -> None:
        extractor = AsyncMock(side_effect=SourceUnavailableError("HTTP 503 fetching page"))
        chain = make_chain(make_validator(VALID), extractor, sleep=no_sleep)

        result = run(chain, None, max_retries=2)

        assert result.warning == FALLBACK_WARNING
        assert result.last_error == "HTTP 503 fetching page"
        assert result.attempts == 2
        assert no_sleep.await_count == 1


# =============================================================================
# Fallback
# =============================================================================


class TestFallback:
    def test_retries_disabled(self, make_validator, store_urls: List[str]) -> None:
        extractor = scraper()
        chain = make_chain(make_validator(INVALID), extractor)

        result = run(chain, {"screenshots": store_urls}, max_retries=0)

        assert result.source == "fallback"
        assert result.warning == FALLBACK_WARNING
        assert result.last_error == "Unknown error"
        assert result.screenshots == store_urls
        assert result.attempts == 0
        extractor.assert_not_awaited()

    def test_nothing_anywhere(self, make_validator) -> None:
        result = run(make_chain(make_validator(VALID), scraper(ExtractionResult())), None, max_retries=1)

        assert not result.has_any()
        assert result.warning == FALLBACK_WARNING

    def test_processing_failure_returns_unprocessed_data(self, make_validator, sequence_urls: List[str]) -> None:
        deduplicator = Mock()
        deduplicator.deduplicate.side_effect = RuntimeError("boom")
        chain = make_chain(make_validator(VALID), deduplicator=deduplicator)

        result = run(chain, {"screenshots": sequence_urls}, skip_validation=True, max_retries=0)

        assert result.source == "fallback"
        assert result.screenshots == sequence_urls
        assert result.last_error == "boom"

    def test_unexpected_errors_never_escape(self, make_validator, store_urls: List[str]) -> None:
        validator = Mock()
        validator.validate = AsyncMock(side_effect=KeyError("cache"))
        extractor = AsyncMock(side_effect=ValueError("bad markup"))

        result = run(make_chain(validator, extractor), {"screenshots": store_urls}, max_retries=1)

        assert result.source == "fallback"
        assert result.last_error == "bad markup"


# =============================================================================
# State machine and defaults
# =============================================================================


class TestStateMachine:
    def test_transitions(self) -> None:
        assert TRANSITIONS[(ChainState.TRY_PRIMARY, Outcome.REJECTED)] is ChainState.TRY_SCRAPE
        assert TRANSITIONS[(ChainState.TRY_SCRAPE, Outcome.FAILED)] is ChainState.TRY_SCRAPE
        assert TRANSITIONS[(ChainState.TRY_SCRAPE, Outcome.EXHAUSTED)] is ChainState.FALLBACK
        assert all(
            target is ChainState.DONE for (_, outcome), target in TRANSITIONS.items() if outcome is Outcome.ACCEPTED
        )

    @pytest.mark.parametrize("attempt,delay", [(1, 1.0), (2, 2.0), (3, 4.0)])
    def test_backoff_delay(self, attempt: int, delay: float) -> None:
        assert backoff_delay(attempt) == delay


class TestDefaultChain:
    def test_created_once(self, monkeypatch) -> None:
        monkeypatch.setattr(screenshot_chain, "_default_chain", None)

        chain = get_default_chain()

        assert isinstance(chain, ScreenshotChain)
        assert get_default_chain() is chain

    def test_resolve_screenshots_uses_default_chain(self, monkeypatch, make_validator, store_urls: List[str]) -> None:
        monkeypatch.setattr(screenshot_chain, "_default_chain", make_chain(make_validator(VALID)))

        result = asyncio.run(resolve_screenshots({"screenshots": store_urls}, "123"))

        assert result.source == "primary"
        assert result.screenshots == store_urls
