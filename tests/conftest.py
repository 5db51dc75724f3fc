"""Shared pytest fixtures for the screenshot resolver.

Network collaborators are replaced with in-process fakes so no test touches
the App Store:

- head_check: records HEAD probes and answers with configurable statuses
- make_validator: scripted validator for driving the resolution chain
- clock: manually advanced clock for the validation cache
- no_sleep: AsyncMock standing in for asyncio.sleep
"""

from typing import Dict, List, Optional, Tuple
from unittest.mock import AsyncMock

import pytest

from screenshot_validator import ValidationResult

# =============================================================================
# Fakes
# =============================================================================


class FakeHeadCheck:
    """Async HEAD probe: 200 unless a URL is listed in ``statuses`` or ``errors``."""

    def __init__(self, statuses: Optional[Dict[str, Optional[int]]] = None, default: Optional[int] = 200):
        self.statuses = statuses or {}
        self.default = default
        self.errors: Dict[str, Exception] = {}
        self.calls: List[Tuple[str, float]] = []

    async def __call__(self, url: str, timeout: float = 3) -> Optional[int]:
        self.calls.append((url, timeout))
        if url in self.errors:
            raise self.errors[url]
        return self.statuses.get(url, self.default)

    @property
    def urls(self) -> List[str]:
        return [url for url, _ in self.calls]


class FakeValidator:
    """Returns scripted ValidationResults in order, repeating the last one."""

    def __init__(self, *results: ValidationResult):
        self.results = list(results) or [ValidationResult(True, 1.0)]
        self.calls = []

    async def validate(self, collections, subject_id, country='us', use_cache=True):
        self.calls.append((collections, subject_id, country, use_cache))
        index = min(len(self.calls) - 1, len(self.results) - 1)
        return self.results[index]


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def head_check() -> FakeHeadCheck:
    return FakeHeadCheck()


@pytest.fixture
def make_validator():
    return FakeValidator


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def no_sleep() -> AsyncMock:
    return AsyncMock()


@pytest.fixture
def sequence_urls() -> List[str]:
    """Three-part sequence with a superseded duplicate of the first screenshot."""
    return [
        "a/1_of_3_new.jpg",
        "a/2_of_3_new.jpg",
        "a/3_of_3_new.jpg",
        "a/1_of_3_orig.jpg",
    ]


@pytest.fixture
def store_urls() -> List[str]:
    """A clean phone set as served by the image CDN."""
    uuids = [
        "0a1b2c3d-1111-4222-8333-444455556661",
        "0a1b2c3d-1111-4222-8333-444455556662",
        "0a1b2c3d-1111-4222-8333-444455556663",
    ]
    return [
        f"https://is1-ssl.mzstatic.com/image/thumb/PurpleSource126/v4/{uuid}/{k}_of_3.png/392x696bb.jpg"
        for k, uuid in enumerate(uuids, start=1)
    ]
