"""
Network adapters for the App Store

Thin aiohttp wrappers the pipeline receives as injectable callables:
the iTunes lookup API, the public product page, and HEAD probes.
"""

import os
import asyncio
import aiohttp
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional

from errors import NotFoundError, ParseFailureError, SourceUnavailableError

logger = logging.getLogger(__name__)

ITUNES_LOOKUP_URL = os.getenv('ITUNES_LOOKUP_URL', 'https://itunes.apple.com/lookup')
APP_STORE_PAGE_URL = os.getenv('APP_STORE_PAGE_URL', 'https://apps.apple.com/{country}/app/id{app_id}')
LOOKUP_TIMEOUT = float(os.getenv('SCREENSHOT_LOOKUP_TIMEOUT', '10'))
PAGE_TIMEOUT = float(os.getenv('SCREENSHOT_PAGE_TIMEOUT', '10'))
HEAD_TIMEOUT = float(os.getenv('SCREENSHOT_HEAD_TIMEOUT', '3'))

BROWSER_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36',
    'Accept': 'text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.5',
}


@dataclass
class AppRecord:
    id: Optional[int] = None
    app_id: Optional[str] = None
    title: Optional[str] = None
    developer: Optional[str] = None
    url: Optional[str] = None
    screenshots: List[str] = field(default_factory=list)
    tablet_screenshots: List[str] = field(default_factory=list)
    tv_screenshots: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def page_url(app_id: str, country: str = 'us') -> str:
    return APP_STORE_PAGE_URL.format(country=country, app_id=app_id)


def clean_app(raw: Dict[str, Any]) -> AppRecord:
    """Map a lookup API result onto the fields the resolver uses"""
    return AppRecord(
        id=raw.get('trackId'),
        app_id=raw.get('bundleId'),
        title=raw.get('trackName'),
        developer=raw.get('artistName'),
        url=raw.get('trackViewUrl'),
        screenshots=list(raw.get('screenshotUrls') or []),
        tablet_screenshots=list(raw.get('ipadScreenshotUrls') or []),
        tv_screenshots=list(raw.get('appletvScreenshotUrls') or []),
    )


async def fetch_page(url: str, headers: Optional[Dict[str, str]] = None, timeout: float = PAGE_TIMEOUT) -> str:
    """
    GET a page and return its body

    Raises:
        NotFoundError: the page returned 404
        SourceUnavailableError: any other HTTP error, network failure or timeout
    """
    try:
        async with aiohttp.ClientSession(
            headers=headers or BROWSER_HEADERS,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as session:
            async with session.get(url) as response:
                if response.status == 404:
                    raise NotFoundError(f"Page not found: {url}", url=url)
                if response.status >= 400:
                    raise SourceUnavailableError(
                        f"HTTP {response.status} fetching {url}", status_code=response.status, url=url
                    )
                return await response.text()
    except (asyncio.TimeoutError, aiohttp.ClientError) as e:
        raise SourceUnavailableError(f"Failed to fetch {url}: {e or type(e).__name__}", url=url) from e


async def head_check(url: str, timeout: float = HEAD_TIMEOUT) -> Optional[int]:
    """HEAD a URL and return its status code, or None if it could not be reached"""
    try:
        async with aiohttp.ClientSession(
            headers={'User-Agent': BROWSER_HEADERS['User-Agent']},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as session:
            async with session.head(url, allow_redirects=True) as response:
                return response.status
    except (asyncio.TimeoutError, aiohttp.ClientError) as e:
        logger.debug(f"HEAD {url} failed: {e or type(e).__name__}")
        return None


async def fetch_app_record(identifier: str, country: str = 'us', timeout: float = LOOKUP_TIMEOUT) -> AppRecord:
    """
    Look an app up by numeric track id or bundle id

    Raises:
        NotFoundError: the lookup returned no software result
        SourceUnavailableError: the lookup API could not be reached
        ParseFailureError: the response was not the expected JSON
    """
    identifier = str(identifier).strip()
    key = 'id' if identifier.isdigit() else 'bundleId'
    params = {key: identifier, 'country': country, 'entity': 'software'}

    try:
        async with aiohttp.ClientSession(
            headers={'User-Agent': BROWSER_HEADERS['User-Agent']},
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as session:
            async with session.get(ITUNES_LOOKUP_URL, params=params) as response:
                if response.status >= 400:
                    raise SourceUnavailableError(
                        f"Lookup API returned HTTP {response.status}",
                        status_code=response.status,
                        url=ITUNES_LOOKUP_URL,
                    )
                # iTunes serves JSON as text/javascript
                payload = await response.json(content_type=None)
    except (asyncio.TimeoutError, aiohttp.ClientError) as e:
        raise SourceUnavailableError(f"Lookup API unreachable: {e or type(e).__name__}", url=ITUNES_LOOKUP_URL) from e
    except ValueError as e:
        raise ParseFailureError(f"Lookup API returned invalid JSON: {e}", data_type='lookup') from e

    if not isinstance(payload, dict):
        raise ParseFailureError('Lookup API returned an unexpected payload', data_type='lookup')
    results = [r for r in payload.get('results') or [] if r.get('wrapperType') == 'software']
    if not results:
        raise NotFoundError(f"App not found: {identifier}", url=ITUNES_LOOKUP_URL)

    record = clean_app(results[0])
    logger.info(
        f"Lookup {identifier} ({country}): {len(record.screenshots)} phone, "
        f"{len(record.tablet_screenshots)} tablet, {len(record.tv_screenshots)} tv screenshots"
    )
    return record
