"""
Content-identity deduplication for screenshot collections

The same screenshot is usually published several times under different
renditions (sizes, "_new"/"_orig" re-uploads, thumbnails). URLs are grouped by
a content id derived from the collection's dominant naming scheme and one
representative is kept per group.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from image_urls import base_name, hash_token, index_of, numeric_suffix, sequence_index, slice_index
from screenshot_rules import normalize_platform, representative_sort_key

logger = logging.getLogger(__name__)

# Tie order when two schemes have the same number of hits
NAMING_SCHEMES = ('sequential', 'slice', 'hash', 'numbered')
HASH_ID_LENGTH = 16


@dataclass
class NamingAnalysis:
    scheme: str = 'none'
    counts: Dict[str, int] = field(default_factory=lambda: {name: 0 for name in NAMING_SCHEMES})


def unique_urls(urls: List[str]) -> List[str]:
    return [url for url in dict.fromkeys(urls) if url]


class ContentDeduplicator:
    """Keeps one URL per distinct piece of screenshot content"""

    def deduplicate(self, screenshots: List[str], platform: str = 'phone') -> List[str]:
        """
        Remove renditions of the same content

        Args:
            screenshots: Screenshot URLs
            platform: 'phone', 'tablet' or 'tv'

        Returns:
            One URL per content id, ordered by detected index and then lexically
        """
        platform = normalize_platform(platform)
        screenshots = unique_urls(screenshots or [])
        if len(screenshots) <= 1:
            return screenshots

        naming = self.analyze_naming(screenshots)
        groups = self.group_by_content(screenshots, naming.scheme)
        representatives = [self.select_representative(urls, platform) for urls in groups.values()]
        result = self.sort_by_index(representatives)

        if len(result) < len(screenshots):
            logger.debug(
                f"Deduplicated {platform} screenshots {len(screenshots)} -> {len(result)} "
                f"(naming scheme: {naming.scheme})"
            )
        return result

    def analyze_naming(self, screenshots: List[str]) -> NamingAnalysis:
        naming = NamingAnalysis()
        for url in screenshots:
            has_sequence = sequence_index(url) is not None
            has_slice = slice_index(url) is not None
            if has_sequence:
                naming.counts['sequential'] += 1
            if has_slice:
                naming.counts['slice'] += 1
            if hash_token(url):
                naming.counts['hash'] += 1
            if not has_sequence and not has_slice and numeric_suffix(url) is not None:
                naming.counts['numbered'] += 1

        best = 0
        for scheme in NAMING_SCHEMES:
            if naming.counts[scheme] > best:
                naming.scheme, best = scheme, naming.counts[scheme]
        return naming

    def content_id(self, url: str, scheme: str) -> str:
        content_id: Optional[str] = None
        if scheme == 'sequential':
            index = sequence_index(url)
            content_id = f"seq_{index}" if index is not None else None
        elif scheme == 'slice':
            index = slice_index(url)
            content_id = f"slice_{index}" if index is not None else None
        elif scheme == 'numbered':
            index = numeric_suffix(url)
            content_id = f"num_{index}" if index is not None else None
        elif scheme == 'hash':
            token = hash_token(url)
            content_id = f"hash_{token[:HASH_ID_LENGTH]}" if token else None
        return content_id or f"fallback_{base_name(url)}"

    def group_by_content(self, screenshots: List[str], scheme: str) -> Dict[str, List[str]]:
        groups: Dict[str, List[str]] = {}
        for url in screenshots:
            groups.setdefault(self.content_id(url, scheme), []).append(url)
        return groups

    def select_representative(self, urls: List[str], platform: str) -> str:
        if len(urls) == 1:
            return urls[0]
        # min() keeps the earliest URL among equal keys
        return min(urls, key=lambda url: representative_sort_key(url, platform))

    @staticmethod
    def sort_by_index(urls: List[str]) -> List[str]:
        def sort_key(url: str):
            index = index_of(url)
            return (index is None, index if index is not None else 0, url)

        return sorted(urls, key=sort_key)


def deduplicate(urls: List[str], platform: str = 'phone') -> List[str]:
    return ContentDeduplicator().deduplicate(urls, platform)
