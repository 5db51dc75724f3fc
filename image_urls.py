"""
URL-level attributes of screenshot images

Screenshot CDNs encode most of what we know about an image in its URL:
pixel size (``1242x2688bb``), position in a set (``3_of_6``, ``Slice_2``),
and a version marker (``_new``, ``_orig`` ...). Everything downstream works
from these string patterns; nothing here downloads or decodes an image.
"""

import re
from typing import Optional, Tuple


SIZE_PATTERN = re.compile(r"(\d+)x(\d+)")
SEQUENCE_PATTERN = re.compile(r"(\d+)_of_(\d+)")
SLICE_PATTERN = re.compile(r"Slice_(\d+)")
NUMERIC_SUFFIX_PATTERN = re.compile(r"(?:^|-)(\d+)(?!\d)")
HASH_PATTERN = re.compile(r"[a-f0-9-]{16,}")
DATE_PATH_PATTERN = re.compile(r"/\d{4}/\d{2}/")

# Order matters: the first marker found in a URL is its version marker
VERSION_MARKERS = ('_new', '_orig', '_retry', '_thumb', '_old')
THUMBNAIL_MARKERS = ('300x0w', 'thumb')
STALE_MARKERS = ('_old', '_archived', '_legacy')

# mzstatic-style URLs end in ".../<name>.png/<W>x<H>bb.jpg"; the last segment is only a rendition
_RENDITION_SEGMENT = re.compile(r"^\d+x\d+[a-z]*$", re.I)
_SIZE_TOKEN = re.compile(r"\d+x\d+[^_-]*")
_VERSION_TOKEN = re.compile(r"_new|_orig|_retry|_thumb")


def parse_dimensions(url: str) -> Tuple[int, int]:
    """Width and height from the first WxH token in the URL, (0, 0) when absent."""
    match = SIZE_PATTERN.search(url or '')
    if not match:
        return 0, 0
    return int(match.group(1)), int(match.group(2))


def pixel_area(url: str) -> int:
    w, h = parse_dimensions(url)
    return w * h


def size_token(url: str) -> Optional[str]:
    match = SIZE_PATTERN.search(url or '')
    return f"{match.group(1)}x{match.group(2)}" if match else None


def sequence_info(url: str) -> Optional[Tuple[int, int]]:
    """(k, N) for a "k_of_N" URL."""
    match = SEQUENCE_PATTERN.search(url or '')
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def sequence_index(url: str) -> Optional[int]:
    info = sequence_info(url)
    return info[0] if info else None


def slice_index(url: str) -> Optional[int]:
    match = SLICE_PATTERN.search(url or '')
    return int(match.group(1)) if match else None


def numeric_suffix(url: str) -> Optional[int]:
    """
    Number in the filename, as in ``.../screen-3.png``.

    Size tokens are not indexes: ``Home-1242x2688.png`` and the rendition
    segment of ``.../home.png/392x696bb.jpg`` have no numeric suffix.
    """
    stem = _SIZE_TOKEN.sub('', filename_stem(url), count=1)
    match = NUMERIC_SUFFIX_PATTERN.search(stem)
    return int(match.group(1)) if match else None


def hash_token(url: str) -> Optional[str]:
    match = HASH_PATTERN.search(url or '')
    return match.group(0) if match else None


def version_marker(url: str) -> Optional[str]:
    """One of new/orig/retry/thumb/old, or None."""
    for marker in VERSION_MARKERS:
        if marker in (url or ''):
            return marker.lstrip('_')
    return None


def has_thumbnail_marker(url: str) -> bool:
    return any(marker in url for marker in THUMBNAIL_MARKERS)


def is_stale(url: str) -> bool:
    if not url:
        return False
    return any(marker in url for marker in STALE_MARKERS) or bool(DATE_PATH_PATTERN.search(url))


def filename_stem(url: str) -> str:
    """
    Filename without extension.

    For CDN URLs whose last segment is only a size rendition
    (``.../1_of_6_new.png/392x696bb.jpg``) the segment before it is the
    real filename.
    """
    segments = [s for s in (url or '').split('?')[0].split('/') if s]
    if not segments:
        return ''
    stem = segments[-1].split('.')[0]
    if _RENDITION_SEGMENT.match(stem) and len(segments) > 1:
        stem = segments[-2].split('.')[0]
    return stem


def base_name(url: str) -> str:
    """Filename with size, version, and trailing separators stripped."""
    name = _SIZE_TOKEN.sub('', filename_stem(url), count=1)
    name = _VERSION_TOKEN.sub('', name, count=1)
    return re.sub(r"[-_]+$", '', name)


def visual_identifier(url: str) -> str:
    """
    Identifier for duplicate counting: size token removed from the whole URL
    first, then the version marker, then reduced to the filename stem.
    """
    identifier = re.sub(r"\d+x\d+[^/]*", '', url or '', count=1)
    identifier = _VERSION_TOKEN.sub('', identifier, count=1)
    return filename_stem(identifier) or identifier


def index_of(url: str) -> Optional[int]:
    """Sequence, slice, or numeric-suffix index, whichever is present first."""
    for extract in (sequence_index, slice_index, numeric_suffix):
        value = extract(url)
        if value is not None:
            return value
    return None


def is_jpeg(url: str) -> bool:
    lower = url.lower()
    return '.jpg' in lower or '.jpeg' in lower


def is_png(url: str) -> bool:
    return '.png' in url.lower()
