"""
Source URL parsing and validation.
"""

import re
from pathlib import PurePosixPath
from urllib.parse import urlparse, parse_qs

from studyscribe.core.constants import ErrorCode, YOUTUBE_URL_PATTERNS
from studyscribe.core.error_codes import AcquisitionError


def extract_video_id(url: str) -> str | None:
    """
    Extract the 11-character video_id from a YouTube URL.
    Returns None if the URL is not a valid YouTube URL.
    """
    url = url.strip()
    if not url:
        return None

    for pattern in YOUTUBE_URL_PATTERNS:
        m = re.search(pattern, url)
        if m:
            return m.group(1)

    # Fallback: parse query string for 'v' parameter
    parsed = urlparse(url)
    if 'youtube.com' in parsed.netloc or 'youtu.be' in parsed.netloc:
        v = parse_qs(parsed.query).get('v', [None])[0]
        if v and re.match(r'^[a-zA-Z0-9_-]{11}$', v):
            return v

    return None


def validate_youtube_url(url: str) -> str:
    """
    Validate a YouTube URL and return the video_id.
    Raises AcquisitionError if invalid.
    """
    video_id = extract_video_id(url)
    if not video_id:
        raise AcquisitionError(ErrorCode.INVALID_URL, f"Not a valid YouTube URL: {url}")
    return video_id


def validate_http_url(url: str) -> str:
    """Accept only absolute http(s) URLs for external sources."""
    parsed = urlparse(url.strip())
    if parsed.scheme not in ('http', 'https') or not parsed.netloc:
        raise AcquisitionError(ErrorCode.INVALID_URL, f"Not an http(s) URL: {url}")
    return url.strip()


def url_extension(url: str) -> str:
    """Lower-cased file extension of the URL path ('' when there is none)."""
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    return suffix if re.match(r'^\.[a-z0-9]{1,5}$', suffix) else ''
