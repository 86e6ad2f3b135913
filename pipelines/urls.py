"""URL canonicalization and link filtering for the crawler."""

import posixpath
from typing import Iterable, Optional
from urllib.parse import urljoin, urlparse, urlunparse

ALLOWED_SCHEMES = {'http', 'https'}

# Extensions that never render as HTML pages
BINARY_EXTENSIONS = {
    '.pdf', '.zip', '.gz', '.tar', '.rar', '.7z',
    '.jpg', '.jpeg', '.png', '.gif', '.svg', '.webp', '.ico', '.bmp', '.tif', '.tiff',
    '.doc', '.docx', '.xls', '.xlsx', '.ppt', '.pptx', '.csv',
    '.mp3', '.mp4', '.wav', '.avi', '.mov', '.webm',
    '.css', '.js', '.json', '.xml', '.woff', '.woff2', '.ttf', '.eot',
    '.exe', '.dmg', '.iso',
}


def normalize_url(url: str) -> str:
    """Canonical form used for deduplication.

    Lower-cases scheme and host, drops query and fragment, strips trailing
    slashes. ``normalize_url(normalize_url(u)) == normalize_url(u)``.
    """
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip('/')
    return urlunparse((
        parsed.scheme.lower(),
        parsed.netloc.lower(),
        path,
        '',
        '',
        '',
    ))


def resolve_link(href: str, base_url: str) -> Optional[str]:
    """Resolve ``href`` against ``base_url``; None for non-http(s) targets."""
    href = (href or '').strip()
    if not href or href.startswith('#'):
        return None

    absolute_url = urljoin(base_url, href)
    if urlparse(absolute_url).scheme.lower() not in ALLOWED_SCHEMES:
        return None
    return absolute_url


def is_same_domain(url: str, base_url: str) -> bool:
    return urlparse(url).netloc.lower() == urlparse(base_url).netloc.lower()


def has_binary_extension(url: str) -> bool:
    _, ext = posixpath.splitext(urlparse(url).path.lower())
    return ext in BINARY_EXTENSIONS


def is_allowed_path(url: str, allowed_paths: Iterable[str]) -> bool:
    """True when the URL path contains one of ``allowed_paths`` (empty list admits all)."""
    allowed = list(allowed_paths or [])
    if not allowed:
        return True
    path = urlparse(url).path
    return any(pattern in path for pattern in allowed)
