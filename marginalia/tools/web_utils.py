from __future__ import annotations

from urllib.parse import urlparse


def extract_domain(url: str) -> str:
    """Host for display and diversity checks, without a leading ``www.``."""
    try:
        netloc = urlparse(url).netloc.lower()
    except ValueError:
        return url
    if netloc.startswith("www."):
        netloc = netloc[4:]
    return netloc or url
