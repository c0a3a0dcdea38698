# Live post URL validation for the Publishing milestone

import re
from typing import Optional

# Accepted live post URL shapes per platform
URL_PATTERNS = {
    "instagram": re.compile(r"^https?://(www\.)?(instagram\.com|instagr\.am)/(p|tv|reel)/[A-Za-z0-9_-]+/?(\?.*)?$"),
    "tiktok": re.compile(r"^https?://(www\.)?tiktok\.com/@[A-Za-z0-9_.]+/video/\d+/?(\?.*)?$"),
    "youtube": re.compile(r"^https?://(www\.)?(youtube\.com/watch\?v=|youtu\.be/)[A-Za-z0-9_-]+([?&].*)?$"),
    "facebook": re.compile(r"^https?://(www\.)?facebook\.com/[A-Za-z0-9_.]+/(posts|videos)/\d+/?(\?.*)?$"),
    "twitter": re.compile(r"^https?://(www\.)?(twitter\.com|x\.com)/[A-Za-z0-9_]+/status/\d+/?(\?.*)?$"),
}

MAX_URL_LENGTH = 2048


def detect_platform(url: Optional[str]) -> Optional[str]:
    """Return the platform name a live post URL belongs to, or None."""
    if not url:
        return None
    candidate = url.strip()
    if len(candidate) > MAX_URL_LENGTH:
        return None
    for platform, pattern in URL_PATTERNS.items():
        if pattern.match(candidate):
            return platform
    return None


def normalize_url(url: str) -> str:
    """Trim whitespace and upgrade http to https."""
    return re.sub(r"^http://", "https://", url.strip(), flags=re.IGNORECASE)
