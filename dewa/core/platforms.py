"""
Platform detection and per-platform naming/quality conventions.
"""

import logging
import re
from urllib.parse import urlparse

from dewa.core.models import PlatformProfile, ResolvedPlatform

logger = logging.getLogger(__name__)

# Declaration order is the match order: first hit wins.
PLATFORM_PROFILES: tuple[PlatformProfile, ...] = (
    PlatformProfile(
        name="youtube",
        display_name="YouTube",
        directory="youtube",
        domains=("youtube.com", "youtu.be"),
        filename_pattern="{title} - {uploader}",
    ),
    PlatformProfile(
        name="bilibili",
        display_name="Bilibili",
        directory="bilibili",
        prefix="B站-",
        domains=("bilibili.com",),
        filename_pattern="{prefix}{title} - {uploader}",
    ),
    PlatformProfile(
        name="magentamusik",
        display_name="MagentaMusik",
        directory="magentamusik",
        domains=("magentamusik.de",),
        filename_pattern="{title}",
    ),
    PlatformProfile(
        name="vimeo",
        display_name="Vimeo",
        directory="vimeo",
        domains=("vimeo.com",),
        filename_pattern="{prefix}{title}",
    ),
    PlatformProfile(
        name="twitch",
        display_name="Twitch",
        directory="twitch",
        prefix="Twitch-",
        domains=("twitch.tv",),
        filename_pattern="{prefix}{title}",
    ),
)

FALLBACK_PROFILE = PlatformProfile(
    name="unknown",
    display_name="Unknown",
    directory="downloads",
    filename_pattern="{prefix}{title}",
)

INVALID_DOMAIN = "invalid"

_HOSTNAME_RE = re.compile(r'^[^\s/\\@]+$')

# Generic quality -> yt-dlp format selector
_DEFAULT_QUALITY_MAP = {
    'best': 'best',
    '1080p': 'best[height<=1080]',
    '720p': 'best[height<=720]',
    '480p': 'best[height<=480]',
    '360p': 'best[height<=360]',
    'worst': 'worst',
}

_QUALITY_MAPS = {
    'youtube': dict(_DEFAULT_QUALITY_MAP, best='best[height<=1080]'),
    'bilibili': dict(_DEFAULT_QUALITY_MAP),
}


def _extract_hostname(url: str) -> str | None:
    """Return the lowercased hostname of a URL, or None if it has none."""
    url = (url or "").strip()
    if not url:
        return None
    if "://" not in url:
        url = "https://" + url
    try:
        hostname = urlparse(url).hostname
    except ValueError:
        return None
    if not hostname or not _HOSTNAME_RE.match(hostname):
        return None
    return hostname.lower()


def _match_profile(hostname: str) -> PlatformProfile | None:
    for profile in PLATFORM_PROFILES:
        if any(domain in hostname for domain in profile.domains):
            return profile
    return None


def resolve(url: str) -> ResolvedPlatform:
    """
    Map a source URL to its platform profile.
    Never raises: malformed URLs resolve to the fallback profile with
    domain "invalid", unmatched hosts to the fallback with the cleaned host.
    """
    hostname = _extract_hostname(url)
    if hostname is None:
        return ResolvedPlatform(FALLBACK_PROFILE, INVALID_DOMAIN, url)

    clean = hostname[4:] if hostname.startswith("www.") else hostname
    profile = _match_profile(clean) or FALLBACK_PROFILE
    return ResolvedPlatform(profile, clean, url)


def is_supported(url: str) -> bool:
    return resolve(url).profile.name != FALLBACK_PROFILE.name


def list_profiles() -> list[PlatformProfile]:
    """All supported platform profiles, in match order."""
    return list(PLATFORM_PROFILES)


def get_profile(name: str) -> PlatformProfile:
    for profile in PLATFORM_PROFILES:
        if profile.name == name:
            return profile
    return FALLBACK_PROFILE


def quality_selector(platform_name: str, quality: str = 'best') -> str:
    """Translate a quality preference into a yt-dlp --format selector."""
    mapping = _QUALITY_MAPS.get(platform_name, _DEFAULT_QUALITY_MAP)
    return mapping.get(quality, mapping['best'])
