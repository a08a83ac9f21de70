import asyncio
import dataclasses
import logging
import re

import requests

from . import config
from .errors import ResolutionFailedError

logger = logging.getLogger(__name__)

# -------------------------
# Link Detection
# -------------------------
TIKTOK_REGEX = re.compile(r"https?://(?:vm|vt|www)\.tiktok\.com/[a-zA-Z0-9/]+")


def find_tiktok_link(text: str) -> str | None:
    match = TIKTOK_REGEX.search(text or "")
    return match.group(0) if match else None


# -------------------------
# Descriptor
# -------------------------
@dataclasses.dataclass(frozen=True)
class MediaDescriptor:
    title: str = ""
    cover_url: str = ""
    video_url: str = ""
    images: tuple[str, ...] = ()
    audio_url: str = ""
    audio_duration: int = 0

    @property
    def kind(self) -> str | None:
        # tikwm fills "play" for slideshows too, images take precedence.
        if self.images:
            return "slideshow"
        if self.video_url:
            return "video"
        return None


def _as_str(value) -> str:
    return value.strip() if isinstance(value, str) else ""


def _as_int(value) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value))
        except ValueError:
            return 0
    return 0


def parse_descriptor(payload) -> MediaDescriptor:
    """Build a descriptor from a tikwm response body.

    Every field is optional and may carry an unexpected type; anything that
    does not look like what we need is treated as absent.
    """
    data = payload.get("data") if isinstance(payload, dict) else None
    if not isinstance(data, dict):
        return MediaDescriptor()

    raw_images = data.get("images")
    images = tuple(_as_str(url) for url in raw_images) if isinstance(raw_images, list) else ()
    music_info = data.get("music_info")
    duration = music_info.get("duration") if isinstance(music_info, dict) else None

    return MediaDescriptor(
        title=_as_str(data.get("title")),
        cover_url=_as_str(data.get("cover")),
        video_url=_as_str(data.get("play")),
        images=tuple(url for url in images if url),
        audio_url=_as_str(data.get("music")),
        audio_duration=_as_int(duration),
    )


# -------------------------
# Resolver Client
# -------------------------
def _fetch_descriptor_sync(link: str, timeout: float) -> MediaDescriptor:
    headers = {"User-Agent": config.CHROME_USER_AGENT}
    try:
        with requests.get(
            config.RESOLVER_API_URL,
            params={"url": link},
            headers=headers,
            timeout=timeout,
        ) as response:
            logger.info("Resolver responded: http_status=%s link=%s", response.status_code, link)
            response.raise_for_status()
            payload = response.json()
    except (requests.RequestException, ValueError) as err:
        raise ResolutionFailedError(f"Resolver request failed: {link}") from err
    return parse_descriptor(payload)


async def resolve_link(link: str, timeout: float = config.RESOLVER_TIMEOUT_SECONDS) -> MediaDescriptor:
    descriptor = await asyncio.to_thread(_fetch_descriptor_sync, link, timeout)
    logger.info(
        "Resolved link: link=%s kind=%s has_play=%s image_count=%s",
        link,
        descriptor.kind,
        bool(descriptor.video_url),
        len(descriptor.images),
    )
    if descriptor.kind is None:
        raise ResolutionFailedError(f"Nothing to deliver for {link}")
    return descriptor


def _fetch_content_length_sync(url: str, timeout: float) -> int | None:
    headers = {"User-Agent": config.CHROME_USER_AGENT}
    with requests.head(url, headers=headers, timeout=timeout, allow_redirects=True) as response:
        length = response.headers.get("Content-Length")
    if not length or not length.isdigit() or int(length) <= 0:
        return None
    return int(length)


async def fetch_content_length(url: str, timeout: float = config.FETCH_TIMEOUT_SECONDS) -> int | None:
    try:
        return await asyncio.to_thread(_fetch_content_length_sync, url, timeout)
    except requests.RequestException as err:
        logger.info("HEAD failed for %s: %s", url, err)
        return None
