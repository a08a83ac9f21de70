import asyncio
import dataclasses
import logging
from typing import Sequence

import requests

from . import config
from .errors import MediaDownloadError, NoAudioError

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class FetchedMedia:
    images: list[bytes | None]
    audio: bytes

    @property
    def available_images(self) -> int:
        return sum(1 for buf in self.images if buf)


def download_to_memory(url: str, timeout: float = config.FETCH_TIMEOUT_SECONDS) -> bytes:
    headers = {"User-Agent": config.CHROME_USER_AGENT}
    buffer = bytearray()
    with requests.get(url, headers=headers, timeout=timeout, stream=True) as response:
        response.raise_for_status()
        for chunk in response.iter_content(chunk_size=64 * 1024):
            if not chunk:
                continue
            buffer.extend(chunk)
            if len(buffer) > config.MAX_BOT_FILE_BYTES:
                raise MediaDownloadError("media is too large for Telegram")
    if not buffer:
        raise MediaDownloadError(f"Empty response body: {url}")
    return bytes(buffer)


async def _fetch_one(url: str, label: str, timeout: float) -> bytes | None:
    try:
        return await asyncio.to_thread(download_to_memory, url, timeout)
    except (requests.RequestException, MediaDownloadError) as err:
        logger.warning("Fetch failed: item=%s url=%s err=%s", label, url, err)
        return None


async def fetch_media(
    image_urls: Sequence[str],
    audio_url: str,
    timeout: float = config.FETCH_TIMEOUT_SECONDS,
    max_images: int = config.MAX_SLIDESHOW_IMAGES,
) -> FetchedMedia:
    """Download every image and the soundtrack concurrently into memory.

    One task per locator; the call returns only once all of them are done.
    ``images[i]`` always belongs to ``image_urls[i]`` and is ``None`` when that
    download failed. A missing soundtrack fails the whole fetch.
    """
    if len(image_urls) > max_images:
        raise ValueError(f"slideshow has {len(image_urls)} images, limit is {max_images}")
    if not audio_url:
        raise NoAudioError("slideshow has no audio track")

    results = await asyncio.gather(
        _fetch_one(audio_url, "audio", timeout),
        *(_fetch_one(url, f"image[{idx}]", timeout) for idx, url in enumerate(image_urls)),
    )
    audio, images = results[0], list(results[1:])

    fetched = sum(1 for buf in images if buf)
    logger.info("Fetch finished: images=%s/%s audio=%s", fetched, len(images), audio is not None)
    if audio is None:
        raise NoAudioError(f"failed to download audio: {audio_url}")
    return FetchedMedia(images=images, audio=audio)
