"""
Decides how a resolved TikTok link is delivered.

The transport layer only ever sees the delivery objects defined here: a direct
video URL, photo batches, composed slideshow bytes, or a deep link carrying a
token for the deferred inline -> private chat handoff.
"""

import dataclasses
import enum
import html
import logging
from typing import Awaitable, Callable, Sequence, Union

from . import config
from .compositor import compose_slideshow
from .errors import HandoffUnavailableError, ResolutionFailedError, TokenNotFoundError
from .fetcher import fetch_media
from .resolver import MediaDescriptor, resolve_link
from .token_cache import TokenCache

logger = logging.getLogger(__name__)


class DispatchState(str, enum.Enum):
    RESOLVING = "resolving"
    VIDEO_READY = "video_ready"
    SLIDESHOW_DEFERRED = "slideshow_deferred"
    SLIDESHOW_DIRECT = "slideshow_direct"
    FAILED = "failed"


class SlideshowMode(str, enum.Enum):
    PHOTOS = "photos"
    VIDEO = "video"


@dataclasses.dataclass(frozen=True)
class PhotoItem:
    url: str
    caption: str | None = None


@dataclasses.dataclass(frozen=True)
class VideoReady:
    source: str
    video_url: str
    caption: str
    title: str = ""
    cover_url: str = ""


@dataclasses.dataclass(frozen=True)
class DeferredHandoff:
    source: str
    token: str
    link: str
    title: str = ""


@dataclasses.dataclass(frozen=True)
class PhotoBatches:
    source: str
    batches: list[list[PhotoItem]]


@dataclasses.dataclass(frozen=True)
class ComposedSlideshow:
    source: str
    data: bytes
    caption: str


Delivery = Union[VideoReady, DeferredHandoff, PhotoBatches, ComposedSlideshow]
Resolver = Callable[[str], Awaitable[MediaDescriptor]]


def build_source_caption(source_url: str) -> str:
    safe_url = html.escape(source_url, quote=True)
    return f'<a href="{safe_url}">src</a>'


def build_deep_link(bot_username: str, token: str) -> str:
    return f"https://t.me/{bot_username}?start={config.START_TOKEN_PREFIX}{token}"


def parse_start_payload(payload: str) -> str | None:
    payload = (payload or "").strip()
    if not payload.startswith(config.START_TOKEN_PREFIX):
        return None
    return payload[len(config.START_TOKEN_PREFIX) :] or None


def batch_photos(
    image_urls: Sequence[str], caption: str, size: int = config.MEDIA_GROUP_SIZE
) -> list[list[PhotoItem]]:
    batches = []
    for start in range(0, len(image_urls), size):
        chunk = image_urls[start : start + size]
        batches.append([PhotoItem(url=url, caption=caption if idx == 0 else None) for idx, url in enumerate(chunk)])
    return batches


async def make_slideshow_video(descriptor: MediaDescriptor, max_images: int = config.MAX_SLIDESHOW_IMAGES) -> bytes:
    images = descriptor.images
    if len(images) > max_images:
        logger.warning("Slideshow capped: image_count=%s limit=%s", len(images), max_images)
        images = images[:max_images]
    fetched = await fetch_media(images, descriptor.audio_url, max_images=max_images)
    return await compose_slideshow(fetched.images, fetched.audio, descriptor.audio_duration)


class Dispatcher:
    def __init__(
        self,
        cache: TokenCache,
        bot_username: str = config.BOT_USERNAME,
        slideshow_mode: SlideshowMode | str = config.SLIDESHOW_MODE,
        resolver: Resolver = resolve_link,
        composer: Callable[[MediaDescriptor], Awaitable[bytes]] = make_slideshow_video,
    ) -> None:
        self.cache = cache
        self.bot_username = bot_username
        self.slideshow_mode = SlideshowMode(slideshow_mode)
        self._resolver = resolver
        self._composer = composer

    def _transition(self, link: str, state: DispatchState) -> None:
        logger.info("Dispatch state: link=%s state=%s", link, state.value)

    async def dispatch(self, link: str, deferred: bool = False) -> Delivery:
        """Resolve ``link`` and pick a delivery.

        ``deferred`` marks a context that cannot send several media items
        (inline results); slideshows then get a deep link instead of media.
        Failures are terminal and raised to the caller; nothing is retried.
        """
        self._transition(link, DispatchState.RESOLVING)
        try:
            descriptor = await self._resolver(link)
        except ResolutionFailedError:
            self._transition(link, DispatchState.FAILED)
            raise
        except Exception as err:
            self._transition(link, DispatchState.FAILED)
            raise ResolutionFailedError(f"Resolver failed for {link}: {err}") from err

        caption = build_source_caption(link)
        if descriptor.kind == "slideshow":
            if deferred:
                return self._defer(link, descriptor)
            self._transition(link, DispatchState.SLIDESHOW_DIRECT)
            if self.slideshow_mode is SlideshowMode.VIDEO:
                try:
                    data = await self._composer(descriptor)
                except Exception:
                    self._transition(link, DispatchState.FAILED)
                    raise
                return ComposedSlideshow(source=link, data=data, caption=caption)
            return PhotoBatches(source=link, batches=batch_photos(descriptor.images, caption))

        if descriptor.kind == "video":
            self._transition(link, DispatchState.VIDEO_READY)
            return VideoReady(
                source=link,
                video_url=descriptor.video_url,
                caption=caption,
                title=descriptor.title,
                cover_url=descriptor.cover_url,
            )

        self._transition(link, DispatchState.FAILED)
        raise ResolutionFailedError(f"Nothing to deliver for {link}")

    def _defer(self, link: str, descriptor: MediaDescriptor) -> DeferredHandoff:
        if not self.bot_username:
            self._transition(link, DispatchState.FAILED)
            raise HandoffUnavailableError("BOT_USERNAME is not configured")
        token = self.cache.put(link)
        self._transition(link, DispatchState.SLIDESHOW_DEFERRED)
        return DeferredHandoff(
            source=link,
            token=token,
            link=build_deep_link(self.bot_username, token),
            title=descriptor.title,
        )

    def lookup(self, token: str) -> str:
        link = self.cache.get(token)
        if link is None:
            raise TokenNotFoundError("link expired, resolve it again")
        logger.info("Token redeemed: link=%s", link)
        return link

    async def redeem(self, token: str) -> Delivery:
        return await self.dispatch(self.lookup(token), deferred=False)
