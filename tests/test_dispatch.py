import dataclasses
from unittest.mock import AsyncMock

import pytest
import requests

from tiktok_bot import dispatch, fetcher
from tiktok_bot.dispatch import (
    ComposedSlideshow,
    DeferredHandoff,
    Dispatcher,
    PhotoBatches,
    SlideshowMode,
    VideoReady,
    batch_photos,
    build_deep_link,
    make_slideshow_video,
    parse_start_payload,
)
from tiktok_bot.errors import (
    HandoffUnavailableError,
    NoAudioError,
    ResolutionFailedError,
    TokenNotFoundError,
)
from tiktok_bot.fetcher import FetchedMedia
from tiktok_bot.resolver import MediaDescriptor

LINK = "https://vm.tiktok.com/ZMabc123/"


def make_dispatcher(cache, descriptor, **kwargs) -> Dispatcher:
    kwargs.setdefault("bot_username", "tt_saver_bot")
    return Dispatcher(cache, resolver=AsyncMock(return_value=descriptor), **kwargs)


def test_batches_of_ten_with_caption_on_first_item_of_each() -> None:
    urls = [f"https://p16.tiktokcdn.com/{idx}.jpg" for idx in range(23)]

    batches = batch_photos(urls, "caption")

    assert [len(batch) for batch in batches] == [10, 10, 3]
    for batch in batches:
        assert batch[0].caption == "caption"
        assert all(item.caption is None for item in batch[1:])
    assert [item.url for batch in batches for item in batch] == urls


def test_deep_link_and_start_payload_round_trip() -> None:
    link = build_deep_link("tt_saver_bot", "AbC-_123")

    assert link == "https://t.me/tt_saver_bot?start=tt_AbC-_123"
    assert parse_start_payload(link.split("start=", 1)[1]) == "AbC-_123"


@pytest.mark.parametrize("payload", ["", "tt_", "hello", "xx_token"])
def test_foreign_start_payloads_are_ignored(payload) -> None:
    assert parse_start_payload(payload) is None


@pytest.mark.asyncio
async def test_video_is_handed_back_by_url(cache, video) -> None:
    composer = AsyncMock()
    dispatcher = make_dispatcher(cache, video, composer=composer)

    delivery = await dispatcher.dispatch(LINK)

    assert isinstance(delivery, VideoReady)
    assert delivery.video_url == video.video_url
    assert delivery.cover_url == video.cover_url
    assert LINK in delivery.caption
    composer.assert_not_awaited()


@pytest.mark.asyncio
async def test_video_in_deferred_context_is_still_direct(cache, video) -> None:
    delivery = await make_dispatcher(cache, video).dispatch(LINK, deferred=True)

    assert isinstance(delivery, VideoReady)
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_deferred_slideshow_mints_token_without_fetching(cache, slideshow) -> None:
    composer = AsyncMock()
    dispatcher = make_dispatcher(cache, slideshow, composer=composer, slideshow_mode="video")

    delivery = await dispatcher.dispatch(LINK, deferred=True)

    assert isinstance(delivery, DeferredHandoff)
    assert delivery.link == f"https://t.me/tt_saver_bot?start=tt_{delivery.token}"
    assert cache.get(delivery.token) == LINK
    composer.assert_not_awaited()


@pytest.mark.asyncio
async def test_deferred_slideshow_without_bot_username_fails(cache, slideshow) -> None:
    dispatcher = make_dispatcher(cache, slideshow, bot_username="")

    with pytest.raises(HandoffUnavailableError):
        await dispatcher.dispatch(LINK, deferred=True)
    assert len(cache) == 0


@pytest.mark.asyncio
async def test_direct_slideshow_as_photo_batches(cache, slideshow) -> None:
    delivery = await make_dispatcher(cache, slideshow, slideshow_mode="photos").dispatch(LINK)

    assert isinstance(delivery, PhotoBatches)
    assert [len(batch) for batch in delivery.batches] == [10, 10, 3]
    assert delivery.batches[1][0].caption == delivery.batches[0][0].caption


@pytest.mark.asyncio
async def test_direct_slideshow_as_composed_video(cache, slideshow) -> None:
    composer = AsyncMock(return_value=b"mp4-bytes")
    dispatcher = make_dispatcher(cache, slideshow, slideshow_mode=SlideshowMode.VIDEO, composer=composer)

    delivery = await dispatcher.dispatch(LINK)

    assert isinstance(delivery, ComposedSlideshow)
    assert delivery.data == b"mp4-bytes"
    composer.assert_awaited_once_with(slideshow)


@pytest.mark.asyncio
async def test_composition_failure_is_terminal(cache, slideshow) -> None:
    composer = AsyncMock(side_effect=NoAudioError("failed to download audio"))
    dispatcher = make_dispatcher(cache, slideshow, slideshow_mode="video", composer=composer)

    with pytest.raises(NoAudioError):
        await dispatcher.dispatch(LINK)
    composer.assert_awaited_once()


@pytest.mark.asyncio
async def test_empty_descriptor_fails_resolution(cache) -> None:
    with pytest.raises(ResolutionFailedError):
        await make_dispatcher(cache, MediaDescriptor(title="nothing")).dispatch(LINK)


@pytest.mark.asyncio
async def test_resolver_errors_become_resolution_failures(cache) -> None:
    dispatcher = Dispatcher(cache, resolver=AsyncMock(side_effect=KeyError("data")))

    with pytest.raises(ResolutionFailedError):
        await dispatcher.dispatch(LINK)


@pytest.mark.asyncio
async def test_redeem_unknown_token(cache, slideshow) -> None:
    with pytest.raises(TokenNotFoundError):
        await make_dispatcher(cache, slideshow).redeem("nope")


@pytest.mark.asyncio
async def test_redeem_expired_token(cache, clock, slideshow) -> None:
    dispatcher = make_dispatcher(cache, slideshow)
    handoff = await dispatcher.dispatch(LINK, deferred=True)
    clock.advance(601)

    with pytest.raises(TokenNotFoundError):
        await dispatcher.redeem(handoff.token)


@pytest.mark.asyncio
async def test_redeem_delivers_directly(cache, slideshow) -> None:
    dispatcher = make_dispatcher(cache, slideshow)
    handoff = await dispatcher.dispatch(LINK, deferred=True)

    delivery = await dispatcher.redeem(handoff.token)

    assert isinstance(delivery, PhotoBatches)
    assert delivery.source == LINK


@pytest.mark.asyncio
async def test_missing_audio_never_reaches_encoder(monkeypatch, slideshow) -> None:
    def fake_download(url, timeout):
        if url == slideshow.audio_url:
            raise requests.ConnectionError("reset")
        return b"img"

    compose = AsyncMock()
    monkeypatch.setattr(fetcher, "download_to_memory", fake_download)
    monkeypatch.setattr(dispatch, "compose_slideshow", compose)

    with pytest.raises(NoAudioError):
        await make_slideshow_video(slideshow)
    compose.assert_not_awaited()


@pytest.mark.asyncio
async def test_slideshow_video_uses_audio_duration_and_caps_images(monkeypatch, slideshow) -> None:
    descriptor = dataclasses.replace(slideshow, images=tuple(f"https://p16.tiktokcdn.com/{i}.jpg" for i in range(40)))
    fetched = FetchedMedia(images=[b"img"] * 35, audio=b"AUDIO")
    fetch = AsyncMock(return_value=fetched)
    compose = AsyncMock(return_value=b"mp4")
    monkeypatch.setattr(dispatch, "fetch_media", fetch)
    monkeypatch.setattr(dispatch, "compose_slideshow", compose)

    assert await make_slideshow_video(descriptor, max_images=35) == b"mp4"

    image_urls, audio_url = fetch.await_args.args
    assert list(image_urls) == list(descriptor.images[:35])
    assert audio_url == descriptor.audio_url
    compose.assert_awaited_once_with(fetched.images, b"AUDIO", 12)
