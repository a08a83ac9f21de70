"""Pytest configuration and fixtures."""

import pytest

from tiktok_bot.resolver import MediaDescriptor
from tiktok_bot.token_cache import TokenCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def cache(clock) -> TokenCache:
    return TokenCache(ttl_seconds=600, clock=clock)


@pytest.fixture
def slideshow() -> MediaDescriptor:
    return MediaDescriptor(
        title="beach day",
        cover_url="https://p16.tiktokcdn.com/cover.jpg",
        video_url="https://v16.tiktokcdn.com/slideshow-audio.mp4",
        images=tuple(f"https://p16.tiktokcdn.com/photo/{idx}.jpg" for idx in range(23)),
        audio_url="https://sf16.tiktokcdn.com/music.mp3",
        audio_duration=12,
    )


@pytest.fixture
def video() -> MediaDescriptor:
    return MediaDescriptor(
        title="cat video",
        cover_url="https://p16.tiktokcdn.com/cat.jpg",
        video_url="https://v16.tiktokcdn.com/cat.mp4",
    )
