"""
In-memory slideshow encoder.

Images and the soundtrack are fed to ffmpeg through two anonymous pipes and the
fragmented MP4 is read back from its stdout, so nothing touches the disk.
"""

import asyncio
import contextlib
import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable, Sequence

from . import config
from .errors import CompositionError

logger = logging.getLogger(__name__)

VIDEO_FILTER = (
    f"scale={config.SLIDESHOW_WIDTH}:{config.SLIDESHOW_HEIGHT}:force_original_aspect_ratio=decrease,"
    f"pad={config.SLIDESHOW_WIDTH}:{config.SLIDESHOW_HEIGHT}:(ow-iw)/2:(oh-ih)/2,setsar=1"
)


def compute_frame_rate(image_count: int, duration_seconds: float) -> float:
    if duration_seconds <= 0:
        duration_seconds = config.DEFAULT_SLIDESHOW_SECONDS
    return image_count / duration_seconds


def build_encoder_command(frame_rate: float, image_fd: int, audio_fd: int) -> list[str]:
    return [
        config.FFMPEG_BINARY,
        "-y",
        "-framerate", f"{frame_rate:f}",
        "-f", "image2pipe", "-i", f"pipe:{image_fd}",
        "-i", f"pipe:{audio_fd}",
        "-c:v", "libx264", "-preset", "ultrafast", "-tune", "stillimage",
        "-c:a", "aac", "-b:a", "96k",
        "-pix_fmt", "yuv420p", "-vf", VIDEO_FILTER,
        "-shortest", "-fflags", "+genpts",
        "-movflags", "frag_keyframe+empty_moov+default_base_moof",
        "-f", "mp4", "pipe:1",
    ]


def _drain_to_pipe(fd: int, chunks: Iterable[bytes], label: str) -> int:
    # Closing the write end is the only EOF signal ffmpeg gets; the with block
    # closes it on every path.
    written = 0
    try:
        with open(fd, "wb") as pipe:
            for chunk in chunks:
                pipe.write(chunk)
                written += len(chunk)
    except BrokenPipeError:
        logger.warning("Encoder closed the %s pipe early: written_bytes=%s", label, written)
    return written


async def compose_slideshow(
    images: Sequence[bytes | None],
    audio: bytes,
    duration_seconds: float,
    timeout: float = config.ENCODE_TIMEOUT_SECONDS,
) -> bytes:
    """Mux still images and a soundtrack into a single fragmented MP4.

    ``images`` keeps the slideshow order; ``None``/empty entries are skipped.
    The frame rate spreads every image evenly over ``duration_seconds`` and the
    output stops at the shorter input, normally the audio.
    """
    present = [buf for buf in images if buf]
    if not present:
        raise CompositionError("no images to compose")
    if not audio:
        raise CompositionError("no audio to compose")

    frame_rate = compute_frame_rate(len(images), duration_seconds)
    image_read, image_write = os.pipe()
    audio_read, audio_write = os.pipe()
    cmd = build_encoder_command(frame_rate, image_read, audio_read)

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            pass_fds=(image_read, audio_read),
        )
    except OSError as err:
        for fd in (image_write, audio_write):
            os.close(fd)
        raise CompositionError(f"failed to start encoder {cmd[0]!r}: {err}") from err
    finally:
        os.close(image_read)
        os.close(audio_read)

    logger.info(
        "Encoder started: pid=%s images=%s/%s frame_rate=%f audio_bytes=%s",
        proc.pid,
        len(present),
        len(images),
        frame_rate,
        len(audio),
    )

    loop = asyncio.get_running_loop()
    # Writers get their own threads; the default executor is shared with every
    # download in the process and may be fully booked.
    with ThreadPoolExecutor(max_workers=2, thread_name_prefix="encoder-writer") as writer_pool:
        writers = [
            loop.run_in_executor(writer_pool, _drain_to_pipe, image_write, present, "image"),
            loop.run_in_executor(writer_pool, _drain_to_pipe, audio_write, [audio], "audio"),
        ]
        try:
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except BaseException:
                if proc.returncode is None:
                    with contextlib.suppress(ProcessLookupError):
                        proc.kill()
                    await proc.wait()
                raise
        except asyncio.TimeoutError as err:
            raise CompositionError(f"encoder timed out after {timeout:g}s") from err
        finally:
            await asyncio.gather(*writers)

    diagnostics = stderr.decode("utf-8", errors="replace")
    if proc.returncode != 0:
        logger.error("Encoder failed: returncode=%s", proc.returncode)
        raise CompositionError(f"ffmpeg exited with code {proc.returncode}", diagnostics)
    if not stdout:
        logger.error("Encoder exited cleanly without output")
        raise CompositionError("encoder produced no output", diagnostics)

    logger.info("Encoder finished: output_bytes=%s", len(stdout))
    return stdout
