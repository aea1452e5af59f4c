"""
Resource loading for the compositor.

Resource identifiers may be local paths, file:// URLs, http(s) URLs or data:
URIs. Every step runs under its own timeout; only narration audio is fatal.
"""

import asyncio
import base64
import io
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import unquote, urlparse

import requests
from moviepy import VideoFileClip
from PIL import Image
from pydub import AudioSegment

from viraltube.domain.errors import ResourceLoadError

logger = logging.getLogger(__name__)

AUDIO_FETCH_TIMEOUT = 15.0
AUDIO_BUFFER_TIMEOUT = 10.0
AUDIO_DECODE_TIMEOUT = 20.0
CLIP_TIMEOUT = 10.0
THUMBNAIL_TIMEOUT = 5.0
STORYBOARD_TIMEOUT = 5.0

_MIME_SUFFIXES = {
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "audio/wav": ".wav",
}


def placeholder_image() -> Image.Image:
    """Zero-size stand-in for a storyboard image that failed to load."""
    return Image.new("RGB", (0, 0))


def decode_data_uri(ref: str) -> bytes:
    header, _, payload = ref.partition(",")
    if header.endswith(";base64"):
        return base64.b64decode(payload)
    return unquote(payload).encode("utf-8")


def _release_late(done: "asyncio.Future[Any]", step: str, discard: Optional[Callable[[Any], None]]) -> None:
    if done.cancelled():
        return
    exc = done.exception()
    if exc is not None:
        logger.debug("Late failure after timeout (%s): %s", step, exc)
        return
    result = done.result()
    if discard is None or result is None:
        return
    try:
        discard(result)
    except Exception as exc:
        logger.warning("Could not release late result of %s: %s", step, exc)


def data_uri_mime(ref: str) -> str:
    header = ref.partition(",")[0]
    return header[len("data:"):].split(";")[0]


class ResourceLoader:
    """Resolves resource identifiers to bytes, decoded audio, clips and stills."""

    def __init__(self, session: Optional[requests.Session] = None, temp_dir: Optional[str] = None):
        self._session = session or requests.Session()
        self._temp_dir = temp_dir

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    async def _step(
        self,
        fn: Callable[..., Any],
        timeout: float,
        step: str,
        *args: Any,
        discard: Optional[Callable[[Any], None]] = None,
    ) -> Any:
        """
        Run `fn` in a worker thread under `timeout`. The thread cannot be
        stopped, so a result that arrives after the timeout is handed to
        `discard` (e.g. to close a clip) instead of being leaked.
        """
        worker = asyncio.ensure_future(asyncio.to_thread(fn, *args))
        try:
            return await asyncio.wait_for(asyncio.shield(worker), timeout)
        except asyncio.TimeoutError:
            worker.add_done_callback(lambda done: _release_late(done, step, discard))
            raise ResourceLoadError(f"Timeout during: {step}", step=step) from None

    def _local_path(self, ref: str) -> Optional[Path]:
        if ref.startswith("file://"):
            return Path(unquote(urlparse(ref).path))
        if "://" not in ref and not ref.startswith("data:"):
            return Path(ref)
        return None

    def _open(self, ref: str, timeout: float) -> Callable[[], bytes]:
        """Start retrieving `ref`; returns a reader for the body."""
        if ref.startswith("data:"):
            data = decode_data_uri(ref)
            return lambda: data

        path = self._local_path(ref)
        if path is not None:
            if not path.exists():
                raise FileNotFoundError(f"Resource not found: {path}")
            return path.read_bytes

        response = self._session.get(ref, stream=True, timeout=timeout)
        response.raise_for_status()
        return lambda: response.content

    def read_bytes(self, ref: str, timeout: float) -> bytes:
        return self._open(ref, timeout)()

    def _materialize(self, ref: str, timeout: float, work_dir: Optional[str] = None) -> str:
        """Return a local file path for `ref`, downloading or decoding into the temp dir if needed."""
        path = self._local_path(ref)
        if path is not None:
            if not path.exists():
                raise FileNotFoundError(f"Resource not found: {path}")
            return str(path)

        if ref.startswith("data:"):
            suffix = _MIME_SUFFIXES.get(data_uri_mime(ref), ".bin")
        else:
            suffix = Path(urlparse(ref).path).suffix or ".mp4"
        data = self.read_bytes(ref, timeout)
        fd, tmp_path = tempfile.mkstemp(suffix=suffix, dir=work_dir or self._temp_dir)
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
        return tmp_path

    # ------------------------------------------------------------------
    # Narration audio (fatal)
    # ------------------------------------------------------------------

    async def fetch_audio(self, ref: str) -> bytes:
        try:
            reader = await self._step(self._open, AUDIO_FETCH_TIMEOUT, "Audio Fetch", ref, AUDIO_FETCH_TIMEOUT)
            return await self._step(reader, AUDIO_BUFFER_TIMEOUT, "Audio Buffer")
        except ResourceLoadError:
            raise
        except Exception as exc:
            raise ResourceLoadError(f"Failed to load audio asset: {exc}", step="Audio Fetch") from exc

    async def decode_audio(self, data: bytes) -> AudioSegment:
        try:
            segment = await self._step(self._decode, AUDIO_DECODE_TIMEOUT, "Audio Decode", data)
        except ResourceLoadError:
            raise
        except Exception as exc:
            raise ResourceLoadError(f"Failed to decode audio: {exc}", step="Audio Decode") from exc
        if len(segment) <= 0:
            raise ResourceLoadError("Decoded audio is empty", step="Audio Decode")
        return segment

    @staticmethod
    def _decode(data: bytes) -> AudioSegment:
        fmt = "wav" if data[:4] == b"RIFF" else None
        return AudioSegment.from_file(io.BytesIO(data), format=fmt)

    # ------------------------------------------------------------------
    # Optional visuals (degrade to None / placeholder)
    # ------------------------------------------------------------------

    async def load_clip(self, ref: Optional[str], work_dir: Optional[str] = None) -> Optional[VideoFileClip]:
        """Intro clip, muted. Timeout or load error drops the clip."""
        if not ref:
            return None
        try:
            return await self._step(
                self._open_clip, CLIP_TIMEOUT, "Intro Clip", ref, work_dir, discard=lambda clip: clip.close()
            )
        except Exception as exc:
            logger.warning("Video load failed (%s). Skipping video.", exc)
            return None

    def _open_clip(self, ref: str, work_dir: Optional[str]) -> VideoFileClip:
        return VideoFileClip(self._materialize(ref, CLIP_TIMEOUT, work_dir), audio=False)

    async def load_image(self, ref: Optional[str], timeout: float = THUMBNAIL_TIMEOUT) -> Optional[Image.Image]:
        if not ref:
            return None
        try:
            return await self._step(self._open_image, timeout, "Image Load", ref, timeout)
        except Exception as exc:
            logger.warning("Image load failed for %s: %s", ref[:80], exc)
            return None

    def _open_image(self, ref: str, timeout: float) -> Image.Image:
        image = Image.open(io.BytesIO(self.read_bytes(ref, timeout)))
        image.load()
        return image.convert("RGB")

    async def load_storyboard_image(self, ref: str) -> Image.Image:
        image = await self.load_image(ref, STORYBOARD_TIMEOUT)
        return image if image is not None else placeholder_image()
