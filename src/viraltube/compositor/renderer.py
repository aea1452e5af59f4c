"""
Compositor: assets snapshot + script -> one finished video blob.

Frames are a pure function of presentation time `t`. The narration length is
the single authoritative duration; the output runs until it plus a 0.5 s grace.
"""

import asyncio
import logging
import os
import shutil
import tempfile
from typing import Callable, List, Optional

import numpy as np
from moviepy import AudioFileClip, VideoClip
from PIL import Image
from pydub import AudioSegment

from viraltube.compositor.canvas import FrameCanvas
from viraltube.compositor.resources import ResourceLoader
from viraltube.compositor.timeline import GRACE_SECONDS, Layer, Timeline
from viraltube.config import FPS, TEMP_DIR, VIDEO_BITRATE, VIDEO_HEIGHT, VIDEO_WIDTH
from viraltube.domain.errors import MissingAssetsError, RenderError
from viraltube.domain.models import AssetBundle, MediaBlob, Script
from viraltube.ports.interfaces import IVideoRenderer, ProgressCallback

logger = logging.getLogger(__name__)


class Compositor(IVideoRenderer):
    """Timeline-driven renderer; encodes H.264/AAC via moviepy."""

    def __init__(
        self,
        loader: Optional[ResourceLoader] = None,
        width: int = VIDEO_WIDTH,
        height: int = VIDEO_HEIGHT,
        fps: int = FPS,
        bitrate: str = VIDEO_BITRATE,
        temp_dir: Optional[str] = TEMP_DIR,
    ):
        self._loader = loader or ResourceLoader()
        self.width = width
        self.height = height
        self.fps = fps
        self.bitrate = bitrate
        self._temp_dir = temp_dir

    async def render(
        self,
        assets: AssetBundle,
        script: Optional[Script],
        on_progress: Optional[ProgressCallback] = None,
    ) -> MediaBlob:
        if not assets.audio_url:
            raise MissingAssetsError("Missing audio asset for rendering")
        if script is None:
            raise MissingAssetsError("Missing script for rendering")

        progress = on_progress or (lambda _msg: None)
        # Never render from a live reference
        assets = assets.model_copy(deep=True)

        if self._temp_dir:
            os.makedirs(self._temp_dir, exist_ok=True)
        work_dir = tempfile.mkdtemp(prefix="render_", dir=self._temp_dir)
        clip = None
        try:
            progress("Initializing rendering engine...")
            progress("Loading audio asset...")
            raw = await self._loader.fetch_audio(assets.audio_url)
            progress("Decoding audio data...")
            narration = await self._loader.decode_audio(raw)

            if assets.video_url:
                progress("Loading video intro...")
                clip = await self._loader.load_clip(assets.video_url, work_dir)

            thumbnail = None
            if assets.thumbnail_url:
                progress("Loading thumbnail...")
                thumbnail = await self._loader.load_image(assets.thumbnail_url)

            progress(f"Loading {len(assets.storyboard_urls)} storyboard images...")
            images = await asyncio.gather(
                *(self._loader.load_storyboard_image(ref) for ref in assets.storyboard_urls)
            )

            timeline = Timeline(narration.duration_seconds, len(images))
            logger.info(
                "Rendering %.1fs narration, %d storyboard image(s), slot %.2fs",
                timeline.duration,
                timeline.image_count,
                timeline.slot_duration,
            )
            progress("Starting rendering capture...")
            data = await asyncio.to_thread(
                self._encode, work_dir, narration, timeline, clip, thumbnail, list(images)
            )
        except (MissingAssetsError, RenderError):
            raise
        except Exception as exc:
            raise RenderError(f"Rendering failed: {exc}") from exc
        finally:
            if clip is not None:
                clip.close()
            shutil.rmtree(work_dir, ignore_errors=True)

        progress("Rendering complete.")
        return MediaBlob(data=data, mime_type="video/mp4", duration=timeline.stop_time)

    def frame_function(
        self,
        timeline: Timeline,
        clip,
        thumbnail: Optional[Image.Image],
        images: List[Image.Image],
    ) -> Callable[[float], np.ndarray]:
        """Build `t -> frame`; every decision is recomputed from `t`."""
        canvas = FrameCanvas(self.width, self.height)
        clip_duration = clip.duration if clip is not None else None

        def make_frame(t: float) -> np.ndarray:
            layer, index = timeline.visual_at(t, clip_duration, thumbnail is not None)
            if layer is Layer.INTRO_CLIP:
                return canvas.draw_array(clip.get_frame(t))
            if layer is Layer.THUMBNAIL:
                return canvas.draw_image(thumbnail)
            if layer is Layer.STORYBOARD:
                return canvas.draw_image(images[index])
            return canvas.blank()

        return make_frame

    def _encode(
        self,
        work_dir: str,
        narration: AudioSegment,
        timeline: Timeline,
        clip,
        thumbnail: Optional[Image.Image],
        images: List[Image.Image],
    ) -> bytes:
        audio_path = os.path.join(work_dir, "narration.wav")
        output_path = os.path.join(work_dir, "render.mp4")

        padded = narration + AudioSegment.silent(
            duration=int(GRACE_SECONDS * 1000), frame_rate=narration.frame_rate
        )
        padded.export(audio_path, format="wav")

        audio = AudioFileClip(audio_path)
        video = VideoClip(
            self.frame_function(timeline, clip, thumbnail, images),
            duration=timeline.stop_time,
        ).with_audio(audio)
        try:
            video.write_videofile(
                output_path,
                fps=self.fps,
                codec="libx264",
                audio_codec="aac",
                preset="fast",
                bitrate=self.bitrate,
                audio_bitrate="192k",
                temp_audiofile_path=work_dir,
                threads=4,
                logger=None,
            )
        finally:
            video.close()
            audio.close()

        with open(output_path, "rb") as handle:
            return handle.read()
