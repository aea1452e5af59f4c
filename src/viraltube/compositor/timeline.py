"""
Visual schedule of a render.

Everything is derived from one authoritative duration (the decoded narration
length) and the presentation time `t`; nothing here keeps counters.
"""

import math
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

INTRO_SECONDS = 6.0
MIN_SLOT_SECONDS = 4.0
EMPTY_SLOT_SECONDS = 8.0
GRACE_SECONDS = 0.5


class Layer(str, Enum):
    INTRO_CLIP = "intro_clip"
    THUMBNAIL = "thumbnail"
    STORYBOARD = "storyboard"
    BLANK = "blank"


@dataclass(frozen=True)
class Timeline:
    """Intro phase of 6 s, then a slideshow over the remaining narration."""

    duration: float
    image_count: int

    @property
    def slot_duration(self) -> float:
        if self.image_count <= 0:
            return EMPTY_SLOT_SECONDS
        return max(MIN_SLOT_SECONDS, (self.duration - INTRO_SECONDS) / self.image_count)

    @property
    def stop_time(self) -> float:
        return self.duration + GRACE_SECONDS

    def in_intro(self, t: float) -> bool:
        return t < INTRO_SECONDS

    def image_index_at(self, t: float) -> Optional[int]:
        """Storyboard index on screen at `t`, clamped to the last image; None without images."""
        if self.image_count <= 0:
            return None
        elapsed = max(0.0, t - INTRO_SECONDS)
        index = int(math.floor(elapsed / self.slot_duration))
        return min(index, self.image_count - 1)

    def visual_at(
        self,
        t: float,
        clip_duration: Optional[float] = None,
        has_thumbnail: bool = False,
    ) -> Tuple[Layer, Optional[int]]:
        """
        Which layer to draw at `t`.

        During the intro the clip wins while it is still playing, then the
        thumbnail still, then nothing. Afterwards the storyboard slot at `t`.
        """
        if self.in_intro(t):
            if clip_duration is not None and t < clip_duration:
                return Layer.INTRO_CLIP, None
            if has_thumbnail:
                return Layer.THUMBNAIL, None
            return Layer.BLANK, None

        index = self.image_index_at(t)
        if index is None:
            return Layer.BLANK, None
        return Layer.STORYBOARD, index
