"""Fixed-size RGB canvas with cover-fit drawing (PIL)."""

from typing import Optional, Tuple

import numpy as np
from PIL import Image

from viraltube.config import VIDEO_HEIGHT, VIDEO_WIDTH


def is_drawable(image: Optional[Image.Image]) -> bool:
    return image is not None and image.width > 0 and image.height > 0


def cover_fit(image: Image.Image, size: Tuple[int, int]) -> Image.Image:
    """
    Scale `image` to cover `size` keeping its aspect ratio, centre it and crop
    the overflow.
    """
    width, height = size
    img_w, img_h = image.size
    scale = max(width / img_w, height / img_h)
    new_w = max(width, int(round(img_w * scale)))
    new_h = max(height, int(round(img_h * scale)))
    resized = image.convert("RGB").resize((new_w, new_h), Image.Resampling.LANCZOS)

    x_offset = (new_w - width) // 2
    y_offset = (new_h - height) // 2
    return resized.crop((x_offset, y_offset, x_offset + width, y_offset + height))


class FrameCanvas:
    """
    1280x720 canvas cleared to black for every frame.
    Cover-fitted stills are cached per source image since slides repeat for many frames.
    """

    def __init__(self, width: int = VIDEO_WIDTH, height: int = VIDEO_HEIGHT):
        self.width = width
        self.height = height
        self._fitted = {}

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    def blank(self) -> np.ndarray:
        return np.zeros((self.height, self.width, 3), dtype=np.uint8)

    def draw_image(self, image: Optional[Image.Image]) -> np.ndarray:
        """Frame showing `image` cover-fitted; zero-size placeholders draw nothing."""
        if not is_drawable(image):
            return self.blank()
        key = id(image)
        if key not in self._fitted:
            self._fitted[key] = np.asarray(cover_fit(image, self.size), dtype=np.uint8)
        return self._fitted[key].copy()

    def draw_array(self, frame: np.ndarray) -> np.ndarray:
        """Frame showing a decoded video frame (H x W x 3) cover-fitted."""
        return np.asarray(cover_fit(Image.fromarray(frame.astype(np.uint8)), self.size), dtype=np.uint8)

    def clear(self) -> None:
        self._fitted.clear()
