"""Crop-window planning around detected faces.

Pure functions only: identical inputs always produce the identical rectangle.
"""

import math
from typing import Sequence
from vbudget.config.models import ThumbnailAspectRatio
from vbudget.domain.models import CropRect, FaceBox

_RATIOS = {
    ThumbnailAspectRatio.WIDE: 16 / 9,
    ThumbnailAspectRatio.SQUARE: 1.0,
    ThumbnailAspectRatio.PORTRAIT: 9 / 16,
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def aspect_ratio_value(aspect_ratio: ThumbnailAspectRatio) -> float:
    """Width/height of the requested ratio; 0.0 for ``original``."""
    return _RATIOS.get(ThumbnailAspectRatio(aspect_ratio), 0.0)


def plan_crop(
    image_width: int,
    image_height: int,
    aspect_ratio: ThumbnailAspectRatio,
    faces: Sequence[FaceBox] = (),
) -> CropRect:
    """Largest crop of ``aspect_ratio`` inside the image, centered on the faces.

    With faces, the center is the midpoint of the union bounding box of all of
    them; otherwise the image center. The rectangle is shifted (never shrunk)
    to stay inside the image.
    """
    if image_width <= 0 or image_height <= 0:
        raise ValueError(f"Invalid image size {image_width}x{image_height}")

    target_ratio = aspect_ratio_value(aspect_ratio)
    if target_ratio == 0.0:
        return CropRect(x=0, y=0, width=image_width, height=image_height)

    if image_width / image_height > target_ratio:
        crop_height = float(image_height)
        crop_width = image_height * target_ratio
    else:
        crop_width = float(image_width)
        crop_height = image_width / target_ratio

    center_x = image_width / 2
    center_y = image_height / 2
    if faces:
        min_x = min(f.x for f in faces)
        max_x = max(f.x + f.width for f in faces)
        min_y = min(f.y for f in faces)
        max_y = max(f.y + f.height for f in faces)
        center_x = (min_x + max_x) / 2
        center_y = (min_y + max_y) / 2

    width = min(image_width, max(1, _round_half_up(crop_width)))
    height = min(image_height, max(1, _round_half_up(crop_height)))

    x = _round_half_up(center_x - crop_width / 2)
    y = _round_half_up(center_y - crop_height / 2)
    x = max(0, min(x, image_width - width))
    y = max(0, min(y, image_height - height))

    return CropRect(x=x, y=y, width=width, height=height)
