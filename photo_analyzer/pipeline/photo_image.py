"""
Ephemeral image representation of a photo for vision-class tasks.
"""
import base64
import io
from pathlib import Path
from typing import Dict, Optional

from PIL import Image, ImageDraw
from PIL.Image import Resampling

from photo_analyzer.core.config import settings
from photo_analyzer.core.logging import get_logger
from photo_analyzer.db.repository import PhotoRecord

logger = get_logger("pipeline.photo_image")


def build_thumbnail_image(image: Image.Image, max_side: int) -> Image.Image:
    """Resized RGB copy of `image` constrained to `max_side` pixels."""
    resized = image.convert("RGB")
    resized.thumbnail((max(1, int(max_side)), max(1, int(max_side))), resample=Resampling.LANCZOS)
    return resized


def draw_guide_lines(image: Image.Image, width: int = 3) -> Image.Image:
    """Two vertical lines splitting the image into left, middle and right thirds."""
    overlay = image.copy()
    draw = ImageDraw.Draw(overlay)
    for x in (overlay.width // 3, 2 * overlay.width // 3):
        draw.line([(x, 0), (x, overlay.height)], fill=(255, 0, 0), width=width)
    return overlay


def encode_jpeg(image: Image.Image, quality: int = 85) -> str:
    buffer = io.BytesIO()
    image.save(buffer, format="JPEG", quality=quality)
    return base64.b64encode(buffer.getvalue()).decode("utf-8")


class PhotoImage:
    """
    Resized, base64-encoded JPEG of a photo.

    Holds a reference to its PhotoRecord without owning it; the encoding is
    computed on first access and never persisted.

    Usage:
        image = PhotoImage(photo, with_guides=True)
        payload = image.to_payload()  # {"id": ..., "base64": ...}
    """

    def __init__(
        self,
        photo: PhotoRecord,
        with_guides: bool = False,
        photos_dir: Optional[str] = None,
        max_side: Optional[int] = None,
    ):
        self.photo = photo
        self.with_guides = with_guides
        self.photos_dir = Path(photos_dir or settings.photos_dir)
        self.max_side = max_side or settings.image_max_side
        self._base64: Optional[str] = None

    @property
    def id(self) -> str:
        return self.photo.id

    @property
    def path(self) -> Path:
        return self.photos_dir / self.photo.name

    @property
    def base64(self) -> str:
        if self._base64 is None:
            self._base64 = self._encode()
        return self._base64

    @property
    def data_url(self) -> str:
        return f"data:image/jpeg;base64,{self.base64}"

    def _encode(self) -> str:
        with Image.open(self.path) as img:
            resized = build_thumbnail_image(img, self.max_side)
        if self.with_guides:
            resized = draw_guide_lines(resized, settings.guide_line_width)
        logger.debug(f"Encoded {self.photo.name} ({resized.width}x{resized.height}, guides={self.with_guides})")
        return encode_jpeg(resized, settings.image_jpeg_quality)

    def to_payload(self) -> Dict[str, str]:
        return {"id": self.id, "base64": self.base64}

    def __repr__(self) -> str:
        return f"PhotoImage(id={self.id!r}, with_guides={self.with_guides})"
