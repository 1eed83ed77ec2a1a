"""
Thumbnail rendering with Pillow.

Pure image-in, image-out helpers; persisting the result is the thumbnail
store's job.
"""
from pathlib import Path
from typing import Callable, Optional

from PIL import Image, ImageDraw, ImageOps

from .. import config
from ..core.keys import ThumbnailVariant

# Supplied by callers that can pull a still frame out of a video file
FrameExtractor = Callable[[Path], Image.Image]


def open_image(source: Path) -> Image.Image:
    """Open and fully decode an image, applying its EXIF orientation."""
    with Image.open(source) as img:
        img.load()
        return ImageOps.exif_transpose(img)


def flatten(img: Image.Image) -> Image.Image:
    """Convert any mode to RGB, compositing transparency onto white."""
    if img.mode == 'P':
        img = img.convert('RGBA')

    if img.mode in ('RGBA', 'LA'):
        bg = Image.new('RGB', img.size, (255, 255, 255))
        bg.paste(img, mask=img.split()[-1])
        return bg

    if img.mode != 'RGB':
        return img.convert('RGB')
    return img


def fit_inside(img: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Shrink to fit within size, preserving aspect ratio. Never upscales."""
    thumb = img.copy()
    thumb.thumbnail(size, Image.Resampling.LANCZOS)
    return thumb


def cover(img: Image.Image, size: tuple[int, int]) -> Image.Image:
    """Scale and center-crop to exactly size."""
    return ImageOps.fit(img, size, method=Image.Resampling.LANCZOS, centering=(0.5, 0.5))


def video_placeholder() -> Image.Image:
    """Static play-button card used for videos when no frame is available."""
    width, height = config.PLACEHOLDER_SIZE
    img = Image.new('RGB', config.PLACEHOLDER_SIZE, config.PLACEHOLDER_BACKGROUND)
    draw = ImageDraw.Draw(img)

    cx, cy = width // 2, height // 2
    draw.ellipse((cx - 30, cy - 30, cx + 30, cy + 30), fill=(214, 219, 223))
    draw.polygon([(cx - 10, cy - 15), (cx - 10, cy + 15), (cx + 15, cy)], fill=config.PLACEHOLDER_GLYPH)
    return img


def render(img: Image.Image, variant: ThumbnailVariant) -> Image.Image:
    """Produce the thumbnail image for a variant."""
    img = flatten(img)
    if variant is ThumbnailVariant.TINY:
        return cover(img, config.TINY_SIZE)
    return fit_inside(img, config.FULL_SIZE)


def quality_for(variant: ThumbnailVariant) -> int:
    return config.TINY_QUALITY if variant is ThumbnailVariant.TINY else config.FULL_QUALITY


def load_video_frame(source: Path, extractor: Optional[FrameExtractor]) -> Image.Image:
    if extractor is None:
        return video_placeholder()
    return extractor(source)
