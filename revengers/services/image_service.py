"""
Image service for turning uploaded roster/trophy images into WEBP renditions.

Handles EXIF orientation, conversion to RGB, cover-scaling to the target box,
an entropy-aware crop along the overflowing axis, and WEBP encoding.
"""

import asyncio
import logging
from io import BytesIO
from typing import Dict, Tuple

from PIL import Image, ImageOps

from revengers.errors import ImageProcessingError

logger = logging.getLogger(__name__)

MAX_IMAGE_PIXELS = 25_000_000  # 25MP (~5000x5000)
WEBP_QUALITY = 85
CROP_CANDIDATES = 9  # Evenly spaced offsets sampled when choosing a crop window

# (width, height) of the rendition stored for each kind of entity
TARGET_SIZES: Dict[str, Tuple[int, int]] = {
    "player": (300, 400),
    "manager": (300, 400),
    "trophy": (400, 300),
}

# Pillow refuses to decode past twice this size
Image.MAX_IMAGE_PIXELS = MAX_IMAGE_PIXELS


def _to_rgb(img: Image.Image) -> Image.Image:
    """Convert any mode to RGB, flattening transparency onto white."""
    if img.mode in ("RGBA", "P", "LA", "PA"):
        if img.mode == "P":
            img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.split()[-1] if img.mode in ("RGBA", "LA", "PA") else None)
        return background
    if img.mode != "RGB":
        return img.convert("RGB")
    return img


def _best_offset(img: Image.Image, box: Tuple[int, int], axis: int) -> int:
    """
    Pick the crop offset along ``axis`` (0 = x, 1 = y) whose window has the
    highest grayscale entropy.
    """
    overflow = img.size[axis] - box[axis]
    if overflow <= 0:
        return 0

    gray = img.convert("L")
    best_offset, best_entropy = overflow // 2, -1.0
    steps = max(CROP_CANDIDATES - 1, 1)
    for i in range(CROP_CANDIDATES):
        offset = round(overflow * i / steps)
        if axis == 0:
            window = gray.crop((offset, 0, offset + box[0], box[1]))
        else:
            window = gray.crop((0, offset, box[0], offset + box[1]))
        entropy = window.entropy()
        # Earliest candidate wins ties
        if entropy > best_entropy + 1e-9:
            best_offset, best_entropy = offset, entropy
    if best_entropy <= 0:
        return overflow // 2
    return best_offset


def cover_crop(img: Image.Image, width: int, height: int) -> Image.Image:
    """Scale to cover width x height, then crop the most detailed window."""
    src_w, src_h = img.size
    scale = max(width / src_w, height / src_h)
    scaled = (max(width, round(src_w * scale)), max(height, round(src_h * scale)))
    if scaled != img.size:
        img = img.resize(scaled, Image.Resampling.LANCZOS)

    left = _best_offset(img, (width, height), axis=0)
    top = _best_offset(img, (width, height), axis=1)
    return img.crop((left, top, left + width, top + height))


def process_image(image_bytes: bytes, kind: str) -> bytes:
    """
    Produce the stored rendition for an uploaded image.

    Args:
        image_bytes: Raw image bytes (any format Pillow decodes)
        kind: "player", "manager" or "trophy"

    Returns:
        WEBP bytes of exactly the target size for ``kind``

    Raises:
        ImageProcessingError: If the image cannot be decoded, is too large,
            or encoding fails
    """
    if kind not in TARGET_SIZES:
        raise ImageProcessingError(f"Unknown image kind '{kind}'")
    width, height = TARGET_SIZES[kind]

    try:
        img = Image.open(BytesIO(image_bytes))
        src_w, src_h = img.size
        if src_w * src_h > MAX_IMAGE_PIXELS:
            raise ImageProcessingError(
                f"Image dimensions too large ({src_w}x{src_h}). "
                f"Maximum is {MAX_IMAGE_PIXELS:,} pixels."
            )
        img = ImageOps.exif_transpose(img)
        img = _to_rgb(img)
        img = cover_crop(img, width, height)

        output = BytesIO()
        img.save(output, format="WEBP", quality=WEBP_QUALITY, method=4)
        return output.getvalue()
    except ImageProcessingError:
        raise
    except Image.DecompressionBombError:
        raise ImageProcessingError("Image dimensions too large (possible decompression bomb)")
    except Exception as e:
        logger.warning(f"Failed to process {kind} image: {e}")
        raise ImageProcessingError("Invalid or corrupted image file") from e


async def process_image_async(image_bytes: bytes, kind: str) -> bytes:
    """Run process_image in the default executor so the event loop stays free."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, process_image, image_bytes, kind)
