"""
Tests for image_service: WEBP renditions and crop selection.
"""

from io import BytesIO
from unittest.mock import patch

import pytest
from PIL import Image, ImageDraw

from conftest import make_image
from revengers.errors import ImageProcessingError
from revengers.services import image_service


def _open(data: bytes) -> Image.Image:
    return Image.open(BytesIO(data))


# ============================================================================
# process_image
# ============================================================================


class TestProcessImage:
    @pytest.mark.parametrize("kind,size", [("player", (300, 400)), ("manager", (300, 400)), ("trophy", (400, 300))])
    def test_output_is_webp_of_target_size(self, kind, size):
        result = image_service.process_image(make_image(800, 600), kind)
        img = _open(result)
        assert img.format == "WEBP"
        assert img.size == size

    def test_small_image_is_upscaled(self):
        img = _open(image_service.process_image(make_image(50, 50), "player"))
        assert img.size == (300, 400)

    def test_png_with_transparency(self):
        rgba = Image.new("RGBA", (200, 200), (0, 0, 255, 0))
        buf = BytesIO()
        rgba.save(buf, format="PNG")
        img = _open(image_service.process_image(buf.getvalue(), "trophy"))
        assert img.mode == "RGB"
        assert img.size == (400, 300)

    def test_grayscale_input(self):
        gray = Image.new("L", (300, 300), 128)
        buf = BytesIO()
        gray.save(buf, format="JPEG")
        img = _open(image_service.process_image(buf.getvalue(), "manager"))
        assert img.size == (300, 400)

    def test_corrupt_bytes(self):
        with pytest.raises(ImageProcessingError) as exc_info:
            image_service.process_image(b"\xff\xd8\xff\xe0not really a jpeg", "player")
        assert exc_info.value.status_code == 500

    def test_unknown_kind(self):
        with pytest.raises(ImageProcessingError):
            image_service.process_image(make_image(), "banner")

    def test_pixel_cap(self):
        with patch.object(image_service, "MAX_IMAGE_PIXELS", 100):
            with pytest.raises(ImageProcessingError) as exc_info:
                image_service.process_image(make_image(20, 20), "player")
        assert "too large" in exc_info.value.message


# ============================================================================
# cover_crop / _best_offset
# ============================================================================


class TestCoverCrop:
    def test_flat_image_crops_centre(self):
        img = Image.new("RGB", (500, 100), (10, 10, 10))
        assert image_service._best_offset(img, (100, 100), axis=0) == 200

    def test_detail_wins_over_flat_area(self):
        """A patterned band on the right pulls the crop window right."""
        img = Image.new("RGB", (400, 100), (255, 255, 255))
        draw = ImageDraw.Draw(img)
        for x in range(300, 400, 4):
            draw.line([(x, 0), (x, 99)], fill=(0, 0, 0), width=2)
        assert image_service._best_offset(img, (100, 100), axis=0) == 300

    def test_no_overflow(self):
        img = Image.new("RGB", (100, 100))
        assert image_service._best_offset(img, (100, 100), axis=1) == 0

    def test_exact_output_size(self):
        img = Image.new("RGB", (1024, 333))
        assert image_service.cover_crop(img, 300, 400).size == (300, 400)


@pytest.mark.asyncio
async def test_process_image_async_runs_in_executor():
    result = await image_service.process_image_async(make_image(), "trophy")
    assert _open(result).size == (400, 300)
