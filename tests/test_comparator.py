"""Tests for the visual comparator (pixel diff)."""

import base64
import io

import pytest


def _png_b64(img):
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return base64.b64encode(buf.getvalue()).decode()


def _solid(width, height, color="white", mode="RGB"):
    from PIL import Image

    return Image.new(mode, (width, height), color=color)


def _decode(b64):
    from PIL import Image

    return Image.open(io.BytesIO(base64.b64decode(b64))).convert("RGBA")


class TestCompare:

    def test_identical_snapshots(self):
        from blockforge.services.block_generation import compare

        img = _png_b64(_solid(800, 600, color=(240, 240, 240)))

        result = compare(img, img)

        assert result.score == 0
        assert result.diff_pixels == 0
        assert result.width == 800
        assert result.height == 600
        assert result.total_pixels == 480000

    def test_ten_by_ten_red_square(self):
        from blockforge.services.block_generation import compare

        reference = _solid(100, 100)
        candidate = _solid(100, 100)
        candidate.paste((255, 0, 0), (40, 40, 50, 50))

        result = compare(_png_b64(reference), _png_b64(candidate))

        assert result.diff_pixels == 100
        assert result.score == 1.0

    def test_diff_image_marks_mismatches_red(self):
        from blockforge.services.block_generation import compare

        candidate = _solid(100, 100)
        candidate.paste((255, 0, 0), (40, 40, 50, 50))

        result = compare(_png_b64(_solid(100, 100)), _png_b64(candidate))
        diff = _decode(result.diff_image)

        assert diff.size == (100, 100)
        assert diff.getpixel((45, 45)) == (255, 0, 0, 255)
        assert diff.getpixel((5, 5)) == (255, 255, 255, 255)

    def test_different_sizes_use_overlap(self):
        from blockforge.services.block_generation import compare

        result = compare(_png_b64(_solid(100, 80)), _png_b64(_solid(60, 120)))

        assert (result.width, result.height) == (60, 80)
        assert result.total_pixels == 4800
        assert result.score == 0

    def test_overlap_is_top_left_without_scaling(self):
        from blockforge.services.block_generation import compare

        larger = _solid(200, 200)
        larger.paste((0, 0, 0), (150, 150, 200, 200))  # outside the overlap

        result = compare(_png_b64(_solid(100, 100)), _png_b64(larger))

        assert result.diff_pixels == 0

    def test_small_colour_shift_within_threshold(self):
        from blockforge.services.block_generation import compare

        a = _png_b64(_solid(50, 50, color=(250, 250, 250)))
        b = _png_b64(_solid(50, 50, color=(255, 255, 255)))

        assert compare(a, b, threshold=0.1).diff_pixels == 0
        assert compare(a, b, threshold=0.0).diff_pixels == 2500

    def test_transparent_pixels_blend_on_white(self):
        from blockforge.services.block_generation import compare

        transparent = _png_b64(_solid(10, 10, color=(0, 0, 0, 0), mode="RGBA"))
        white = _png_b64(_solid(10, 10))

        assert compare(transparent, white).diff_pixels == 0

    def test_antialiased_edge_is_tolerated(self):
        from blockforge.services.block_generation import compare

        # Hard black/white edge; the reference has a grey anti-aliasing column
        reference = _solid(20, 20)
        reference.paste((0, 0, 0), (0, 0, 10, 20))
        reference.paste((128, 128, 128), (10, 0, 11, 20))
        candidate = _solid(20, 20)
        candidate.paste((0, 0, 0), (0, 0, 10, 20))

        result = compare(_png_b64(reference), _png_b64(candidate))
        diff = _decode(result.diff_image)

        assert result.diff_pixels == 0
        assert diff.getpixel((10, 5)) == (255, 255, 0, 255)

    def test_data_url_prefix_accepted(self):
        from blockforge.services.block_generation import compare

        img = _png_b64(_solid(10, 10))

        assert compare("data:image/png;base64," + img, img).score == 0

    def test_score_rounded_to_two_decimals(self):
        from blockforge.services.block_generation import compare

        candidate = _solid(30, 30)
        candidate.paste((255, 0, 0), (0, 0, 1, 1))

        result = compare(_png_b64(_solid(30, 30)), _png_b64(candidate))

        assert result.diff_pixels == 1
        assert result.score == round(100 / 900, 2)


class TestCompareErrors:

    def test_undecodable_input(self):
        from blockforge.services.block_generation import ImageDecodeError, compare

        good = _png_b64(_solid(10, 10))

        with pytest.raises(ImageDecodeError) as exc_info:
            compare("definitely not an image", good)
        assert "IMAGE_DECODE_ERROR" in str(exc_info.value)

    def test_empty_input(self):
        from blockforge.services.block_generation import ImageDecodeError, compare

        with pytest.raises(ImageDecodeError):
            compare(_png_b64(_solid(10, 10)), "")


class TestPixelDiffHelpers:

    def test_to_dict_omits_image_by_default(self):
        from blockforge.services.block_generation import compare

        img = _png_b64(_solid(10, 10))
        result = compare(img, img)

        assert "diff_image" not in result.to_dict()
        assert result.to_dict(include_image=True)["diff_image"] == result.diff_image
