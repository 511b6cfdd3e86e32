"""ImageTransformer tests: bounding, aspect ratio, determinism, decode errors."""

import pytest

from factories import image_size, png_bytes
from nftcache.services.exceptions import UnknownVariantError, UnsupportedImageError
from nftcache.services.media.transformer import ImageTransformer, render_placeholders


def test_thumbnail_is_bounded_by_max_edge(transformer):
    """A 200x200 source yields a thumbnail no larger than 64x64."""
    output = transformer.transform(png_bytes(200, 200), "image/png", "thumbnail")

    width, height = image_size(output)
    assert width <= 64 and height <= 64
    assert output[:4] == b"RIFF" and output[8:12] == b"WEBP"


def test_aspect_ratio_is_preserved(transformer):
    output = transformer.transform(png_bytes(400, 100), "image/png", "medium")

    assert image_size(output) == (256, 64)


def test_small_source_is_never_upscaled(transformer):
    output = transformer.transform(png_bytes(20, 10), "image/png", "full")

    assert image_size(output) == (20, 10)


def test_output_is_deterministic(transformer):
    source = png_bytes(300, 180, color=(10, 120, 240))

    first = transformer.transform(source, "image/png", "medium")
    second = transformer.transform(source, "image/png", "medium")

    assert first == second


def test_transform_all_produces_every_variant(transformer):
    encoded = transformer.transform_all(png_bytes(500, 500, mode="RGBA", color=(1, 2, 3, 128)), "image/png")

    assert set(encoded) == {"thumbnail", "medium", "full"}
    assert image_size(encoded["thumbnail"]) == (64, 64)
    assert image_size(encoded["medium"]) == (256, 256)
    assert image_size(encoded["full"]) == (500, 500)


def test_png_output_format():
    transformer = ImageTransformer({"small": 32}, output_format="png")

    output = transformer.transform(png_bytes(100, 100), "image/png", "small")

    assert transformer.content_type == "image/png"
    assert output.startswith(b"\x89PNG")
    assert image_size(output) == (32, 32)


def test_undecodable_bytes_are_unsupported(transformer):
    with pytest.raises(UnsupportedImageError, match="Cannot decode"):
        transformer.transform(b"<html>not an image</html>", "text/html", "thumbnail")


def test_pixel_limit_rejects_huge_sources():
    transformer = ImageTransformer({"small": 32}, max_pixels=100 * 100)

    with pytest.raises(UnsupportedImageError, match="pixel limit"):
        transformer.transform(png_bytes(200, 200), "image/png", "small")


def test_unknown_variant(transformer):
    with pytest.raises(UnknownVariantError):
        transformer.transform(png_bytes(10, 10), "image/png", "poster")


def test_placeholders_cover_every_variant(transformer):
    placeholders = render_placeholders(transformer)

    assert set(placeholders) == set(transformer.variants)
    assert image_size(placeholders["thumbnail"]) == (64, 64)


def test_placeholder_from_source_file(transformer, tmp_path):
    source = tmp_path / "placeholder.png"
    source.write_bytes(png_bytes(128, 128, color=(0, 0, 0)))

    placeholders = render_placeholders(transformer, str(source))

    assert image_size(placeholders["full"]) == (128, 128)


def test_unusable_placeholder_source_falls_back(transformer, tmp_path):
    placeholders = render_placeholders(transformer, str(tmp_path / "missing.png"))

    assert image_size(placeholders["medium"]) == (256, 256)
