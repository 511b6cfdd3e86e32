"""Image transformation: decode, bound to a variant size, re-encode.

Transformation is CPU-bound and synchronous; callers run it in a worker thread.
Output is deterministic for identical input bytes and variant: metadata
(EXIF, ICC, timestamps) is dropped and encoder settings are fixed.
"""

from dataclasses import dataclass
from io import BytesIO
from pathlib import Path

import structlog
from PIL import Image, UnidentifiedImageError

from nftcache.services.exceptions import UnknownVariantError, UnsupportedImageError

logger = structlog.get_logger(__name__)

DEFAULT_VARIANTS = {"thumbnail": 64, "medium": 256, "full": 1024}
DEFAULT_QUALITY = 80
# Decompression bomb guard (about 8k x 8k)
MAX_SOURCE_PIXELS = 64_000_000
PLACEHOLDER_COLOR = (200, 200, 200)

OUTPUT_CONTENT_TYPES = {"WEBP": "image/webp", "PNG": "image/png"}


@dataclass(frozen=True)
class Variant:
    """A named square bounding box."""

    name: str
    max_edge: int


class ImageTransformer:
    """Resizes source images into the configured variants."""

    def __init__(
        self,
        variants: dict[str, int] | None = None,
        output_format: str = "WEBP",
        quality: int = DEFAULT_QUALITY,
        max_pixels: int = MAX_SOURCE_PIXELS,
    ):
        self.variants = {
            name: Variant(name, edge) for name, edge in (variants or DEFAULT_VARIANTS).items()
        }
        self.output_format = output_format.upper()
        self.content_type = OUTPUT_CONTENT_TYPES[self.output_format]
        self.quality = quality
        self.max_pixels = max_pixels

    def variant(self, name: str) -> Variant:
        """Look up a configured variant.

        Raises:
            UnknownVariantError: If the name is not configured
        """
        try:
            return self.variants[name]
        except KeyError:
            raise UnknownVariantError(
                f"Unknown variant {name!r}; expected one of {sorted(self.variants)}"
            ) from None

    def transform(self, data: bytes, content_type: str, variant: str) -> bytes:
        """Produce one variant from source bytes.

        Args:
            data: Source image bytes
            content_type: Detected source content type (used for error context)
            variant: Variant name

        Returns:
            Encoded image bytes in the output format

        Raises:
            UnknownVariantError: If the variant is not configured
            UnsupportedImageError: If the source cannot be decoded
        """
        target = self.variant(variant)
        image = self._decode(data, content_type)
        return self.encode(image, target)

    def transform_all(self, data: bytes, content_type: str) -> dict[str, bytes]:
        """Produce every configured variant, decoding the source once."""
        image = self._decode(data, content_type)
        return {name: self.encode(image, target) for name, target in self.variants.items()}

    def _decode(self, data: bytes, content_type: str) -> Image.Image:
        try:
            image = Image.open(BytesIO(data))
            width, height = image.size
            if width * height > self.max_pixels:
                raise UnsupportedImageError(
                    f"Image {width}x{height} exceeds {self.max_pixels} pixel limit"
                )
            # First frame only for animated sources
            image.seek(0)
            image.load()
        except UnsupportedImageError:
            raise
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as e:
            raise UnsupportedImageError(f"Cannot decode {content_type or 'image'}: {e}") from e

        has_alpha = image.mode in ("RGBA", "LA", "PA") or (
            image.mode == "P" and "transparency" in image.info
        )
        converted = image.convert("RGBA" if has_alpha else "RGB")
        # Drop EXIF/ICC/text chunks so output bytes depend on pixels only
        converted.info = {}
        return converted

    def encode(self, image: Image.Image, target: Variant) -> bytes:
        resized = image.copy()
        # thumbnail() keeps aspect ratio and never enlarges
        resized.thumbnail((target.max_edge, target.max_edge), Image.Resampling.LANCZOS)

        buffer = BytesIO()
        if self.output_format == "WEBP":
            resized.save(buffer, format="WEBP", quality=self.quality, method=6)
        else:
            resized.save(buffer, format="PNG", optimize=False)
        return buffer.getvalue()


def render_placeholders(transformer: ImageTransformer, source_path: str | None = None) -> dict[str, bytes]:
    """Render the placeholder image for every variant.

    Uses `source_path` when it names a readable image, otherwise a neutral
    generated square.
    """
    if source_path:
        try:
            data = Path(source_path).read_bytes()
            return transformer.transform_all(data, "image/*")
        except (OSError, UnsupportedImageError) as e:
            logger.warning("placeholder.source_unusable", path=source_path, error=str(e))

    largest = max(v.max_edge for v in transformer.variants.values())
    canvas = Image.new("RGB", (largest, largest), PLACEHOLDER_COLOR)
    return {name: transformer.encode(canvas, target) for name, target in transformer.variants.items()}
