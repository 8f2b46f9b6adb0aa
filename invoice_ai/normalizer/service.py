"""Document normalization for vision-model extraction.

Turns an uploaded invoice (single image or multi-page PDF) into one bounded
raster that can be sent inline to a vision model:

- Images are resized to fit within ``max_dimension`` on both axes (never upscaled).
- Single-page PDFs are rendered at ``single_page_dpi`` and treated like images.
- Multi-page PDFs render up to ``max_pdf_pages`` pages at ``composite_dpi``,
  stack them into one tall strip and bound the width only.

Image decoding uses Pillow; PDF rendering uses pdf2image (poppler):
https://github.com/Belval/pdf2image
"""

import base64
import io
import logging
from pathlib import Path
from typing import Literal

from pdf2image import convert_from_path, pdfinfo_from_path
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)
from PIL import Image, ImageOps
from pydantic import BaseModel

from invoice_ai.shared.config import Settings
from invoice_ai.shared.errors import ConfigurationError, DocumentRenderError

logger = logging.getLogger(__name__)

RasterMimeType = Literal["image/png", "image/jpeg", "image/webp"]

_ENCODERS: dict[str, tuple[str, RasterMimeType]] = {
    "png": ("PNG", "image/png"),
    "jpeg": ("JPEG", "image/jpeg"),
    "webp": ("WEBP", "image/webp"),
}


class NormalizedRaster(BaseModel):
    """Bounded raster produced from one source document.

    Attributes:
        data: Encoded image bytes
        mime_type: MIME type of ``data``
        width: Pixel width of the encoded image
        height: Pixel height of the encoded image
        source_kind: Whether the source was a single image or a PDF
        page_count: Total pages in the source document (may exceed rendered_pages)
        rendered_pages: Pages actually present in the raster
    """

    data: bytes
    mime_type: RasterMimeType
    width: int
    height: int
    source_kind: Literal["image", "pdf"]
    page_count: int
    rendered_pages: int

    def to_base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.to_base64()}"


def compute_resize_dimensions(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Fit (width, height) inside a max_dimension square, never enlarging.

    Args:
        width: Original pixel width
        height: Original pixel height
        max_dimension: Maximum allowed size on either axis

    Returns:
        Target (width, height), equal to the input when it already fits
    """
    if width <= max_dimension and height <= max_dimension:
        return width, height

    ratio = min(max_dimension / width, max_dimension / height)
    return max(1, round(width * ratio)), max(1, round(height * ratio))


class DocumentNormalizer:
    """Converts uploaded documents into model-consumable rasters."""

    def __init__(self, settings: Settings) -> None:
        """Initialize normalizer.

        Args:
            settings: Application settings with normalization limits
        """
        self.settings = settings

    def normalize(self, file_path: Path, extension: str | None = None) -> NormalizedRaster:
        """Produce a bounded raster for the given file.

        Args:
            file_path: Path to the uploaded document
            extension: Declared extension; defaults to the file suffix

        Returns:
            NormalizedRaster ready for the extraction provider

        Raises:
            DocumentRenderError: If the file is missing, unreadable or corrupt
            ConfigurationError: If PDF rendering support is not installed
        """
        file_path = Path(file_path)
        ext = (extension or file_path.suffix).lower().lstrip(".")

        if not file_path.is_file():
            raise DocumentRenderError(f"Document not found: {file_path}")

        if ext == "pdf":
            return self._normalize_pdf(file_path)
        return self._normalize_image(file_path)

    def _normalize_image(self, file_path: Path) -> NormalizedRaster:
        try:
            with Image.open(file_path) as source:
                source.load()
                image = ImageOps.exif_transpose(source)
        except (OSError, Image.DecompressionBombError) as e:
            raise DocumentRenderError(f"Could not decode image {file_path.name}: {e}") from e

        image = self._fit_inside(image)
        data, mime_type = self._encode(image, self.settings.image_quality)

        logger.info(f"Normalized image {file_path.name} to {image.width}x{image.height}")
        return NormalizedRaster(
            data=data,
            mime_type=mime_type,
            width=image.width,
            height=image.height,
            source_kind="image",
            page_count=1,
            rendered_pages=1,
        )

    def _normalize_pdf(self, file_path: Path) -> NormalizedRaster:
        total_pages = self._read_page_count(file_path)
        pages_to_render = min(total_pages, self.settings.max_pdf_pages)

        if pages_to_render == 1:
            return self._render_single_page(file_path, total_pages)
        return self._render_composite(file_path, pages_to_render, total_pages)

    def _read_page_count(self, file_path: Path) -> int:
        """Read the page count without rasterizing any page."""
        try:
            info = pdfinfo_from_path(str(file_path))
        except PDFInfoNotInstalledError as e:
            raise ConfigurationError(
                "PDF rendering requires poppler (pdfinfo/pdftoppm) on PATH. "
                "Install poppler-utils in the deployment image."
            ) from e
        except (PDFPageCountError, PDFSyntaxError) as e:
            raise DocumentRenderError(f"Could not read PDF {file_path.name}: {e}") from e

        total_pages = int(info.get("Pages", 0))
        if total_pages < 1:
            raise DocumentRenderError(f"PDF {file_path.name} has no pages")
        return total_pages

    def _render_pages(self, file_path: Path, dpi: int, last_page: int) -> list[Image.Image]:
        try:
            pages = convert_from_path(str(file_path), dpi=dpi, first_page=1, last_page=last_page)
        except PDFInfoNotInstalledError as e:
            raise ConfigurationError(
                "PDF rendering requires poppler (pdfinfo/pdftoppm) on PATH."
            ) from e
        except (PDFPageCountError, PDFSyntaxError, PDFPopplerTimeoutError) as e:
            raise DocumentRenderError(f"Could not render PDF {file_path.name}: {e}") from e

        if not pages:
            raise DocumentRenderError(f"PDF {file_path.name} rendered no pages")
        return pages

    def _render_single_page(self, file_path: Path, total_pages: int) -> NormalizedRaster:
        page = self._render_pages(file_path, self.settings.single_page_dpi, last_page=1)[0]
        page = self._fit_inside(page)
        data, mime_type = self._encode(page, self.settings.image_quality)

        logger.info(f"Normalized single-page PDF {file_path.name} to {page.width}x{page.height}")
        return NormalizedRaster(
            data=data,
            mime_type=mime_type,
            width=page.width,
            height=page.height,
            source_kind="pdf",
            page_count=total_pages,
            rendered_pages=1,
        )

    def _render_composite(
        self, file_path: Path, pages_to_render: int, total_pages: int
    ) -> NormalizedRaster:
        pages = self._render_pages(file_path, self.settings.composite_dpi, last_page=pages_to_render)
        composite = stitch_vertically(pages)
        raw_width, raw_height = composite.size

        logger.info(
            f"PDF {file_path.name}: {total_pages} total pages, rendering {len(pages)}, "
            f"raw composite {raw_width}x{raw_height}"
        )

        # Height is deliberately left unbounded: each page must stay legible.
        target_width = min(raw_width, self.settings.max_dimension)
        target_height = round(raw_height * (target_width / raw_width))
        if target_width < raw_width:
            composite = composite.resize((target_width, target_height), Image.Resampling.LANCZOS)

        data, mime_type = self._encode(composite, self.settings.composite_quality)
        return NormalizedRaster(
            data=data,
            mime_type=mime_type,
            width=composite.width,
            height=composite.height,
            source_kind="pdf",
            page_count=total_pages,
            rendered_pages=len(pages),
        )

    def _fit_inside(self, image: Image.Image) -> Image.Image:
        target = compute_resize_dimensions(image.width, image.height, self.settings.max_dimension)
        if target == image.size:
            return image
        return image.resize(target, Image.Resampling.LANCZOS)

    def _encode(self, image: Image.Image, quality: int) -> tuple[bytes, RasterMimeType]:
        """Encode an image in the configured raster format.

        Args:
            image: Image to encode
            quality: Encoder quality (ignored for lossless PNG)

        Returns:
            Tuple of (encoded bytes, MIME type)
        """
        image_format, mime_type = _ENCODERS[self.settings.raster_format]

        if image.mode == "P":
            image = image.convert("RGBA")
        if image_format == "JPEG" and image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        elif image.mode not in ("RGB", "RGBA", "L", "LA"):
            image = image.convert("RGB")

        buffer = io.BytesIO()
        if image_format == "PNG":
            image.save(buffer, format="PNG", optimize=True)
        else:
            image.save(buffer, format=image_format, quality=quality)
        return buffer.getvalue(), mime_type


def stitch_vertically(pages: list[Image.Image]) -> Image.Image:
    """Stack rendered pages top to bottom on a white canvas.

    Args:
        pages: Rendered pages in document order

    Returns:
        Composite image as wide as the widest page
    """
    width = max(page.width for page in pages)
    height = sum(page.height for page in pages)
    composite = Image.new("RGB", (width, height), "white")

    offset = 0
    for page in pages:
        composite.paste(page.convert("RGB"), (0, offset))
        offset += page.height
    return composite
