# Copyright (C) 2025-2026 Retio AI
# SPDX-License-Identifier: AGPL-3.0-only

"""DocumentAssembler — one PDF page per downloaded page image.

Each image is decoded with Pillow, turned into a single-page PDF by img2pdf
at a fixed 72 dpi (so the page measures exactly the image's pixel size in
points) and appended to a pikepdf document. A page that fails to decode is
logged and skipped; only serialization failure is fatal.

Synchronous and CPU-bound: call it through ``asyncio.to_thread``.
"""

from __future__ import annotations

import io
import logging
from collections.abc import Iterable
from dataclasses import dataclass

import img2pdf
import pikepdf
from PIL import Image

from . import DownloadedPage
from .errors import AssemblyError, DecodeError

logger = logging.getLogger(__name__)

# img2pdf warns once per alpha image; pages are flattened before conversion.
logging.getLogger("img2pdf").setLevel(logging.ERROR)

_LAYOUT_72DPI = img2pdf.get_fixed_dpi_layout_fun((72, 72))

# (format, mode) pairs img2pdf embeds without re-encoding
_PASSTHROUGH = {
    ("PNG", "RGB"),
    ("PNG", "L"),
    ("PNG", "1"),
    ("JPEG", "RGB"),
    ("JPEG", "L"),
    ("JPEG", "CMYK"),
}


@dataclass(frozen=True, slots=True)
class PageSize:
    sequence: int
    width: int
    height: int


@dataclass(frozen=True, slots=True)
class AssembledDocument:
    """Serialized PDF plus what went into it."""

    data: bytes
    pages: tuple[PageSize, ...] = ()
    skipped: tuple[int, ...] = ()  # sequence indices that failed to decode

    @property
    def page_count(self) -> int:
        return len(self.pages)

    @property
    def included(self) -> tuple[int, ...]:
        return tuple(p.sequence for p in self.pages)


@dataclass(slots=True)
class _Prepared:
    sequence: int
    width: int
    height: int
    image_bytes: bytes


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def _normalize_image(data: bytes, sequence: int) -> _Prepared:
    """Decode *data* fully and return bytes img2pdf embeds losslessly.

    Raises:
        DecodeError: the payload is not a decodable image.
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            width, height = img.size
            if (img.format, img.mode) in _PASSTHROUGH and "transparency" not in img.info:
                return _Prepared(sequence=sequence, width=width, height=height, image_bytes=data)
            if _has_alpha(img):
                rgba = img.convert("RGBA")
                flat = Image.new("RGB", rgba.size, (255, 255, 255))
                flat.paste(rgba, mask=rgba.getchannel("A"))
            elif img.mode in ("L", "1"):
                flat = img.copy()
            else:
                flat = img.convert("RGB")
            buf = io.BytesIO()
            flat.save(buf, format="PNG")
            return _Prepared(sequence=sequence, width=width, height=height, image_bytes=buf.getvalue())
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError) as exc:
        raise DecodeError(f"undecodable image: {exc}", sequence=sequence) from exc


class DocumentAssembler:
    def __init__(self, *, job_id: str = "") -> None:
        self._job_id = job_id

    def assemble(self, pages: Iterable[DownloadedPage]) -> AssembledDocument:
        """Build the PDF from successfully downloaded pages, in sequence order.

        Pages without a payload are ignored; undecodable pages are skipped.
        Zero usable pages produce a valid, empty PDF.

        Raises:
            AssemblyError: the PDF could not be serialized.
        """
        usable = sorted((p for p in pages if p.ok), key=lambda p: p.sequence)
        out = pikepdf.new()
        sources: list[pikepdf.Pdf] = []
        sizes: list[PageSize] = []
        skipped: list[int] = []
        try:
            for page in usable:
                try:
                    src, size = self._page_pdf(page)
                except DecodeError as exc:
                    logger.warning("Skipping page %d job=%s: %s", page.request.ordinal, self._job_id, exc)
                    skipped.append(page.sequence)
                    continue
                sources.append(src)
                out.pages.extend(src.pages)
                sizes.append(size)

            buf = io.BytesIO()
            try:
                out.save(buf, deterministic_id=True)
            except Exception as exc:
                raise AssemblyError(f"PDF serialization failed: {exc}") from exc
        finally:
            for src_pdf in sources:
                src_pdf.close()
            out.close()

        logger.info(
            "Assembled %d page(s), skipped %d job=%s",
            len(sizes),
            len(skipped),
            self._job_id,
        )
        return AssembledDocument(data=buf.getvalue(), pages=tuple(sizes), skipped=tuple(skipped))

    def _page_pdf(self, page: DownloadedPage) -> tuple[pikepdf.Pdf, PageSize]:
        """Single-page PDF for *page*. Any per-page failure surfaces as DecodeError."""
        seq = page.sequence
        try:
            data = page.path.read_bytes()
        except OSError as exc:
            raise DecodeError(f"payload unreadable: {exc}", sequence=seq) from exc

        prepared = _normalize_image(data, seq)
        try:
            pdf_bytes = img2pdf.convert(prepared.image_bytes, layout_fun=_LAYOUT_72DPI)
            src = pikepdf.open(io.BytesIO(pdf_bytes))
        except Exception as exc:
            raise DecodeError(f"image conversion failed: {exc}", sequence=seq) from exc
        return src, PageSize(sequence=seq, width=prepared.width, height=prepared.height)
