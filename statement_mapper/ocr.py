"""
OCR Fallback.

Rasterises PDF pages with ``pdf2image`` (poppler's ``pdftoppm``) and runs
``pytesseract`` over each page image.  Used when the native text layer is
absent or untrustworthy.

A missing toolchain, a rasterisation error or a timeout all yield an empty
string and a warning; the pipeline then falls through to its next strategy.
"""

from __future__ import annotations

import shutil
from typing import Any, List

import pytesseract
from pdf2image import convert_from_bytes
from pdf2image.exceptions import (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
)

from statement_mapper.config import OcrConfig
from statement_mapper.logging_setup import get_logger

logger = get_logger("ocr")

_RASTER_ERRORS = (
    PDFInfoNotInstalledError,
    PDFPageCountError,
    PDFPopplerTimeoutError,
    PDFSyntaxError,
    OSError,
    ValueError,
)

# pytesseract signals a timeout with a bare RuntimeError.
_OCR_ERRORS = (
    pytesseract.TesseractError,
    pytesseract.TesseractNotFoundError,
    RuntimeError,
    OSError,
)


class OcrEngine:
    """Turn PDF bytes into OCR text."""

    def __init__(self, config: OcrConfig) -> None:
        self._config = config

    # ------------------------------------------------------------------ #
    # Toolchain
    # ------------------------------------------------------------------ #

    @staticmethod
    def is_available() -> bool:
        """True when both ``pdftoppm`` and ``tesseract`` are on PATH."""
        tesseract_cmd = pytesseract.pytesseract.tesseract_cmd
        return bool(shutil.which("pdftoppm")) and bool(shutil.which(tesseract_cmd))

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def extract_text(self, document: bytes) -> str:
        """OCR the first pages of *document*; ``""`` on any failure."""
        if not document:
            return ""
        if not self.is_available():
            logger.warning("OCR toolchain (pdftoppm/tesseract) not installed; skipping OCR")
            return ""

        images = self._rasterise(document, self._config.dpi, self._config.max_pages)
        if not images:
            return ""

        texts: list[str] = []
        for idx, image in enumerate(images, start=1):
            page_text = self._recognise(image)
            logger.debug("OCR page %d returned %d chars", idx, len(page_text))
            if page_text.strip():
                texts.append(page_text)

        text = "\n".join(texts).strip()

        if len(text) < self._config.retry_below_chars:
            logger.info(
                "OCR produced %d chars; retrying page 1 at %d dpi",
                len(text),
                self._config.retry_dpi,
            )
            hi_res = self._rasterise(document, self._config.retry_dpi, 1)
            if hi_res:
                retry = self._recognise(hi_res[0]).strip()
                if len(retry) > len(text):
                    text = retry

        logger.info("OCR extracted %d chars from %d page(s)", len(text), len(images))
        return text

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _rasterise(self, document: bytes, dpi: int, last_page: int) -> List[Any]:
        try:
            return convert_from_bytes(
                document,
                dpi=dpi,
                first_page=1,
                last_page=last_page,
                fmt="png",
                timeout=int(self._config.timeout_seconds),
            )
        except _RASTER_ERRORS as exc:
            logger.warning("Rasterisation failed at %d dpi: %s", dpi, exc)
            return []

    def _recognise(self, image: Any) -> str:
        try:
            return pytesseract.image_to_string(
                image,
                lang=self._config.language,
                config=f"--psm {self._config.page_segmentation_mode}",
                timeout=self._config.timeout_seconds,
            ) or ""
        except _OCR_ERRORS as exc:
            logger.warning("Tesseract failed on a page: %s", exc)
            return ""
