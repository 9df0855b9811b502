"""Render PDF pages to PNG images with poppler's pdftoppm."""

from __future__ import annotations

import os
import re
import shutil
import subprocess
from typing import List, Optional

import fitz  # PyMuPDF

from ..config import ConfigurationError
from ..domain.models import PageImage
from ..logging import get_logger

LOG = get_logger("pipeline-rasterize")

DEFAULT_TOOL = "pdftoppm"
DEFAULT_TIMEOUT_SECONDS = 300

# pdftoppm names pages <prefix>-1.png ... or zero-padded <prefix>-01.png
_PAGE_SUFFIX_RE = re.compile(r"-(\d+)\.png$")


class RasterizationError(Exception):
    """A single PDF could not be turned into page images."""

    def __init__(self, pdf_path: str, message: str) -> None:
        self.pdf_path = pdf_path
        super().__init__(f"{os.path.basename(pdf_path)}: {message}")


def page_number_from_filename(path: str) -> Optional[int]:
    m = _PAGE_SUFFIX_RE.search(os.path.basename(path))
    return int(m.group(1)) if m else None


def collect_page_images(output_dir: str, prefix: str) -> List[PageImage]:
    """Return PageImages for <prefix>-N.png in output_dir, ordered by N."""
    pages: List[PageImage] = []
    for name in os.listdir(output_dir):
        if not name.startswith(prefix + "-"):
            continue
        number = page_number_from_filename(name)
        if number is None:
            continue
        pages.append(PageImage(path=os.path.join(output_dir, name), page_number=number))
    pages.sort(key=lambda p: p.page_number)
    return pages


def inspect_pdf(pdf_path: str) -> int:
    """Return the page count, or raise RasterizationError for unreadable PDFs."""
    try:
        doc = fitz.open(pdf_path)
    except Exception as exc:
        raise RasterizationError(pdf_path, f"cannot open PDF ({exc})") from exc
    try:
        if doc.needs_pass:
            raise RasterizationError(pdf_path, "PDF is encrypted")
        count = doc.page_count
    finally:
        doc.close()
    if count <= 0:
        raise RasterizationError(pdf_path, "PDF has no pages")
    return count


class PdfRasterizer:
    """Turns one PDF into an ordered list of page images."""

    def __init__(
        self,
        *,
        dpi: int = 150,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
        tool: str = DEFAULT_TOOL,
    ) -> None:
        self.dpi = dpi
        self.timeout = timeout
        self.tool = tool

    def ensure_available(self) -> str:
        """Return the resolved tool path; a missing tool is a configuration error."""
        resolved = shutil.which(self.tool)
        if not resolved:
            raise ConfigurationError(
                f"'{self.tool}' not found on PATH. Install poppler-utils to rasterize PDFs."
            )
        return resolved

    def rasterize(self, pdf_path: str, output_dir: str) -> List[PageImage]:
        page_count = inspect_pdf(pdf_path)
        os.makedirs(output_dir, exist_ok=True)
        prefix = "page"
        out_prefix = os.path.join(output_dir, prefix)

        LOG.info(f"Converting {os.path.basename(pdf_path)} to images ({self.dpi} DPI, {page_count} page(s))")
        cmd = [self.tool, "-png", "-r", str(self.dpi), pdf_path, out_prefix]
        try:
            result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.timeout)
        except FileNotFoundError as exc:
            raise RasterizationError(pdf_path, f"'{self.tool}' is not available") from exc
        except subprocess.TimeoutExpired as exc:
            raise RasterizationError(pdf_path, f"rasterization timed out after {self.timeout}s") from exc

        if result.returncode != 0:
            detail = (result.stderr or result.stdout or "").strip()[:500]
            raise RasterizationError(pdf_path, f"{self.tool} exited with {result.returncode}: {detail}")

        pages = collect_page_images(output_dir, prefix)
        if len(pages) != page_count:
            for page in pages:
                page.discard()
            raise RasterizationError(
                pdf_path, f"expected {page_count} page image(s), {self.tool} produced {len(pages)}"
            )
        LOG.info(f"Generated {len(pages)} page image(s)")
        return pages
