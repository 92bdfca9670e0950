"""Font discovery and text rendering helpers."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

from fpdf import FPDF  # type: ignore

logger = logging.getLogger(__name__)

_PROJECT_ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))


def find_font_path(env_var: str, candidates: List[str]) -> Optional[str]:
    override = os.getenv(env_var)
    if override and os.path.exists(override):
        return override

    for path in candidates:
        if path and os.path.exists(path):
            return path
    return None


@dataclass(frozen=True)
class FontPaths:
    regular: Optional[str] = None
    bold: Optional[str] = None


BUNDLED_REGULAR = os.path.join(_PROJECT_ROOT, "fonts", "NotoSans-Regular.ttf")
BUNDLED_BOLD = os.path.join(_PROJECT_ROOT, "fonts", "NotoSans-Bold.ttf")
SYSTEM_REGULAR_CANDIDATES = [
    "/usr/share/fonts/truetype/noto/NotoSans-Regular.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans.ttf",
    "/Library/Fonts/DejaVuSans.ttf",
]
SYSTEM_BOLD_CANDIDATES = [
    "/usr/share/fonts/truetype/noto/NotoSans-Bold.ttf",
    "/usr/share/fonts/truetype/dejavu/DejaVuSans-Bold.ttf",
    "/usr/share/fonts/dejavu/DejaVuSans-Bold.ttf",
    "/Library/Fonts/DejaVuSans-Bold.ttf",
]


def resolve_font_paths() -> FontPaths:
    """Look up the custom invoice font, honouring INVOICE_FONT_PATH overrides."""
    return FontPaths(
        regular=find_font_path("INVOICE_FONT_PATH", [BUNDLED_REGULAR, *SYSTEM_REGULAR_CANDIDATES]),
        bold=find_font_path("INVOICE_FONT_BOLD_PATH", [BUNDLED_BOLD, *SYSTEM_BOLD_CANDIDATES]),
    )


class FontManager:
    """Registers the invoice font on a PDF and measures/draws text with it.

    Uses the custom TrueType family when its file exists and falls back to the
    built-in Helvetica otherwise. Core fonts only cover Latin-1, so text is
    sanitized before it is measured or drawn.
    """

    FAMILY = "InvoiceFont"
    FALLBACK_FAMILY = "helvetica"

    def __init__(self, pdf: FPDF, paths: Optional[FontPaths] = None) -> None:
        self.pdf = pdf
        if paths is None:
            paths = resolve_font_paths()

        if paths.regular and os.path.exists(paths.regular):
            self.family = self.FAMILY
            self.unicode = True
            self.has_bold = False
            self.pdf.add_font(self.FAMILY, "", paths.regular)
            if paths.bold and os.path.exists(paths.bold):
                self.pdf.add_font(self.FAMILY, "B", paths.bold)
                self.has_bold = True
        else:
            if paths.regular:
                logger.warning("Invoice font %s not found; using built-in Helvetica", paths.regular)
            else:
                logger.warning("No invoice font configured; using built-in Helvetica")
            self.family = self.FALLBACK_FAMILY
            self.unicode = False
            self.has_bold = True

    def supports(self, text: str) -> bool:
        if self.unicode:
            return True
        try:
            text.encode("latin-1")
        except UnicodeEncodeError:
            return False
        return True

    def sanitize(self, text: str) -> str:
        if self.supports(text):
            return text
        return text.encode("latin-1", "replace").decode("latin-1")

    def _style(self, bold: bool) -> str:
        return "B" if bold and self.has_bold else ""

    def text_width(self, text: str, size: float, bold: bool = False) -> float:
        self.pdf.set_font(self.family, self._style(bold), size)
        return self.pdf.get_string_width(self.sanitize(text))

    def draw_text(
        self,
        x: float,
        y: float,
        text: str,
        size: float,
        color: Tuple[int, int, int],
        bold: bool = False,
    ) -> None:
        text = self.sanitize(text)
        self.pdf.set_text_color(*color)
        self.pdf.set_font(self.family, self._style(bold), size)
        if bold and not self.has_bold:
            self.pdf.text(x, y, text)
            self.pdf.text(x + 0.4, y, text)
        else:
            self.pdf.text(x, y, text)
