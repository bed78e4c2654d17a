from __future__ import annotations

import json
import logging
import os
import re
from functools import lru_cache
from io import BytesIO

from reportlab.lib.pagesizes import LETTER
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFont
from reportlab.pdfgen import canvas

PAGE_SIZE = LETTER
PAGE_MARGIN = 54

FONT_REGULAR = "Helvetica"
FONT_BOLD = "Helvetica-Bold"
FONT_SERIF = "Times-Roman"
CUSTOM_FONT_NAME = "CVBoostBody"

COVER_LETTER_FONT_SIZE = 11
RESUME_BODY_FONT_SIZE = 10.5
RESUME_HEADING_FONT_SIZE = 11.5
RESUME_NAME_FONT_SIZE = 18
RESUME_CONTACT_FONT_SIZE = 9.5
BULLET_INDENT = 14

TEXT_COLOR = (0.08, 0.08, 0.08)
NAME_COLOR = (0.05, 0.05, 0.05)
CONTACT_COLOR = (0.25, 0.25, 0.25)
HEADING_COLOR = (0.1, 0.2, 0.35)
DIVIDER_COLOR = (0.85, 0.87, 0.9)

WINANSI_REPLACEMENTS = {
    "–": "-",
    "—": "-",
    "−": "-",
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "…": "...",
}
BOX_DRAWING_PATTERN = re.compile(r"[─-╿]")
BLOCK_ELEMENT_PATTERN = re.compile(r"[▀-▟]")
BULLET_PATTERN = re.compile(r"^(\s*[-*]\s+|\s*•\s+)")
COLON_HEADER_PATTERN = re.compile(r"^[A-Z][A-Za-z0-9 &/+\-]{2,50}:\s*$")
PHONE_PATTERN = re.compile(r"(\+?\d[\d\s().-]{7,}\d)")
URL_PATTERN = re.compile(r"(https?://|www\.)", re.IGNORECASE)

logger = logging.getLogger("cvboost.api")


def sanitize_for_winansi(text: str) -> str:
    # Standard Type1 fonts only cover WinAnsi; map the glyphs CVs commonly carry.
    for source, target in WINANSI_REPLACEMENTS.items():
        text = text.replace(source, target)
    text = BOX_DRAWING_PATTERN.sub("|", text)
    return BLOCK_ELEMENT_PATTERN.sub("#", text)


@lru_cache(maxsize=4)
def _register_custom_font(path: str) -> str | None:
    try:
        pdfmetrics.registerFont(TTFont(CUSTOM_FONT_NAME, path))
    except Exception as exc:
        logger.warning(
            json.dumps(
                {"event": "pdf_font_fallback", "path": path, "reason": str(exc)},
                ensure_ascii=False,
            )
        )
        return None
    return CUSTOM_FONT_NAME


def resolve_body_font(default: str) -> str:
    path = os.getenv("CVBOOST_PDF_FONT_PATH", "").strip()
    if not path:
        return default
    return _register_custom_font(path) or default


def text_width(text: str, font_name: str, font_size: float) -> float:
    return pdfmetrics.stringWidth(text, font_name, font_size)


def wrap_line_to_width(line: str, max_width: float, font_name: str, font_size: float) -> list[str]:
    if line.strip() == "":
        return [""]

    match = re.match(r"^\s+", line)
    prefix = match.group(0) if match else ""
    words = line[len(prefix) :].split()

    lines: list[str] = []
    current = ""
    for word in words:
        candidate = f"{current} {word}" if current else word
        if text_width(prefix + candidate, font_name, font_size) <= max_width:
            current = candidate
            continue

        if current:
            lines.append(prefix + current)
            current = word
            if text_width(prefix + current, font_name, font_size) <= max_width:
                continue

        # A single word wider than the line: hard-split by characters.
        chunk = ""
        for ch in word:
            piece = chunk + ch
            if text_width(prefix + piece, font_name, font_size) > max_width and chunk:
                lines.append(prefix + chunk)
                chunk = ch
            else:
                chunk = piece
        current = chunk

    if current:
        lines.append(prefix + current)
    return lines


def is_section_header(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    upperish = stripped == stripped.upper() and bool(re.search(r"[A-Z]", stripped)) and len(stripped) <= 40
    return upperish or bool(COLON_HEADER_PATTERN.match(stripped))


def looks_like_contact(line: str) -> bool:
    stripped = line.strip()
    if not stripped:
        return False
    return (
        "@" in stripped
        or bool(URL_PATTERN.search(stripped))
        or "linkedin.com" in stripped.lower()
        or bool(PHONE_PATTERN.search(stripped))
    )


class _PageCursor:
    """Tracks the write position and starts a new page when the bottom margin is hit."""

    def __init__(self, pdf: canvas.Canvas, *, line_height: float, margin: float = PAGE_MARGIN):
        self.pdf = pdf
        self.line_height = line_height
        self.margin = margin
        self.width, self.height = PAGE_SIZE
        self.y = self.height - margin
        self.pages = 1

    @property
    def usable_width(self) -> float:
        return self.width - self.margin * 2

    def ensure_room(self) -> None:
        if self.y < self.margin + self.line_height:
            self.pdf.showPage()
            self.pages += 1
            self.y = self.height - self.margin

    def draw(self, text: str, *, x: float, font_name: str, font_size: float, color: tuple[float, float, float]) -> None:
        self.pdf.setFont(font_name, font_size)
        self.pdf.setFillColorRGB(*color)
        self.pdf.drawString(x, self.y - font_size, text)

    def draw_wrapped(
        self,
        line: str,
        *,
        x: float,
        font_name: str,
        font_size: float,
        color: tuple[float, float, float] = TEXT_COLOR,
    ) -> None:
        available = self.usable_width - (x - self.margin)
        for piece in wrap_line_to_width(line, available, font_name, font_size):
            self.ensure_room()
            self.draw(piece, x=x, font_name=font_name, font_size=font_size, color=color)
            self.y -= self.line_height


def _new_canvas(buffer: BytesIO, *, title: str) -> canvas.Canvas:
    pdf = canvas.Canvas(buffer, pagesize=PAGE_SIZE)
    pdf.setTitle(title)
    return pdf


def build_cover_letter_pdf(text: str) -> bytes:
    font_name = resolve_body_font(FONT_SERIF)
    font_size = COVER_LETTER_FONT_SIZE
    line_height = round(font_size * 1.55, 1)

    buffer = BytesIO()
    pdf = _new_canvas(buffer, title="Cover Letter")
    cursor = _PageCursor(pdf, line_height=line_height)

    for raw in sanitize_for_winansi(text.strip()).replace("\r\n", "\n").split("\n"):
        line = raw.rstrip()
        if not line.strip():
            cursor.y -= line_height * 0.9
            continue
        cursor.draw_wrapped(line, x=PAGE_MARGIN, font_name=font_name, font_size=font_size)

    pdf.save()
    buffer.seek(0)
    return buffer.read()


def split_resume_header(text: str) -> tuple[str, list[str], list[str]]:
    """Split CV text into name line, up to three contact lines and body lines."""
    raw_lines = text.replace("\r\n", "\n").split("\n")
    first_idx = next((idx for idx, line in enumerate(raw_lines) if line.strip()), -1)
    if first_idx < 0:
        return "Optimized CV", [], []

    name_line = raw_lines[first_idx].strip()
    contact_lines: list[str] = []
    idx = first_idx + 1
    while idx < len(raw_lines) and len(contact_lines) < 3:
        stripped = raw_lines[idx].strip()
        if not stripped:
            break
        if looks_like_contact(stripped) or len(stripped) <= 60:
            contact_lines.append(stripped)
            idx += 1
        else:
            break

    while idx < len(raw_lines) and raw_lines[idx].strip() == "":
        idx += 1
    return name_line, contact_lines, raw_lines[idx:]


def build_resume_pdf(text: str) -> bytes:
    body_font = resolve_body_font(FONT_REGULAR)
    line_height = round(RESUME_BODY_FONT_SIZE * 1.45, 1)
    name_line, contact_lines, body_lines = split_resume_header(sanitize_for_winansi(text))

    buffer = BytesIO()
    pdf = _new_canvas(buffer, title=name_line)
    cursor = _PageCursor(pdf, line_height=line_height)

    cursor.draw_wrapped(name_line, x=PAGE_MARGIN, font_name=FONT_BOLD, font_size=RESUME_NAME_FONT_SIZE, color=NAME_COLOR)
    cursor.y -= 2

    if contact_lines:
        cursor.draw_wrapped(
            "  •  ".join(contact_lines),
            x=PAGE_MARGIN,
            font_name=body_font,
            font_size=RESUME_CONTACT_FONT_SIZE,
            color=CONTACT_COLOR,
        )

    cursor.y -= 6
    pdf.setStrokeColorRGB(*DIVIDER_COLOR)
    pdf.setLineWidth(1)
    pdf.line(PAGE_MARGIN, cursor.y, cursor.width - PAGE_MARGIN, cursor.y)
    cursor.y -= 10

    for raw in body_lines:
        line = raw.replace("\t", "  ")
        stripped = line.strip()

        if not stripped:
            cursor.y -= line_height * 0.6
            continue

        if is_section_header(stripped):
            cursor.y -= 4
            header = re.sub(r":\s*$", "", stripped)
            cursor.draw_wrapped(
                header.upper(),
                x=PAGE_MARGIN,
                font_name=FONT_BOLD,
                font_size=RESUME_HEADING_FONT_SIZE,
                color=HEADING_COLOR,
            )
            cursor.y -= 2
            continue

        if BULLET_PATTERN.match(line):
            cleaned = BULLET_PATTERN.sub("", line, count=1).strip()
            cursor.ensure_room()
            cursor.draw("•", x=PAGE_MARGIN, font_name=body_font, font_size=RESUME_BODY_FONT_SIZE, color=TEXT_COLOR)
            cursor.draw_wrapped(
                cleaned,
                x=PAGE_MARGIN + BULLET_INDENT,
                font_name=body_font,
                font_size=RESUME_BODY_FONT_SIZE,
            )
            continue

        cursor.draw_wrapped(line.rstrip(), x=PAGE_MARGIN, font_name=body_font, font_size=RESUME_BODY_FONT_SIZE)

    pdf.save()
    buffer.seek(0)
    return buffer.read()
