from __future__ import annotations

from io import BytesIO
from typing import Any

from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH, WD_TAB_ALIGNMENT
from docx.shared import Inches, Pt, RGBColor

BODY_FONT = "Calibri"
INK = RGBColor(0x1E, 0x29, 0x3B)
MUTED = RGBColor(0x47, 0x55, 0x69)
FAINT = RGBColor(0x94, 0xA3, 0xB8)
DATE_GREY = RGBColor(0x64, 0x74, 0x8B)
ACCENT = RGBColor(0x4F, 0x46, 0xE5)

PRIMARY_SECTIONS = ("experience", "education")


def _tight(paragraph, before=0, after=0):
    paragraph.paragraph_format.space_before = Pt(before)
    paragraph.paragraph_format.space_after = Pt(after)


def _add_run(paragraph, text, *, size=11, bold=False, italic=False, color=None):
    run = paragraph.add_run(text)
    run.font.name = BODY_FONT
    run.font.size = Pt(size)
    run.bold = bold
    run.italic = italic
    if color is not None:
        run.font.color.rgb = color
    return run


def _add_heading(doc, text):
    paragraph = doc.add_paragraph()
    _tight(paragraph, before=12, after=6)
    _add_run(paragraph, text.upper(), size=13, bold=True, color=ACCENT)
    return paragraph


def _add_bullet(doc, text):
    paragraph = doc.add_paragraph()
    _tight(paragraph, before=2, after=2)
    paragraph.paragraph_format.left_indent = Inches(0.25)
    _add_run(paragraph, "• ", color=ACCENT)
    _add_run(paragraph, text)


def _add_items(doc, section):
    for item in section.get("items") or []:
        if item.get("title") or item.get("date"):
            title_line = doc.add_paragraph()
            _tight(title_line, before=4)
            title_line.paragraph_format.tab_stops.add_tab_stop(Inches(6.5), WD_TAB_ALIGNMENT.RIGHT)
            _add_run(title_line, item.get("title") or "", size=12, bold=True, color=INK)
            if item.get("date"):
                _add_run(title_line, f"\t{item['date']}", color=DATE_GREY)

        if item.get("subtitle"):
            subtitle = doc.add_paragraph()
            _tight(subtitle)
            _add_run(subtitle, item["subtitle"], italic=True, color=MUTED)
            if item.get("location"):
                _add_run(subtitle, f"  |  {item['location']}", size=10, color=FAINT)

        if item.get("description"):
            description = doc.add_paragraph()
            _tight(description, before=3)
            _add_run(description, item["description"])

        for bullet in item.get("bullets") or []:
            if bullet.strip():
                _add_bullet(doc, bullet)


def _find_section(sections, kind):
    for section in sections:
        if section.get("type") == kind or (section.get("title") or "").lower() == kind:
            return section
    return None


def build_resume_docx(preview: dict[str, Any]) -> bytes:
    """Render a preview document as a single-column Word file."""
    doc = Document()
    for sec in doc.sections:
        sec.top_margin = Inches(0.75)
        sec.bottom_margin = Inches(0.75)
        sec.left_margin = Inches(0.75)
        sec.right_margin = Inches(0.75)

    name = doc.add_paragraph()
    _tight(name, after=6)
    name.alignment = WD_ALIGN_PARAGRAPH.CENTER
    _add_run(name, preview.get("name") or "Your Name", size=24, bold=True, color=INK)

    if preview.get("title"):
        title = doc.add_paragraph()
        _tight(title)
        title.alignment = WD_ALIGN_PARAGRAPH.CENTER
        _add_run(title, preview["title"], size=12, italic=True, color=MUTED)

    contact = preview.get("contact") or {}
    parts = [contact[key] for key in ("email", "phone", "location", "linkedin", "github", "website") if contact.get(key)]
    if parts:
        line = doc.add_paragraph()
        _tight(line, after=10)
        line.alignment = WD_ALIGN_PARAGRAPH.CENTER
        for idx, part in enumerate(parts):
            is_link = "linkedin" in part.lower() or "github" in part.lower()
            _add_run(line, part, size=10, color=ACCENT if is_link else None)
            if idx < len(parts) - 1:
                _add_run(line, "  |  ", size=10, color=FAINT)

    if preview.get("summary"):
        _add_heading(doc, "Professional Summary")
        summary = doc.add_paragraph()
        _tight(summary, after=10)
        _add_run(summary, preview["summary"])

    sections = preview.get("sections") or []
    rendered: list[int] = []
    for kind in PRIMARY_SECTIONS:
        section = _find_section(sections, kind)
        if section is None or not section.get("items"):
            continue
        rendered.append(id(section))
        _add_heading(doc, kind.title())
        _add_items(doc, section)

    for label, key in (("Skills", "skills"), ("Languages", "languages")):
        values = preview.get(key) or []
        if values:
            _add_heading(doc, label)
            paragraph = doc.add_paragraph()
            _tight(paragraph, after=10)
            _add_run(paragraph, "  •  ".join(values))

    for section in sections:
        if id(section) in rendered or not section.get("items"):
            continue
        _add_heading(doc, section.get("title") or "")
        _add_items(doc, section)

    buffer = BytesIO()
    doc.save(buffer)
    return buffer.getvalue()
