"""
Novel Word Document Exporter
============================
Produces a readable DOCX from a ``NovelAssembly``.

Features:
- Cover page with metadata and a crawl summary table
- Auto-generated Table of Contents (TOC field, refreshed by Word)
- One Heading 1 section per chapter, in reading order
- Chapter HTML flattened to plain paragraphs
- Italic placeholder for chapters that could not be fetched
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from bs4 import BeautifulSoup

from .models import ChapterResult, NovelAssembly

logger = logging.getLogger(__name__)

_BLOCK_TAGS = ["p", "h1", "h2", "h3", "h4", "h5", "h6", "blockquote", "li"]


def export_docx(
    assembly: NovelAssembly,
    filepath: str,
    *,
    include_toc: bool = True,
) -> str:
    """
    Export a crawled novel to a Word document.

    Args:
        assembly: The crawl result (metadata plus ordered chapters)
        filepath: Output .docx path
        include_toc: Whether to insert a TOC field

    Returns:
        Absolute path to the created file
    """
    from docx import Document
    from docx.enum.table import WD_TABLE_ALIGNMENT
    from docx.enum.text import WD_ALIGN_PARAGRAPH
    from docx.shared import Pt

    output_path = Path(filepath)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    doc = Document()
    novel = assembly.novel

    # ── Configure base styles ──────────────────────────────────────
    style = doc.styles["Normal"]
    style.font.name = "Georgia"
    style.font.size = Pt(11)
    style.paragraph_format.space_after = Pt(6)

    # ── Cover Page ─────────────────────────────────────────────────
    title = doc.add_heading(novel.title or "Untitled Novel", level=0)
    title.alignment = WD_ALIGN_PARAGRAPH.CENTER
    if novel.author:
        by_line = doc.add_paragraph(f"by {novel.author}")
        by_line.alignment = WD_ALIGN_PARAGRAPH.CENTER

    summary_items = [
        ("Source", novel.toc_url),
        ("Status", novel.status.value),
        ("Genres", ", ".join(novel.genres) or "N/A"),
        ("Chapters Listed", str(novel.total_chapters)),
        ("Chapters Fetched", str(assembly.fetched_count)),
        ("Chapters Failed", str(len(assembly.failed_chapters))),
        ("Outcome", assembly.outcome.value),
        ("Crawled At", assembly.crawled_at),
    ]
    if novel.reported_chapter_count is not None:
        summary_items.insert(4, ("Chapters Reported", str(novel.reported_chapter_count)))

    summary_table = doc.add_table(rows=len(summary_items), cols=2)
    summary_table.alignment = WD_TABLE_ALIGNMENT.CENTER
    for i, (label, value) in enumerate(summary_items):
        row = summary_table.rows[i]
        _cell_text(row.cells[0], label, bold=True, size=Pt(10))
        _cell_text(row.cells[1], value, size=Pt(10))

    if novel.description:
        doc.add_heading("Synopsis", level=2)
        for para_text in novel.description.split("\n"):
            if para_text.strip():
                doc.add_paragraph(para_text.strip())

    doc.add_page_break()

    # ── Table of Contents ──────────────────────────────────────────
    if include_toc:
        doc.add_heading("Table of Contents", level=1)
        _add_toc_field(doc)
        doc.add_page_break()

    # ── Chapters ───────────────────────────────────────────────────
    for idx, chapter in enumerate(assembly.chapters):
        _render_chapter(doc, chapter)
        if idx < len(assembly.chapters) - 1:
            doc.add_page_break()

    # ── Save ───────────────────────────────────────────────────────
    doc.save(str(output_path))
    logger.info(f"[DOCX] Exported {len(assembly.chapters)} chapter(s) to {output_path.absolute()}")
    return str(output_path.absolute())


# ---------------------------------------------------------------------------
# Per-chapter rendering
# ---------------------------------------------------------------------------

def _render_chapter(doc, chapter: ChapterResult) -> None:
    from docx.shared import Pt, RGBColor

    heading_text = chapter.title or f"Chapter {chapter.number}"
    doc.add_heading(heading_text[:120], level=1)

    if not chapter.ok or not chapter.content:
        p = doc.add_paragraph()
        run = p.add_run(f"[Chapter not available: {chapter.error or chapter.status.value}]")
        run.font.italic = True
        run.font.color.rgb = RGBColor(0x99, 0x1B, 0x1B)
        url_run = p.add_run(f"\n{chapter.url}")
        url_run.font.size = Pt(8)
        return

    for para_text in html_to_paragraphs(chapter.content):
        doc.add_paragraph(para_text)


def html_to_paragraphs(html: str) -> List[str]:
    """Flatten chapter HTML to a list of paragraph strings."""
    soup = BeautifulSoup(html, "lxml")
    blocks = soup.find_all(_BLOCK_TAGS)
    if blocks:
        texts = [b.get_text(" ", strip=True) for b in blocks if not b.find(_BLOCK_TAGS)]
    else:
        for br in soup.find_all("br"):
            br.replace_with("\n")
        texts = [line.strip() for line in soup.get_text().split("\n")]
    return [t for t in texts if t]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _cell_text(cell, text: str, bold: bool = False, size=None) -> None:
    """Set cell text with formatting."""
    cell.text = text
    for paragraph in cell.paragraphs:
        for run in paragraph.runs:
            run.bold = bold
            if size:
                run.font.size = size


def _add_toc_field(doc) -> None:
    """Insert a Word TOC field code (updates on open in Word)."""
    from docx.oxml import OxmlElement
    from docx.oxml.ns import qn

    paragraph = doc.add_paragraph()
    run = paragraph.add_run()

    fld_char_begin = OxmlElement("w:fldChar")
    fld_char_begin.set(qn("w:fldCharType"), "begin")
    run._element.append(fld_char_begin)

    instr_text = OxmlElement("w:instrText")
    instr_text.set(qn("xml:space"), "preserve")
    instr_text.text = ' TOC \\o "1-1" \\h \\z \\u '
    run._element.append(instr_text)

    fld_char_separate = OxmlElement("w:fldChar")
    fld_char_separate.set(qn("w:fldCharType"), "separate")
    run._element.append(fld_char_separate)

    placeholder_run = paragraph.add_run(
        "[Open in Microsoft Word and press F9 to update Table of Contents]"
    )
    placeholder_run.font.italic = True

    fld_char_end = OxmlElement("w:fldChar")
    fld_char_end.set(qn("w:fldCharType"), "end")
    run._element.append(fld_char_end)
