"""
Markdown -> DOCX export.

Markdown is rendered to HTML with Python-Markdown, walked with BeautifulSoup
and written with python-docx using academic formatting (Times New Roman 12pt,
1.5 line spacing, justified paragraphs, centered title).
"""
from __future__ import annotations

import base64
import binascii
import io
import logging
import re
from typing import Optional

import httpx
import markdown
from bs4 import BeautifulSoup, NavigableString, Tag
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.oxml.ns import qn
from docx.shared import Inches, Pt, RGBColor

from app.config import settings

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

BASE_FONT = "Times New Roman"
CODE_FONT = "Courier New"
LINK_COLOR = RGBColor(0x05, 0x63, 0xC1)
IMAGE_WIDTH = Inches(450 / 96)
IMAGE_HEIGHT = Inches(300 / 96)
HORIZONTAL_RULE = "_" * 27

_BLOCK_TAGS = ["h1", "h2", "h3", "h4", "h5", "h6", "p", "ul", "ol", "pre", "blockquote", "hr", "img"]


def _setup_styles(doc: Document) -> None:
    normal = doc.styles["Normal"]
    normal.font.name = BASE_FONT
    normal.font.size = Pt(12)
    normal.element.rPr.rFonts.set(qn("w:eastAsia"), BASE_FONT)
    normal.paragraph_format.line_spacing = 1.5
    normal.paragraph_format.space_after = Pt(6)

    sizes = {1: 16, 2: 14, 3: 12, 4: 12, 5: 12, 6: 12}
    for level, size in sizes.items():
        style = doc.styles[f"Heading {level}"]
        style.font.name = BASE_FONT
        style.font.size = Pt(size)
        style.font.bold = True
        style.font.color.rgb = RGBColor(0, 0, 0)


class _DocxBuilder:
    """Walks rendered HTML and appends the equivalent python-docx elements."""

    def __init__(self, doc: Document, client: httpx.AsyncClient) -> None:
        self.doc = doc
        self.client = client

    # ------------------------------------------------------------------
    # Block level
    # ------------------------------------------------------------------

    async def add_block(self, node) -> None:
        if isinstance(node, NavigableString):
            text = str(node).strip()
            if text:
                self._justified(self.doc.add_paragraph(text))
            return
        if not isinstance(node, Tag):
            return

        name = node.name
        if re.fullmatch(r"h[1-6]", name):
            heading = self.doc.add_heading(level=int(name[1]))
            self._add_inline(heading, node)
            if name == "h1":
                heading.alignment = WD_ALIGN_PARAGRAPH.CENTER
        elif name == "p":
            await self._add_paragraph(node)
        elif name in ("ul", "ol"):
            await self._add_list(node, ordered=name == "ol", level=1)
        elif name == "pre":
            self._add_code_block(node.get_text())
        elif name == "blockquote":
            self._add_blockquote(node)
        elif name == "hr":
            p = self.doc.add_paragraph(HORIZONTAL_RULE)
            p.alignment = WD_ALIGN_PARAGRAPH.CENTER
        elif name == "img":
            await self._add_image(node.get("src") or "", node.get("alt") or "")
        elif node.find(_BLOCK_TAGS):
            for child in node.children:
                await self.add_block(child)
        else:
            text = node.get_text(" ", strip=True)
            if text:
                self._justified(self.doc.add_paragraph(text))

    async def _add_paragraph(self, node: Tag) -> None:
        images = [(img.get("src") or "", img.get("alt") or "") for img in node.find_all("img")]
        for img in node.find_all("img"):
            img.decompose()

        if node.get_text(strip=True):
            paragraph = self.doc.add_paragraph()
            self._add_inline(paragraph, node)
            self._justified(paragraph)

        for src, alt in images:
            await self._add_image(src, alt)

    async def _add_list(self, node: Tag, ordered: bool, level: int) -> None:
        base = "List Number" if ordered else "List Bullet"
        style = base if level == 1 else f"{base} {min(level, 3)}"
        for item in node.find_all("li", recursive=False):
            paragraph = self.doc.add_paragraph(style=style)
            nested = []
            for child in item.children:
                if isinstance(child, Tag) and child.name in ("ul", "ol"):
                    nested.append(child)
                elif isinstance(child, Tag) and child.name == "p":
                    self._add_inline(paragraph, child)
                else:
                    self._add_inline_node(paragraph, child)
            for sub in nested:
                await self._add_list(sub, ordered=sub.name == "ol", level=level + 1)

    def _add_code_block(self, code: str) -> None:
        paragraph = self.doc.add_paragraph()
        paragraph.paragraph_format.line_spacing = 1.0
        run = paragraph.add_run(code.rstrip("\n"))
        run.font.name = CODE_FONT
        run.font.size = Pt(10)

    def _add_blockquote(self, node: Tag) -> None:
        paragraphs = node.find_all("p") or [node]
        for p in paragraphs:
            paragraph = self.doc.add_paragraph(style="Quote")
            self._add_inline(paragraph, p)

    async def _add_image(self, src: str, alt: str) -> None:
        if not src:
            return
        label = alt or src
        data = await self._load_image(src)
        if data is None:
            self._centered_note(f"[Falha ao carregar imagem: {label}]")
            return

        paragraph = self.doc.add_paragraph()
        paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER
        try:
            paragraph.add_run().add_picture(io.BytesIO(data), width=IMAGE_WIDTH, height=IMAGE_HEIGHT)
        except Exception as exc:
            logger.warning("docx_export: could not embed image %s - %s", src[:100], exc)
            self._remove_paragraph(paragraph)
            self._centered_note(f"[Imagem indisponível: {label}]")
            return

        if alt:
            caption = self.doc.add_paragraph()
            caption.alignment = WD_ALIGN_PARAGRAPH.CENTER
            run = caption.add_run(alt)
            run.italic = True
            run.font.size = Pt(10)

    async def _load_image(self, src: str) -> Optional[bytes]:
        if src.startswith("data:"):
            _, _, payload = src.partition(",")
            try:
                return base64.b64decode(payload, validate=False) or None
            except (binascii.Error, ValueError):
                logger.warning("docx_export: invalid data URI image")
                return None

        if not src.startswith(("http://", "https://")):
            logger.warning("docx_export: unsupported image source %s", src[:100])
            return None

        try:
            resp = await self.client.get(src)
        except httpx.HTTPError as exc:
            logger.warning("docx_export: image download failed %s - %s", src, exc)
            return None
        if resp.status_code != 200 or not resp.content:
            logger.warning("docx_export: image download returned HTTP %d for %s", resp.status_code, src)
            return None
        return resp.content

    # ------------------------------------------------------------------
    # Inline level
    # ------------------------------------------------------------------

    def _add_inline(self, paragraph, node: Tag, **fmt) -> None:
        for child in node.children:
            self._add_inline_node(paragraph, child, **fmt)

    def _add_inline_node(
        self,
        paragraph,
        node,
        bold: bool = False,
        italic: bool = False,
        code: bool = False,
        link: bool = False,
    ) -> None:
        if isinstance(node, NavigableString):
            text = re.sub(r"\s*\n\s*", " ", str(node))
            if not text or (not text.strip() and not paragraph.runs):
                return
            run = paragraph.add_run(text)
            run.bold = bold or None
            run.italic = italic or None
            if code:
                run.font.name = CODE_FONT
                run.font.size = Pt(11)
            if link:
                run.font.color.rgb = LINK_COLOR
                run.font.underline = True
            return
        if not isinstance(node, Tag):
            return

        fmt = {"bold": bold, "italic": italic, "code": code, "link": link}
        name = node.name
        if name in ("strong", "b"):
            fmt["bold"] = True
        elif name in ("em", "i"):
            fmt["italic"] = True
        elif name == "code":
            fmt["code"] = True
        elif name == "a":
            fmt["link"] = True
            if not node.get_text(strip=True):
                self._add_inline_node(paragraph, NavigableString(node.get("href") or ""), **fmt)
                return
        elif name == "br":
            if paragraph.runs:
                paragraph.runs[-1].add_break()
            else:
                paragraph.add_run().add_break()
            return
        elif name == "img":
            alt = node.get("alt")
            if alt:
                self._add_inline_node(paragraph, NavigableString(alt), **fmt)
            return

        for child in node.children:
            self._add_inline_node(paragraph, child, **fmt)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _justified(paragraph) -> None:
        paragraph.alignment = WD_ALIGN_PARAGRAPH.JUSTIFY

    def _centered_note(self, text: str) -> None:
        paragraph = self.doc.add_paragraph(text)
        paragraph.alignment = WD_ALIGN_PARAGRAPH.CENTER

    @staticmethod
    def _remove_paragraph(paragraph) -> None:
        element = paragraph._element
        element.getparent().remove(element)


def render_markdown_html(markdown_text: str) -> str:
    return markdown.markdown(markdown_text, extensions=["fenced_code", "sane_lists", "nl2br"])


async def markdown_to_docx(
    markdown_text: str,
    client: Optional[httpx.AsyncClient] = None,
) -> bytes:
    """
    Convert Markdown to the bytes of a .docx file.

    Images are downloaded with *client* (a fresh client when omitted);
    ``data:`` URIs are decoded inline.  Raises ``ValueError`` for empty
    input.
    """
    if not isinstance(markdown_text, str) or not markdown_text.strip():
        raise ValueError("Markdown content is empty or invalid")

    soup = BeautifulSoup(render_markdown_html(markdown_text), "html.parser")

    doc = Document()
    _setup_styles(doc)

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(
            timeout=httpx.Timeout(float(settings.DOCX_IMAGE_TIMEOUT)),
            headers={"User-Agent": settings.SCRAPER_USER_AGENT},
            follow_redirects=True,
        )
    try:
        builder = _DocxBuilder(doc, client)
        for node in soup.children:
            await builder.add_block(node)
    finally:
        if own_client:
            await client.aclose()

    buffer = io.BytesIO()
    doc.save(buffer)
    return buffer.getvalue()
