"""Tests for Markdown -> DOCX conversion."""
import base64
import io

import httpx
import pytest
import respx
from docx import Document
from docx.enum.text import WD_ALIGN_PARAGRAPH

from app.services.docx_export import markdown_to_docx, render_markdown_html

# 1x1 transparent PNG
PNG_1PX = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


async def _render(markdown_text: str) -> Document:
    async with httpx.AsyncClient() as client:
        content = await markdown_to_docx(markdown_text, client=client)
    return Document(io.BytesIO(content))


@pytest.mark.asyncio
async def test_empty_markdown_raises():
    with pytest.raises(ValueError):
        await markdown_to_docx("   ")


@pytest.mark.asyncio
async def test_headings_paragraphs_and_inline_formatting():
    doc = await _render("# Título do Trabalho\n\n## Introdução\n\nTexto **forte** e *itálico*.\n")

    title, heading, body = doc.paragraphs[:3]
    assert title.text == "Título do Trabalho"
    assert title.style.name == "Heading 1"
    assert title.alignment == WD_ALIGN_PARAGRAPH.CENTER
    assert heading.style.name == "Heading 2"

    assert body.text == "Texto forte e itálico."
    assert body.alignment == WD_ALIGN_PARAGRAPH.JUSTIFY
    bold = [r.text for r in body.runs if r.bold]
    italic = [r.text for r in body.runs if r.italic]
    assert bold == ["forte"]
    assert italic == ["itálico"]

    assert doc.styles["Normal"].font.name == "Times New Roman"


@pytest.mark.asyncio
async def test_lists_quotes_and_code():
    markdown_text = (
        "- primeiro\n"
        "- segundo\n"
        "\n"
        "1. um\n"
        "2. dois\n"
        "\n"
        "> citação\n"
        "\n"
        "```\nprint('oi')\n```\n"
    )
    doc = await _render(markdown_text)
    by_style = [(p.style.name, p.text) for p in doc.paragraphs]

    assert ("List Bullet", "primeiro") in by_style
    assert ("List Number", "dois") in by_style
    assert ("Quote", "citação") in by_style
    code = next(p for p in doc.paragraphs if "print('oi')" in p.text)
    assert code.runs[0].font.name == "Courier New"


@pytest.mark.asyncio
async def test_data_uri_image_is_embedded():
    data_uri = "data:image/png;base64," + base64.b64encode(PNG_1PX).decode()
    doc = await _render(f"Figura abaixo.\n\n![Gráfico solar]({data_uri})\n")

    assert len(doc.inline_shapes) == 1
    texts = [p.text for p in doc.paragraphs]
    assert "Gráfico solar" in texts


@pytest.mark.asyncio
@respx.mock
async def test_failed_image_download_leaves_placeholder():
    respx.get("https://cdn.test/missing.png").mock(return_value=httpx.Response(404))
    doc = await _render("![Painel](https://cdn.test/missing.png)\n")

    assert len(doc.inline_shapes) == 0
    assert "[Falha ao carregar imagem: Painel]" in [p.text for p in doc.paragraphs]


@pytest.mark.asyncio
@respx.mock
async def test_undecodable_image_leaves_placeholder():
    respx.get("https://cdn.test/not-an-image.png").mock(
        return_value=httpx.Response(200, content=b"<html>not an image</html>")
    )
    doc = await _render("![Painel](https://cdn.test/not-an-image.png)\n")

    assert len(doc.inline_shapes) == 0
    assert "[Imagem indisponível: Painel]" in [p.text for p in doc.paragraphs]


def test_render_markdown_html_fenced_code():
    html = render_markdown_html("```python\nx = 1\n```")
    assert "<pre>" in html and "x = 1" in html
