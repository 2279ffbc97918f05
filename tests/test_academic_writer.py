"""Tests for the academic writing flows."""
import pytest

from app.models.schemas import FichaLeitura, ImageContent, PageContent, WorkSection
from app.services.academic_writer import (
    EMPTY_BIBLIOGRAPHY,
    REFERENCES_TITLE,
    AcademicWriter,
    format_fichas,
    language_name,
    normalize_index,
)
from app.services.llm_client import LLMResponseFormatError, LLMServiceError
from tests.conftest import FakeLLM

PAGE = PageContent(
    url="https://site.test/fotossintese/",
    title="Fotossíntese",
    content="A fotossíntese converte luz em energia química. " * 20,
    images=[ImageContent(src="https://site.test/folha.jpg", caption="Folha")],
    author="Ana Souza",
    published_at="2022-08-15",
)

FICHA = FichaLeitura(
    url="https://site.test/fotossintese/",
    title="Fotossíntese",
    author="Ana Souza",
    publication_year="2022",
    keywords=["biologia"],
    summary="Processo de conversão de energia.",
    relevant_quotes=["a luz é convertida"],
)


# ---------------------------------------------------------------------------
# normalize_index
# ---------------------------------------------------------------------------

def test_normalize_index_adds_skeleton():
    assert normalize_index(["Introdução", "Desenvolvimento"]) == [
        "Resumo",
        "Introdução",
        "Desenvolvimento",
        "Conclusão",
        REFERENCES_TITLE,
    ]


def test_normalize_index_moves_conclusion_and_replaces_references():
    titles = ["Abstract", "Considerações Finais", "Introdução", "Metodologia", "Referências"]
    assert normalize_index(titles) == [
        "Abstract",
        "Introdução",
        "Metodologia",
        "Considerações Finais",
        REFERENCES_TITLE,
    ]


def test_language_name():
    assert language_name("pt-BR") == "Brazilian Portuguese"
    assert language_name("de") == "de"


def test_format_fichas_numbers_sources():
    text = format_fichas([FICHA])
    assert text.startswith("[1] Fotossíntese")
    assert "Author: Ana Souza (2022)" in text
    assert 'Quote: "a luz é convertida"' in text


# ---------------------------------------------------------------------------
# Research flows
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_detect_topic_strips_quotes():
    writer = AcademicWriter(FakeLLM(json_values=[{"detected_topic": ' "fotossíntese" '}]))
    assert await writer.detect_topic("Como as plantas produzem energia?") == "fotossíntese"


@pytest.mark.asyncio
async def test_detect_topic_missing_key_raises():
    writer = AcademicWriter(FakeLLM(json_values=[{"topic": "x"}]))
    with pytest.raises(LLMResponseFormatError):
        await writer.detect_topic("texto")


@pytest.mark.asyncio
async def test_create_ficha_from_llm():
    llm = FakeLLM(
        json_values=[
            {
                "author": "",
                "publication_year": "",
                "keywords": ["luz", " ", "clorofila"],
                "summary": "Resumo gerado.",
                "relevant_quotes": "citação única",
                "notes": "",
            }
        ]
    )
    ficha = await AcademicWriter(llm).create_ficha(PAGE, custom_prompt="Foque em ecologia")

    assert ficha.author == "Ana Souza"
    assert ficha.publication_year == "2022"
    assert ficha.keywords == ["luz", "clorofila"]
    assert ficha.relevant_quotes == ["citação única"]
    assert ficha.summary == "Resumo gerado."
    assert ficha.notes is None
    assert ficha.images[0].caption == "Folha"
    assert "Foque em ecologia" in llm.json_calls[0][-1]["content"]


@pytest.mark.asyncio
async def test_create_ficha_falls_back_on_llm_error():
    writer = AcademicWriter(FakeLLM(json_values=[LLMServiceError("down")]))
    ficha = await writer.create_ficha(PAGE)

    assert ficha.summary.endswith("...")
    assert len(ficha.summary) == 503
    assert ficha.keywords == []
    assert ficha.publication_year == "2022"


@pytest.mark.asyncio
async def test_create_ficha_without_key_never_calls_llm():
    llm = FakeLLM(configured=False)
    page = PAGE.model_copy(update={"published_at": None, "content": "curto"})
    ficha = await AcademicWriter(llm).create_ficha(page)

    assert ficha.summary == "curto"
    assert ficha.publication_year == "s.d."
    assert llm.json_calls == []


# ---------------------------------------------------------------------------
# Writing flows
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_generate_index_accepts_bare_list():
    writer = AcademicWriter(FakeLLM(json_values=[["Introdução", "Histórico", "Aplicações"]]))
    index = await writer.generate_index("Energia solar")
    assert index[0] == "Resumo"
    assert index[-2:] == ["Conclusão", REFERENCES_TITLE]


@pytest.mark.asyncio
async def test_generate_section_without_fichas_mentions_general_knowledge():
    llm = FakeLLM(texts=["Texto."])
    content = await AcademicWriter(llm).generate_section("Histórico", "Energia solar")
    assert content == "Texto."
    assert "No sources were collected" in llm.calls[0][-1]["content"]


@pytest.mark.asyncio
async def test_generate_section_includes_previous_excerpts():
    llm = FakeLLM(texts=["Texto."])
    previous = [WorkSection(title="Introdução", content="y" * 500)]
    await AcademicWriter(llm).generate_section("Histórico", "Energia solar", [FICHA], previous)

    prompt = llm.calls[0][-1]["content"]
    assert "- Introdução: " + "y" * 200 + "..." in prompt
    assert "[1] Fotossíntese" in prompt


@pytest.mark.asyncio
async def test_generate_conclusion_requires_sections():
    with pytest.raises(ValueError):
        await AcademicWriter(FakeLLM()).generate_conclusion("Energia solar", None, [])


@pytest.mark.asyncio
async def test_generate_conclusion_strips_heading():
    llm = FakeLLM(texts=["### Conclusão\n\nFim do trabalho."])
    sections = [WorkSection(title="Histórico", content="conteúdo")]
    result = await AcademicWriter(llm).generate_conclusion("Energia solar", "intro", sections)
    assert result == "Fim do trabalho."


@pytest.mark.asyncio
async def test_generate_bibliography():
    writer = AcademicWriter(FakeLLM(texts=["- SOUZA, Ana. Fotossíntese. 2022."]))
    assert await writer.generate_bibliography([]) == EMPTY_BIBLIOGRAPHY

    result = await writer.generate_bibliography([FICHA], "ABNT")
    assert result == "## Referências\n\n- SOUZA, Ana. Fotossíntese. 2022."
