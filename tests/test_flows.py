"""Tests for the stateless /api flow endpoints."""
import pytest
from httpx import AsyncClient

from app.dependencies.services import get_chat_service, get_scraper, get_writer
from app.main import app
from app.models.schemas import PageContent, SearchResult
from app.services.academic_writer import AcademicWriter
from app.services.chat_service import ChatService
from app.services.llm_client import LLMServiceError
from tests.conftest import FakeLLM


def _use_llm(llm: FakeLLM) -> None:
    app.dependency_overrides[get_writer] = lambda: AcademicWriter(llm)
    app.dependency_overrides[get_chat_service] = lambda: ChatService(llm=llm, writer=AcademicWriter(llm))


@pytest.mark.asyncio
async def test_detect_topic(client: AsyncClient):
    _use_llm(FakeLLM(json_values=[{"detected_topic": "energia solar"}]))
    resp = await client.post("/api/detect-topic", json={"text_query": "Quero falar de painéis solares"})
    assert resp.status_code == 200
    assert resp.json() == {"detected_topic": "energia solar"}


@pytest.mark.asyncio
async def test_generate_index_is_normalized(client: AsyncClient):
    _use_llm(FakeLLM(json_values=[{"generated_index": ["Introdução", "Histórico", "Conclusão", "Bibliografia"]}]))
    resp = await client.post("/api/generate-index", json={"main_topic": "Energia solar"})
    assert resp.status_code == 200
    assert resp.json()["generated_index"] == [
        "Resumo",
        "Introdução",
        "Histórico",
        "Conclusão",
        "Referências Bibliográficas",
    ]


@pytest.mark.asyncio
async def test_generate_index_bad_structure_returns_502(client: AsyncClient):
    _use_llm(FakeLLM(json_values=[{"generated_index": ["Só um"]}]))
    resp = await client.post("/api/generate-index", json={"main_topic": "Energia solar"})
    assert resp.status_code == 502


@pytest.mark.asyncio
async def test_generate_section(client: AsyncClient):
    llm = FakeLLM(texts=["## Histórico\n\nTexto da seção."])
    _use_llm(llm)
    resp = await client.post(
        "/api/generate-academic-section",
        json={
            "section_title": "Histórico",
            "main_topic": "Energia solar",
            "fichas": [{"url": "https://example.com/a", "title": "Artigo A", "summary": "Resumo A"}],
        },
    )
    assert resp.status_code == 200
    assert resp.json()["section_content"] == "Texto da seção."
    assert "Artigo A" in llm.calls[0][-1]["content"]


@pytest.mark.asyncio
async def test_generate_conclusion_requires_sections(client: AsyncClient):
    _use_llm(FakeLLM())
    resp = await client.post(
        "/api/generate-conclusion",
        json={"main_topic": "Energia solar", "developed_sections": []},
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_generate_bibliography_without_fichas(client: AsyncClient):
    llm = FakeLLM()
    _use_llm(llm)
    resp = await client.post("/api/generate-bibliography", json={"fichas": []})
    assert resp.status_code == 200
    assert resp.json()["bibliography"].startswith("## Referências")
    assert llm.calls == []


@pytest.mark.asyncio
async def test_detect_query_type_with_image_skips_llm(client: AsyncClient):
    llm = FakeLLM()
    _use_llm(llm)
    resp = await client.post(
        "/api/detect-query-type",
        json={"current_user_query": "o que é isto?", "user_image_provided": True},
    )
    assert resp.status_code == 200
    assert resp.json()["query_type"] == "IMAGE_ANALYSIS"
    assert llm.json_calls == []


@pytest.mark.asyncio
async def test_decide_search(client: AsyncClient):
    _use_llm(FakeLLM(json_values=[{"decision": "SEARCH_NEEDED", "reasoning": "novo assunto"}]))
    resp = await client.post("/api/decide-search", json={"current_user_query": "E a energia eólica?"})
    assert resp.json() == {"decision": "SEARCH_NEEDED", "reasoning": "novo assunto"}


@pytest.mark.asyncio
async def test_generate_session_title(client: AsyncClient):
    _use_llm(FakeLLM(texts=['"Título: Energia Solar no Brasil Hoje e Amanhã."']))
    resp = await client.post(
        "/api/generate-session-title",
        json={"user_first_message": "Fale de energia solar", "ai_first_response": "Claro..."},
    )
    assert resp.json()["generated_title"] == "Energia Solar no Brasil Hoje"


@pytest.mark.asyncio
async def test_academic_prose_strips_image_params(client: AsyncClient):
    _use_llm(FakeLLM(texts=["Veja ![painel](https://cdn.example.com/p.jpg?w=300)"]))
    resp = await client.post("/api/generate-academic-prose", json={"prompt": "Explique"})
    assert resp.json()["response"] == "Veja ![painel](https://cdn.example.com/p.jpg)"


@pytest.mark.asyncio
async def test_fichamento_requires_url_and_title(client: AsyncClient):
    _use_llm(FakeLLM())
    resp = await client.post("/api/fichamento", json={"content": {"url": "https://example.com/a"}})
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_fichamento_without_llm_uses_fallback(client: AsyncClient):
    _use_llm(FakeLLM(configured=False))
    resp = await client.post(
        "/api/fichamento",
        json={
            "content": {
                "url": "https://example.com/a",
                "title": "Artigo A",
                "content": "x" * 600,
                "published_at": "2021-03-02T10:00:00Z",
            }
        },
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["summary"] == "x" * 500 + "..."
    assert data["publication_year"] == "2021"


@pytest.mark.asyncio
async def test_llm_error_maps_to_502(client: AsyncClient):
    _use_llm(FakeLLM(texts=[LLMServiceError("LLM request timed out after 120s")]))
    resp = await client.post("/api/generate-introduction", json={"main_topic": "Energia solar"})
    assert resp.status_code == 502
    data = resp.json()
    assert data["detail"] == "LLM provider error"
    assert "timed out" in data["error"]


# ---------------------------------------------------------------------------
# Scraping and DOCX
# ---------------------------------------------------------------------------

class FakeScraper:
    async def search(self, query, all_pages=False):
        return [SearchResult(title=f"{query} ({'all' if all_pages else 'first'})", url="https://example.com/a")]

    async def scrape_page(self, url):
        return PageContent(url=url, title="Artigo A", content="Texto.")


@pytest.mark.asyncio
async def test_scrape_query_and_url(client: AsyncClient):
    app.dependency_overrides[get_scraper] = FakeScraper

    resp = await client.post("/api/scrape", json={"query": "energia", "all_pages": True})
    assert resp.status_code == 200
    assert resp.json()[0]["title"] == "energia (all)"

    resp = await client.post("/api/scrape", json={"url": "https://example.com/a"})
    assert resp.status_code == 200
    assert resp.json()["content"] == "Texto."


@pytest.mark.asyncio
async def test_scrape_rejects_bad_input(client: AsyncClient):
    app.dependency_overrides[get_scraper] = FakeScraper

    assert (await client.post("/api/scrape", json={})).status_code == 400
    assert (await client.post("/api/scrape", json={"url": "ftp://example.com"})).status_code == 400


@pytest.mark.asyncio
async def test_generate_docx(client: AsyncClient):
    resp = await client.post("/api/generate-docx", json={"markdown_content": "# Título\n\nTexto."})
    assert resp.status_code == 200
    assert resp.content[:2] == b"PK"

    resp = await client.post("/api/generate-docx", json={"markdown_content": "  "})
    assert resp.status_code == 400


@pytest.mark.asyncio
@pytest.mark.parametrize("body", [{"markdown_content": 123}, {"markdown_content": ["# x"]}, {}])
async def test_generate_docx_rejects_non_string_markdown(client: AsyncClient, body):
    resp = await client.post("/api/generate-docx", json=body)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Markdown content is missing or invalid."
