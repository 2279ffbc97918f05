"""Tests for academic work CRUD, background runs and DOCX export."""
import asyncio
import io

import pytest
from docx import Document
from httpx import AsyncClient
from sqlalchemy import select

from app.models.database_models import AcademicWork
from app.models.schemas import FichaLeitura, WorkSection
from app.services.docx_export import DOCX_MEDIA_TYPE
from app.services.pipeline_manager import PipelinePhase
from tests.conftest import AUTH_HEADERS


async def _create_work(client: AsyncClient, theme: str = "Energia solar no Brasil", **extra) -> dict:
    resp = await client.post("/api/works", json={"theme": theme, **extra}, headers=AUTH_HEADERS)
    assert resp.status_code == 201
    return resp.json()


async def _settle() -> None:
    for _ in range(5):
        await asyncio.sleep(0)


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_work_defaults(client: AsyncClient):
    data = await _create_work(client)
    assert data["theme"] == "Energia solar no Brasil"
    assert data["title"] == "Energia solar no Brasil"
    assert data["status"] == "draft"
    assert data["target_language"] == "pt-BR"
    assert data["citation_style"] == "APA"
    assert data["fichas"] == []
    assert data["sections"] == []
    assert data["full_text"] is None


@pytest.mark.asyncio
async def test_list_works_newest_first(client: AsyncClient):
    first = await _create_work(client, "Primeiro tema")
    second = await _create_work(client, "Segundo tema")

    resp = await client.get("/api/works", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    ids = [w["id"] for w in resp.json()]
    assert ids == [second["id"], first["id"]]
    assert resp.json()[0]["ficha_count"] == 0


@pytest.mark.asyncio
async def test_update_work(client: AsyncClient):
    work = await _create_work(client)
    resp = await client.patch(
        f"/api/works/{work['id']}",
        json={"title": "  Novo título  ", "citation_style": "ABNT"},
        headers=AUTH_HEADERS,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["title"] == "Novo título"
    assert data["citation_style"] == "ABNT"
    assert data["theme"] == "Energia solar no Brasil"


@pytest.mark.asyncio
async def test_delete_work(client: AsyncClient):
    work = await _create_work(client)
    resp = await client.delete(f"/api/works/{work['id']}", headers=AUTH_HEADERS)
    assert resp.status_code == 204

    resp = await client.get(f"/api/works/{work['id']}", headers=AUTH_HEADERS)
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Background runs
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_status_idle_before_any_run(client: AsyncClient):
    work = await _create_work(client)
    resp = await client.get(f"/api/works/{work['id']}/status", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.json()["phase"] == "idle"


@pytest.mark.asyncio
async def test_generate_without_theme_returns_400(client: AsyncClient):
    work = await _create_work(client, theme="   ")
    resp = await client.post(f"/api/works/{work['id']}/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_generate_starts_background_run(client: AsyncClient, monkeypatch):
    seen = {}

    async def fake_job(work_id, mode, status):
        seen["args"] = (work_id, mode)
        status.add_log("fake run")
        status.phase = PipelinePhase.COMPLETED

    monkeypatch.setattr("app.routers.works.run_work_job", fake_job)

    work = await _create_work(client)
    resp = await client.post(f"/api/works/{work['id']}/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 202
    assert resp.json() == {
        "work_id": work["id"],
        "mode": "full",
        "status": "started",
        "phase": "queued",
    }

    await _settle()
    assert seen["args"] == (work["id"], "full")

    resp = await client.get(f"/api/works/{work['id']}/status", headers=AUTH_HEADERS)
    data = resp.json()
    assert data["phase"] == "completed"
    assert data["mode"] == "full"
    assert data["log"][-1].endswith("fake run")


@pytest.mark.asyncio
async def test_research_and_write_modes(client: AsyncClient, monkeypatch):
    modes = []

    async def fake_job(work_id, mode, status):
        modes.append(mode)
        status.phase = PipelinePhase.COMPLETED

    monkeypatch.setattr("app.routers.works.run_work_job", fake_job)
    work = await _create_work(client)

    resp = await client.post(f"/api/works/{work['id']}/research", headers=AUTH_HEADERS)
    assert resp.status_code == 202
    await _settle()

    resp = await client.post(f"/api/works/{work['id']}/write", headers=AUTH_HEADERS)
    assert resp.status_code == 202
    await _settle()

    assert modes == ["research", "write"]


@pytest.mark.asyncio
async def test_second_run_while_running_returns_409(client: AsyncClient, monkeypatch):
    release = asyncio.Event()

    async def slow_job(work_id, mode, status):
        await release.wait()
        status.phase = PipelinePhase.COMPLETED

    monkeypatch.setattr("app.routers.works.run_work_job", slow_job)
    work = await _create_work(client)

    resp = await client.post(f"/api/works/{work['id']}/generate", headers=AUTH_HEADERS)
    assert resp.status_code == 202

    resp = await client.post(f"/api/works/{work['id']}/write", headers=AUTH_HEADERS)
    assert resp.status_code == 409

    resp = await client.patch(f"/api/works/{work['id']}", json={"title": "x"}, headers=AUTH_HEADERS)
    assert resp.status_code == 409

    resp = await client.delete(f"/api/works/{work['id']}", headers=AUTH_HEADERS)
    assert resp.status_code == 409

    release.set()
    await _settle()

    resp = await client.get(f"/api/works/{work['id']}/status", headers=AUTH_HEADERS)
    assert resp.json()["phase"] == "completed"


@pytest.mark.asyncio
async def test_crashed_run_reports_failed(client: AsyncClient, monkeypatch):
    async def broken_job(work_id, mode, status):
        raise RuntimeError("boom")

    monkeypatch.setattr("app.routers.works.run_work_job", broken_job)
    work = await _create_work(client)

    await client.post(f"/api/works/{work['id']}/generate", headers=AUTH_HEADERS)
    await _settle()

    data = (await client.get(f"/api/works/{work['id']}/status", headers=AUTH_HEADERS)).json()
    assert data["phase"] == "failed"
    assert any("boom" in e for e in data["errors"])


@pytest.mark.asyncio
async def test_status_exposes_in_flight_content(client: AsyncClient, monkeypatch):
    release = asyncio.Event()

    async def partial_job(work_id, mode, status):
        status.fichas.append(FichaLeitura(url="https://site.test/a", title="Artigo A", summary="s"))
        status.generated_index = ["Introdução", "Conclusão"]
        status.sections.append(WorkSection(title="Introdução", content="Texto."))
        status.full_text = "# T\n\n## Introdução\n\nTexto.\n\n"
        await release.wait()
        status.phase = PipelinePhase.COMPLETED

    monkeypatch.setattr("app.routers.works.run_work_job", partial_job)
    work = await _create_work(client)

    await client.post(f"/api/works/{work['id']}/generate", headers=AUTH_HEADERS)
    await _settle()

    data = (await client.get(f"/api/works/{work['id']}/status", headers=AUTH_HEADERS)).json()
    assert data["fichas_count"] == 1
    assert data["fichas"][0]["url"] == "https://site.test/a"
    assert data["generated_index"] == ["Introdução", "Conclusão"]
    assert data["sections"] == [{"title": "Introdução", "content": "Texto."}]
    assert data["full_text"].startswith("# T")

    release.set()
    await _settle()


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_export_without_text_returns_400(client: AsyncClient):
    work = await _create_work(client)
    resp = await client.get(f"/api/works/{work['id']}/export/docx", headers=AUTH_HEADERS)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_export_docx(client: AsyncClient, db_session):
    work = await _create_work(client)

    stored = (
        await db_session.execute(select(AcademicWork).where(AcademicWork.id == work["id"]))
    ).scalar_one()
    stored.full_text = "# Energia Solar\n\n## Introdução\n\nTexto da **introdução**.\n"
    await db_session.flush()

    resp = await client.get(f"/api/works/{work['id']}/export/docx", headers=AUTH_HEADERS)
    assert resp.status_code == 200
    assert resp.headers["content-type"] == DOCX_MEDIA_TYPE
    assert "attachment" in resp.headers["content-disposition"]

    doc = Document(io.BytesIO(resp.content))
    texts = [p.text for p in doc.paragraphs]
    assert "Energia Solar" in texts
    assert "Texto da introdução." in texts
