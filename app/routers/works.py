"""
Academic work endpoints.

Route summary
-------------
POST   /api/works                       - create work
GET    /api/works                       - list user's works
GET    /api/works/{work_id}             - work detail
PATCH  /api/works/{work_id}             - update theme / title / settings
DELETE /api/works/{work_id}             - delete work

POST   /api/works/{work_id}/generate    - research + writing (background)
POST   /api/works/{work_id}/research    - research only (background)
POST   /api/works/{work_id}/write       - writing from stored fichas (background)
GET    /api/works/{work_id}/status      - poll pipeline progress
GET    /api/works/{work_id}/export/docx - download the assembled text as DOCX
"""
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db
from app.dependencies.auth import get_authorized_work, get_current_user_id, get_or_create_user
from app.models.database_models import AcademicWork, User, WorkStatus
from app.models.schemas import (
    PipelineStatusResponse,
    WorkCreateRequest,
    WorkResponse,
    WorkRunResponse,
    WorkSummaryResponse,
    WorkUpdateRequest,
)
from app.routers.export import docx_response
from app.services.docx_export import markdown_to_docx
from app.services.pipeline_manager import PipelineStatus, pipeline_manager
from app.services.work_runner import run_work_job

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Helpers ──────────────────────────────────────────────────────────────────

def _work_response(work: AcademicWork) -> WorkResponse:
    return WorkResponse(
        id=work.id,
        title=work.title,
        theme=work.theme,
        status=work.status,
        detected_topic=work.detected_topic,
        target_language=work.target_language,
        citation_style=work.citation_style,
        generated_index=work.generated_index or [],
        fichas=work.fichas or [],
        sections=work.sections or [],
        full_text=work.full_text,
        created_at=work.created_at,
        updated_at=work.updated_at,
    )


def _ensure_idle(work: AcademicWork) -> None:
    if pipeline_manager.is_running(work.id):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A pipeline run is already in progress for work {work.id}.",
        )


def _start_run(work: AcademicWork, mode: str) -> WorkRunResponse:
    if not (work.theme or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The work needs a theme before it can be generated.",
        )
    _ensure_idle(work)

    # Pre-create the status so the coroutine and the manager share it
    ps = PipelineStatus(work_id=work.id, mode=mode)
    pipeline_manager.start(work.id, run_work_job(work.id, mode, ps), status=ps)

    logger.info("Work %d: %s run started", work.id, mode)
    return WorkRunResponse(work_id=work.id, mode=mode, status="started", phase=ps.phase.value)


# ═══════════════════════════════════════════════════════════════════════════════
# WORK CRUD
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("", response_model=WorkResponse, status_code=status.HTTP_201_CREATED)
async def create_work(
    body: WorkCreateRequest,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
) -> WorkResponse:
    """Create a new academic work for the authenticated user."""
    theme = body.theme.strip()
    work = AcademicWork(
        user_id=user.id,
        theme=theme,
        title=(body.title or theme)[:500],
        target_language=body.target_language,
        citation_style=body.citation_style,
        status=WorkStatus.DRAFT.value,
    )
    db.add(work)
    await db.flush()
    await db.refresh(work)

    logger.info("Created work id=%d theme=%r for user=%s", work.id, work.theme, user.id)
    return _work_response(work)


@router.get("", response_model=List[WorkSummaryResponse])
async def list_works(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[WorkSummaryResponse]:
    """List all works belonging to the authenticated user, newest first."""
    result = await db.execute(
        select(AcademicWork)
        .where(AcademicWork.user_id == user_id)
        .order_by(AcademicWork.created_at.desc(), AcademicWork.id.desc())
    )
    works = result.scalars().all()

    return [
        WorkSummaryResponse(
            id=w.id,
            title=w.title,
            theme=w.theme,
            status=w.status,
            ficha_count=len(w.fichas or []),
            section_count=len(w.sections or []),
            created_at=w.created_at,
            updated_at=w.updated_at,
        )
        for w in works
    ]


@router.get("/{work_id}", response_model=WorkResponse)
async def get_work(work: AcademicWork = Depends(get_authorized_work)) -> WorkResponse:
    """Get the full work, including fichas, sections and assembled text."""
    return _work_response(work)


@router.patch("/{work_id}", response_model=WorkResponse)
async def update_work(
    body: WorkUpdateRequest,
    work: AcademicWork = Depends(get_authorized_work),
    db: AsyncSession = Depends(get_db),
) -> WorkResponse:
    _ensure_idle(work)

    updates = body.model_dump(exclude_unset=True, exclude_none=True)
    for field, value in updates.items():
        setattr(work, field, value.strip() if isinstance(value, str) else value)

    await db.flush()
    await db.refresh(work)
    logger.info("Updated work id=%d fields=%s", work.id, sorted(updates))
    return _work_response(work)


@router.delete(
    "/{work_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
)
async def delete_work(
    work: AcademicWork = Depends(get_authorized_work),
    db: AsyncSession = Depends(get_db),
) -> None:
    _ensure_idle(work)
    await db.delete(work)
    await db.flush()
    pipeline_manager.forget(work.id)
    logger.info("Deleted work id=%d", work.id)


# ═══════════════════════════════════════════════════════════════════════════════
# BACKGROUND PIPELINE
# ═══════════════════════════════════════════════════════════════════════════════

@router.post("/{work_id}/generate", response_model=WorkRunResponse, status_code=status.HTTP_202_ACCEPTED)
async def generate_work(work: AcademicWork = Depends(get_authorized_work)) -> WorkRunResponse:
    """
    Research and write the whole work in the background.

    Returns immediately. Poll ``GET /api/works/{id}/status`` for progress.
    """
    return _start_run(work, "full")


@router.post("/{work_id}/research", response_model=WorkRunResponse, status_code=status.HTTP_202_ACCEPTED)
async def research_work(work: AcademicWork = Depends(get_authorized_work)) -> WorkRunResponse:
    """Collect sources and fichas only."""
    return _start_run(work, "research")


@router.post("/{work_id}/write", response_model=WorkRunResponse, status_code=status.HTTP_202_ACCEPTED)
async def write_work(work: AcademicWork = Depends(get_authorized_work)) -> WorkRunResponse:
    """Write the work from the stored fichas (general knowledge when there are none)."""
    if not work.fichas:
        logger.warning("Work %d: writing without fichas", work.id)
    return _start_run(work, "write")


@router.get("/{work_id}/status", response_model=PipelineStatusResponse)
async def work_status(work: AcademicWork = Depends(get_authorized_work)) -> PipelineStatusResponse:
    """Poll the current pipeline status for this work."""
    ps = pipeline_manager.get_status(work.id)
    if ps is None:
        return PipelineStatusResponse(phase="idle")

    return PipelineStatusResponse(
        phase=ps.phase.value,
        mode=ps.mode,
        research_progress=ps.research_progress,
        writing_progress=ps.writing_progress,
        current_article=ps.current_article,
        total_articles=ps.total_articles,
        current_section=ps.current_section,
        sections_completed=ps.sections_completed,
        total_sections=ps.total_sections,
        fichas_count=len(ps.fichas),
        detected_topic=ps.detected_topic,
        fichas=list(ps.fichas),
        generated_index=list(ps.generated_index),
        sections=list(ps.sections),
        full_text=ps.full_text,
        log=list(ps.log),
        errors=list(ps.errors),
        elapsed_seconds=ps.elapsed_seconds,
    )


@router.get("/{work_id}/export/docx")
async def export_work_docx(work: AcademicWork = Depends(get_authorized_work)) -> Response:
    if not (work.full_text or "").strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="The work has no generated text yet.",
        )
    content = await markdown_to_docx(work.full_text)
    return docx_response(content)
