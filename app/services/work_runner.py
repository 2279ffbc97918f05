"""
Background job that runs the pipeline for one stored academic work.

The job opens its own database sessions (the request session is closed by
the time it runs) and writes partial results back at every checkpoint, so
a crash midway still leaves the collected fichas and sections stored.
"""
from __future__ import annotations

import logging
from typing import Optional

from app.database import AsyncSessionLocal
from app.models.database_models import AcademicWork, WorkStatus
from app.models.schemas import FichaLeitura
from app.services.pipeline import AcademicWorkPipeline
from app.services.pipeline_manager import PipelinePhase, PipelineStatus

logger = logging.getLogger(__name__)

RUN_MODES = ("full", "research", "write")


async def _persist(
    work_id: int,
    status: PipelineStatus,
    mode: str,
    work_status: Optional[WorkStatus] = None,
) -> None:
    """Copy accumulated pipeline state from *status* onto the stored work."""
    async with AsyncSessionLocal() as db:
        work = await db.get(AcademicWork, work_id)
        if work is None:
            logger.warning("work_runner: work %d vanished during the run", work_id)
            return

        if mode in ("full", "research"):
            work.fichas = [f.model_dump() for f in status.fichas]
            if status.detected_topic:
                work.detected_topic = status.detected_topic
        if status.generated_index:
            work.generated_index = list(status.generated_index)
            work.sections = [s.model_dump() for s in status.sections]
            work.full_text = status.full_text
        if work_status is not None:
            work.status = work_status.value

        await db.commit()


async def run_work_job(
    work_id: int,
    mode: str,
    status: PipelineStatus,
    pipeline: Optional[AcademicWorkPipeline] = None,
) -> None:
    """
    Run *mode* (``full``, ``research`` or ``write``) for a stored work.

    Designed to be run as an ``asyncio.Task`` via ``PipelineManager``.
    """
    if mode not in RUN_MODES:
        raise ValueError(f"Unknown pipeline mode: {mode}")

    pipeline = pipeline or AcademicWorkPipeline()

    async with AsyncSessionLocal() as db:
        work = await db.get(AcademicWork, work_id)
        if work is None:
            status.phase = PipelinePhase.FAILED
            status.add_error(f"work {work_id} not found")
            return
        theme = work.theme
        title = work.title or work.theme
        language = work.target_language
        citation_style = work.citation_style
        detected_topic = work.detected_topic
        stored_fichas = [FichaLeitura.model_validate(f) for f in (work.fichas or [])]

        if mode != "write":
            # new research invalidates text written from the previous sources
            work.generated_index = []
            work.sections = []
            work.full_text = None
            await db.commit()

    async def checkpoint(current: PipelineStatus) -> None:
        await _persist(work_id, current, mode)

    status.add_log(f"Run started ({mode})")
    try:
        if mode == "research":
            await pipeline.run_research(theme, status, language, checkpoint=checkpoint)
            final_status = WorkStatus.RESEARCHED

        elif mode == "write":
            status.fichas = list(stored_fichas)
            await pipeline.run_writing(
                title,
                theme,
                stored_fichas,
                status,
                language,
                citation_style,
                detected_topic=detected_topic,
                checkpoint=checkpoint,
            )
            final_status = WorkStatus.COMPLETED

        else:
            result = await pipeline.run_full(
                theme, title, status, language, citation_style, checkpoint=checkpoint
            )
            final_status = WorkStatus.COMPLETED if result.writing else WorkStatus.RESEARCHED

    except Exception:
        await _persist(work_id, status, mode, WorkStatus.FAILED)
        raise

    await _persist(work_id, status, mode, final_status)
    status.phase = PipelinePhase.COMPLETED
    status.add_log("Run completed")
    logger.info(
        "work_runner: work %d %s run completed in %.1fs (%d fichas, %d sections)",
        work_id,
        mode,
        status.elapsed_seconds,
        len(status.fichas),
        status.sections_completed,
    )
