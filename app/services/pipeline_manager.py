"""
In-memory singleton that tracks background pipeline tasks per academic work.

Usage
-----
    from app.services.pipeline_manager import pipeline_manager, PipelineStatus

    status = PipelineStatus(work_id=work.id, mode="full")
    pipeline_manager.start(work.id, run_work_job(work.id, "full", status), status=status)
    # ... later ...
    current = pipeline_manager.get_status(work.id)
"""
from __future__ import annotations

import asyncio
import dataclasses
import enum
import logging
import time
from datetime import datetime
from typing import Any, Coroutine, Dict, List, Optional

from app.models.schemas import FichaLeitura, WorkSection

logger = logging.getLogger(__name__)

MAX_LOG_ENTRIES = 20


# ---------------------------------------------------------------------------
# Pipeline phase enum
# ---------------------------------------------------------------------------

class PipelinePhase(str, enum.Enum):
    QUEUED = "queued"
    DETECTING_TOPIC = "detecting_topic"
    SEARCHING = "searching"
    FICHAMENTO = "fichamento"
    INDEXING = "indexing"
    WRITING = "writing"
    ASSEMBLING = "assembling"
    COMPLETED = "completed"
    FAILED = "failed"


# ---------------------------------------------------------------------------
# Pipeline status (mutable dataclass shared between task and poller)
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class PipelineStatus:
    work_id: int
    mode: str = "full"
    phase: PipelinePhase = PipelinePhase.QUEUED
    research_progress: float = 0.0
    writing_progress: float = 0.0
    current_article: int = 0
    total_articles: int = 0
    current_section: Optional[str] = None
    total_sections: int = 0
    detected_topic: Optional[str] = None
    fichas: List[FichaLeitura] = dataclasses.field(default_factory=list)
    generated_index: List[str] = dataclasses.field(default_factory=list)
    sections: List[WorkSection] = dataclasses.field(default_factory=list)
    full_text: Optional[str] = None
    log: List[str] = dataclasses.field(default_factory=list)
    errors: List[str] = dataclasses.field(default_factory=list)
    started_at: float = dataclasses.field(default_factory=time.monotonic)
    completed_at: Optional[float] = None

    @property
    def elapsed_seconds(self) -> float:
        end = self.completed_at if self.completed_at else time.monotonic()
        return round(end - self.started_at, 2)

    @property
    def sections_completed(self) -> int:
        return len(self.sections)

    def add_log(self, message: str) -> None:
        """Append a timestamped entry, keeping only the last MAX_LOG_ENTRIES."""
        self.log.append(f"[{datetime.now().strftime('%H:%M:%S')}] {message}")
        del self.log[:-MAX_LOG_ENTRIES]

    def add_error(self, message: str) -> None:
        self.errors.append(message[:300])
        self.add_log(f"Error: {message[:200]}")


# ---------------------------------------------------------------------------
# Pipeline manager (class-level state, acts as a singleton)
# ---------------------------------------------------------------------------

class PipelineManager:
    """Manages background pipeline asyncio.Tasks per academic work."""

    _tasks: Dict[int, asyncio.Task] = {}
    _status: Dict[int, PipelineStatus] = {}

    @classmethod
    def is_running(cls, work_id: int) -> bool:
        task = cls._tasks.get(work_id)
        return task is not None and not task.done()

    @classmethod
    def get_status(cls, work_id: int) -> Optional[PipelineStatus]:
        return cls._status.get(work_id)

    @classmethod
    def start(
        cls,
        work_id: int,
        coro: Coroutine[Any, Any, Any],
        status: Optional[PipelineStatus] = None,
    ) -> PipelineStatus:
        """
        Launch a background pipeline task for *work_id*.

        If *status* is provided (pre-created by the caller so it could be
        passed into the coroutine before this method is called), it is
        registered as-is.  Otherwise a fresh PipelineStatus is created.

        Returns the PipelineStatus object (shared with the running task so
        fields update in real time).
        """
        if cls.is_running(work_id):
            coro.close()
            raise RuntimeError(f"Pipeline already running for work {work_id}")

        if status is None:
            status = PipelineStatus(work_id=work_id)
        cls._status[work_id] = status

        async def _wrapper() -> None:
            try:
                await coro
            except Exception as exc:
                logger.error("Pipeline task failed for work %d: %s", work_id, exc, exc_info=True)
                status.phase = PipelinePhase.FAILED
                status.add_error(f"pipeline crash: {str(exc)[:200]}")
            finally:
                status.completed_at = time.monotonic()
                if status.phase not in (PipelinePhase.COMPLETED, PipelinePhase.FAILED):
                    status.phase = PipelinePhase.FAILED

        task = asyncio.create_task(_wrapper())
        cls._tasks[work_id] = task

        # Cleanup reference when done
        task.add_done_callback(lambda _t: cls._cleanup(work_id))

        logger.info("Pipeline task started for work %d", work_id)
        return status

    @classmethod
    def forget(cls, work_id: int) -> None:
        """Drop the stored status of a finished run (used when a work is deleted)."""
        if not cls.is_running(work_id):
            cls._status.pop(work_id, None)

    @classmethod
    def _cleanup(cls, work_id: int) -> None:
        """Remove the task reference (status is kept for polling)."""
        cls._tasks.pop(work_id, None)


# Module-level singleton instance
pipeline_manager = PipelineManager
