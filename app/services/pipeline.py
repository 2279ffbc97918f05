"""
Academic work generation pipeline.

Public API
----------
AcademicWorkPipeline.run_research(theme, status, ...)
    -> ResearchResult
    detect topic -> search -> scrape each article -> fichamento.

AcademicWorkPipeline.run_writing(title, theme, fichas, status, ...)
    -> WritingResult
    index -> one section per title -> assembled Markdown.

AcademicWorkPipeline.run_full(theme, title, status, ...)
    -> FullResult
    Research, then writing when at least one ficha was produced.

Every stage tolerates failure: the error is logged to the shared
``PipelineStatus`` and a documented fallback keeps the run going.
"""
from __future__ import annotations

import dataclasses
import logging
import time
from typing import Awaitable, Callable, List, Optional, Sequence

from app.config import settings
from app.models.schemas import FichaLeitura, WorkSection
from app.services.academic_writer import AcademicWriter
from app.services.pipeline_manager import PipelinePhase, PipelineStatus
from app.services.scraper import WebScraper
from app.utils.helpers import classify_section_title

logger = logging.getLogger(__name__)

Checkpoint = Callable[[PipelineStatus], Awaitable[None]]

FAILED_SECTION_TEMPLATE = 'Conteúdo para "{title}" não pôde ser gerado devido a um erro.'


def fallback_index(topic: str) -> List[str]:
    return [
        "Introdução",
        f"Desenvolvimento sobre {topic}",
        "Conclusão",
        "Referências Bibliográficas",
    ]


def _drop_leading_h2(content: str) -> str:
    """The assembler adds its own section heading."""
    stripped = content.lstrip()
    if stripped.startswith("## "):
        _, _, rest = stripped.partition("\n")
        return rest.lstrip()
    return content


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclasses.dataclass
class ResearchResult:
    """Result of the research half: topic, search and fichamento."""

    detected_topic: str
    articles_found: int
    articles_processed: int
    articles_skipped: int
    fichas: List[FichaLeitura]
    errors: List[str]
    processing_time_seconds: float
    message: str


@dataclasses.dataclass
class WritingResult:
    """Result of the writing half: index, sections and assembled text."""

    generated_index: List[str]
    sections: List[WorkSection]
    sections_failed: int
    full_text: str
    errors: List[str]
    processing_time_seconds: float
    message: str


@dataclasses.dataclass
class FullResult:
    research: ResearchResult
    writing: Optional[WritingResult]
    total_time_seconds: float
    message: str


# ---------------------------------------------------------------------------
# AcademicWorkPipeline
# ---------------------------------------------------------------------------

class AcademicWorkPipeline:
    """
    Orchestrates scraper and writer into a complete academic work.

    The *status* object passed to each run is mutated in place so the
    status endpoint can report progress while the task runs.  The optional
    *checkpoint* coroutine is awaited after every ficha and every section so
    callers can persist partial results.
    """

    def __init__(
        self,
        writer: Optional[AcademicWriter] = None,
        scraper: Optional[WebScraper] = None,
    ) -> None:
        self._writer = writer or AcademicWriter()
        self._scraper = scraper or WebScraper()

    async def _checkpoint(self, checkpoint: Optional[Checkpoint], status: PipelineStatus) -> None:
        if checkpoint is None:
            return
        try:
            await checkpoint(status)
        except Exception as exc:
            logger.warning("Pipeline: checkpoint failed for work %d: %s", status.work_id, exc)

    # ------------------------------------------------------------------
    # Research
    # ------------------------------------------------------------------

    async def run_research(
        self,
        theme: str,
        status: PipelineStatus,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
        checkpoint: Optional[Checkpoint] = None,
    ) -> ResearchResult:
        t0 = time.monotonic()
        errors: List[str] = []
        fichas: List[FichaLeitura] = []
        processed = skipped = 0

        # ---- Step 1: Topic ----
        status.phase = PipelinePhase.DETECTING_TOPIC
        status.research_progress = 5
        status.add_log("Detecting topic...")
        logger.info("Pipeline: [1/3] detecting topic for work %d", status.work_id)
        try:
            topic = await self._writer.detect_topic(theme, target_language)
            status.add_log(f"Topic detected: {topic}")
        except Exception as exc:
            logger.warning("Pipeline: [1/3] topic detection failed (using theme): %s", exc)
            msg = f"topic detection: {str(exc)[:150]}"
            errors.append(msg)
            status.add_error(msg)
            topic = theme
        status.detected_topic = topic
        status.research_progress = 10

        # ---- Step 2: Search ----
        status.phase = PipelinePhase.SEARCHING
        status.add_log(f"Searching articles about '{topic}'...")
        logger.info("Pipeline: [2/3] searching for %r", topic)
        try:
            results = await self._scraper.search(topic, all_pages=True)
        except Exception as exc:
            logger.error("Pipeline: [2/3] search failed: %s", exc, exc_info=True)
            msg = f"search: {str(exc)[:150]}"
            errors.append(msg)
            status.add_error(msg)
            status.research_progress = 100
            return self._research_result(topic, 0, 0, 0, fichas, errors, t0)

        articles = results[: settings.MAX_ARTICLES]
        status.total_articles = len(articles)
        status.research_progress = 20
        status.add_log(f"{len(articles)} article(s) found")

        if not articles:
            logger.warning("Pipeline: [2/3] no articles found for %r", topic)
            status.research_progress = 100
            return self._research_result(topic, 0, 0, 0, fichas, errors, t0)

        # ---- Step 3: Scrape + fichamento ----
        status.phase = PipelinePhase.FICHAMENTO
        total = len(articles)
        for i, article in enumerate(articles):
            status.current_article = i + 1
            logger.info("Pipeline: [3/3] article %d/%d: %s", i + 1, total, article.url)
            try:
                page = await self._scraper.scrape_page(article.url)
                if page.error or not page.content.strip():
                    skipped += 1
                    status.add_log(f"Skipped (no content): {article.title}")
                else:
                    if not page.title:
                        page.title = article.title
                    ficha = await self._writer.create_ficha(page, target_language=target_language)
                    fichas.append(ficha)
                    status.fichas.append(ficha)
                    processed += 1
                    status.add_log(f"Ficha created: {ficha.title}")
                    await self._checkpoint(checkpoint, status)
            except Exception as exc:
                skipped += 1
                msg = f"article {article.url}: {str(exc)[:150]}"
                errors.append(msg)
                status.add_error(msg)
                logger.error("Pipeline: [3/3] article %d/%d failed: %s", i + 1, total, exc)
            status.research_progress = round(20 + (i + 1) / total * 70, 1)

        status.research_progress = 100
        return self._research_result(topic, total, processed, skipped, fichas, errors, t0)

    @staticmethod
    def _research_result(
        topic: str,
        found: int,
        processed: int,
        skipped: int,
        fichas: List[FichaLeitura],
        errors: List[str],
        t0: float,
    ) -> ResearchResult:
        elapsed = round(time.monotonic() - t0, 2)
        message = (
            f"Research on '{topic}' finished in {elapsed}s: "
            f"{found} article(s) found, {processed} ficha(s) created, {skipped} skipped."
        )
        logger.info("Pipeline.run_research: %s", message)
        return ResearchResult(
            detected_topic=topic,
            articles_found=found,
            articles_processed=processed,
            articles_skipped=skipped,
            fichas=fichas,
            errors=errors,
            processing_time_seconds=elapsed,
            message=message,
        )

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    async def run_writing(
        self,
        title: str,
        theme: str,
        fichas: Sequence[FichaLeitura],
        status: PipelineStatus,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
        citation_style: str = settings.DEFAULT_CITATION_STYLE,
        detected_topic: Optional[str] = None,
        checkpoint: Optional[Checkpoint] = None,
    ) -> WritingResult:
        t0 = time.monotonic()
        errors: List[str] = []
        fichas = list(fichas)
        topic = detected_topic or status.detected_topic or theme
        title = title or topic

        if not fichas:
            logger.warning("Pipeline: writing work %d without fichas", status.work_id)
            status.add_log("No fichas available; writing from general knowledge")

        # ---- Step 1: Index ----
        status.phase = PipelinePhase.INDEXING
        status.writing_progress = 0
        status.add_log("Generating index...")
        logger.info("Pipeline: [1/2] generating index for %r", topic)
        try:
            index = await self._writer.generate_index(
                topic, target_language, num_sections=settings.INDEX_NUM_SECTIONS
            )
        except Exception as exc:
            logger.warning("Pipeline: [1/2] index generation failed (using fallback): %s", exc)
            msg = f"index: {str(exc)[:150]}"
            errors.append(msg)
            status.add_error(msg)
            index = fallback_index(topic)

        status.generated_index = list(index)
        status.total_sections = len(index)
        status.sections = []
        status.writing_progress = 10
        status.add_log(f"Index with {len(index)} section(s)")

        # ---- Step 2: Sections ----
        status.phase = PipelinePhase.WRITING
        full_text = f"# {title}\n\n"
        status.full_text = full_text
        sections: List[WorkSection] = []
        failed = 0
        total = len(index)

        for i, section_title in enumerate(index):
            status.current_section = section_title
            logger.info("Pipeline: [2/2] section %d/%d: %s", i + 1, total, section_title)
            try:
                content = await self._write_section(
                    section_title, topic, index, fichas, sections, target_language, citation_style
                )
                status.add_log(f"Section written: {section_title}")
            except Exception as exc:
                failed += 1
                msg = f"section '{section_title}': {str(exc)[:150]}"
                errors.append(msg)
                status.add_error(msg)
                logger.error("Pipeline: [2/2] section %d/%d failed: %s", i + 1, total, exc)
                content = FAILED_SECTION_TEMPLATE.format(title=section_title)

            section = WorkSection(title=section_title, content=content)
            sections.append(section)
            status.sections.append(section)
            full_text += f"## {section_title}\n\n{content}\n\n"
            status.full_text = full_text
            status.writing_progress = round(10 + (i + 1) / total * 85, 1)
            await self._checkpoint(checkpoint, status)

        # ---- Assemble ----
        status.phase = PipelinePhase.ASSEMBLING
        status.current_section = None
        full_text = full_text.rstrip() + "\n"
        status.full_text = full_text
        status.writing_progress = 100

        elapsed = round(time.monotonic() - t0, 2)
        message = (
            f"Wrote {len(sections) - failed}/{len(sections)} section(s) in {elapsed}s"
            f" ({failed} failed)."
        )
        logger.info("Pipeline.run_writing: %s", message)
        return WritingResult(
            generated_index=list(index),
            sections=sections,
            sections_failed=failed,
            full_text=full_text,
            errors=errors,
            processing_time_seconds=elapsed,
            message=message,
        )

    async def _write_section(
        self,
        section_title: str,
        topic: str,
        index: List[str],
        fichas: List[FichaLeitura],
        completed: List[WorkSection],
        target_language: str,
        citation_style: str,
    ) -> str:
        kind = classify_section_title(section_title)

        if kind == "introduction":
            return await self._writer.generate_introduction(topic, index, target_language)

        if kind == "conclusion":
            introduction = next(
                (s.content for s in completed if classify_section_title(s.title) == "introduction"),
                None,
            )
            return await self._writer.generate_conclusion(
                topic, introduction, list(completed), target_language
            )

        if kind == "bibliography":
            content = await self._writer.generate_bibliography(fichas, citation_style, target_language)
            return _drop_leading_h2(content)

        return await self._writer.generate_section(
            section_title,
            topic,
            fichas,
            list(completed),
            target_language,
            citation_style,
            word_count_target=settings.SECTION_WORD_COUNT,
        )

    # ------------------------------------------------------------------
    # Research + writing
    # ------------------------------------------------------------------

    async def run_full(
        self,
        theme: str,
        title: str,
        status: PipelineStatus,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
        citation_style: str = settings.DEFAULT_CITATION_STYLE,
        checkpoint: Optional[Checkpoint] = None,
    ) -> FullResult:
        """Research, then write; writing only runs when fichas were produced."""
        t0 = time.monotonic()
        research = await self.run_research(theme, status, target_language, checkpoint)

        writing: Optional[WritingResult] = None
        if research.fichas:
            writing = await self.run_writing(
                title,
                theme,
                research.fichas,
                status,
                target_language,
                citation_style,
                detected_topic=research.detected_topic,
                checkpoint=checkpoint,
            )
        else:
            logger.warning("Pipeline.run_full: no fichas for work %d, skipping writing", status.work_id)
            status.add_log("No fichas were produced; writing skipped")

        total_time = round(time.monotonic() - t0, 2)
        message = f"Full pipeline finished in {total_time}s. {research.message}"
        if writing is not None:
            message += f" {writing.message}"
        logger.info("Pipeline.run_full: %s", message)
        return FullResult(
            research=research,
            writing=writing,
            total_time_seconds=total_time,
            message=message,
        )
