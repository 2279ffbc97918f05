"""
LLM flows that write the parts of an academic work.

Each public coroutine is a single step of the document pipeline and can also
be called on its own through the ``/api`` flow endpoints.  Prompts are
module-level constants so they can be tuned without touching logic code.

Public API
----------
AcademicWriter.detect_topic(text_query, target_language)            -> str
AcademicWriter.create_ficha(page, custom_prompt)                    -> FichaLeitura
AcademicWriter.generate_index(main_topic, target_language, n)       -> List[str]
AcademicWriter.generate_introduction(main_topic, index, language)   -> str
AcademicWriter.generate_section(section_title, main_topic, ...)     -> str
AcademicWriter.generate_conclusion(main_topic, intro, sections, ..) -> str
AcademicWriter.generate_bibliography(fichas, style, language)       -> str
"""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from app.config import settings
from app.models.schemas import FichaLeitura, PageContent, WorkSection
from app.services.llm_client import LLMResponseFormatError, LLMService, LLMServiceError
from app.utils.helpers import (
    clean_string_list,
    empty_to_none,
    excerpt,
    extract_year,
    is_abstract_title,
    is_conclusion_title,
    is_references_title,
)

logger = logging.getLogger(__name__)

ABSTRACT_TITLE = "Resumo"
CONCLUSION_TITLE = "Conclusão"
REFERENCES_TITLE = "Referências Bibliográficas"
UNDATED = "s.d."
EMPTY_BIBLIOGRAPHY = "## Referências\n\nNenhuma fonte fornecida para gerar a bibliografia."

SECTION_EXCERPT_CHARS = 200
CONCLUSION_EXCERPT_CHARS = 300
PAGE_CONTENT_CHARS = 8000


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_SYSTEM_PROMPT = """\
You are an academic writing assistant helping students write monographs and \
research papers. You write clear, formal, well-structured prose in {language} \
and never invent sources.\
"""

_TOPIC_PROMPT = """\
Identify the central subject of the text below and express it as a short \
search phrase (a keyword or a few words) in {language}.

Text:
---
{text_query}
---

Respond ONLY with a JSON object: {{"detected_topic": "..."}}\
"""

_FICHA_PROMPT = """\
Read the article below and write a reading note about it in {language}.

Title: {title}
URL: {url}
Author on page: {author}
Published: {published_at}

Article:
---
{content}
---
{custom_prompt}
Respond ONLY with a JSON object with these keys:
{{"author": "author name or empty string",
  "publication_year": "four-digit year or empty string",
  "keywords": ["3 to 6 keywords"],
  "summary": "a faithful summary of 1 to 3 paragraphs",
  "relevant_quotes": ["up to 3 short verbatim quotes from the article"],
  "notes": "remarks on relevance or limitations, or empty string"}}\
"""

_FICHA_RETRY_PROMPT = """\
Summarise this article as JSON in {language}.

{content}

Return ONLY: {{"author": "", "publication_year": "", "keywords": [], \
"summary": "...", "relevant_quotes": [], "notes": ""}}\
"""

_INDEX_PROMPT = """\
Propose the table of contents of an academic work (monograph style) about \
"{main_topic}". Titles must be in {language}.

Follow the usual academic structure: an abstract, an introduction, about \
{num_sections} development sections whose titles are adapted to the topic \
(theoretical background, methodology, analysis and discussion), a conclusion \
and the references.

Return a flat list of section titles, no nesting, no numbering.
Respond ONLY with a JSON object: {{"generated_index": ["...", "..."]}}\
"""

_INDEX_RETRY_PROMPT = """\
List 5 to 9 section titles in {language} for an academic work about \
"{main_topic}".
Return ONLY: {{"generated_index": ["Resumo", "Introdução", "...", "Conclusão"]}}\
"""

_INTRODUCTION_PROMPT = """\
Write the introduction of an academic work about "{main_topic}" in {language}.
{index_block}
The introduction must present the problem and its justification, the general \
objective and the specific objectives, and briefly announce how the work is \
organised. Use formal academic prose in Markdown paragraphs. Do not add a \
heading with the section title.\
"""

_SECTION_PROMPT = """\
Write the section "{section_title}" of an academic work about "{main_topic}" \
in {language}, with roughly {word_count} words.

{sources_block}

{previous_block}

Rules:
- Formal academic prose, Markdown paragraphs; use ### sub-headings only if needed.
- Cite sources in {citation_style} style in the text where you use them.
- Do not repeat content from the previous sections.
- Do not add a heading with the section title.\
"""

_CONCLUSION_PROMPT = """\
Write the conclusion of an academic work about "{main_topic}" in {language}.

Introduction:
{introduction}

Developed sections (excerpts):
{sections}

Synthesise the findings, state the contributions and limitations, and suggest \
future work. Formal academic prose in Markdown paragraphs, no heading.\
"""

_BIBLIOGRAPHY_PROMPT = """\
Format the bibliography of the sources below in {citation_style} style, in \
{language}. List every source once, sorted alphabetically, as a Markdown list.

Sources:
{sources}

Start the answer with the level-2 heading "## Referências" and output nothing \
but the bibliography.\
"""


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

_LANGUAGE_NAMES = {
    "pt-br": "Brazilian Portuguese",
    "pt": "Portuguese",
    "en": "English",
    "es": "Spanish",
    "fr": "French",
}


def language_name(code: str) -> str:
    """Human-readable language name for a BCP-47 code (falls back to the code)."""
    return _LANGUAGE_NAMES.get((code or "").lower(), code or "Brazilian Portuguese")


def format_fichas(fichas: Sequence[FichaLeitura]) -> str:
    """Render reading notes as a numbered source list for prompts."""
    blocks = []
    for i, ficha in enumerate(fichas, start=1):
        lines = [
            f"[{i}] {ficha.title}",
            f"Author: {ficha.author or 'unknown'} ({ficha.publication_year or UNDATED})",
            f"URL: {ficha.url}",
        ]
        if ficha.keywords:
            lines.append("Keywords: " + ", ".join(ficha.keywords))
        lines.append(f"Summary: {ficha.summary}")
        for quote in ficha.relevant_quotes:
            lines.append(f'Quote: "{quote}"')
        blocks.append("\n".join(lines))
    return "\n\n".join(blocks)


def normalize_index(titles: List[str]) -> List[str]:
    """
    Force the academic skeleton onto an LLM-proposed index.

    Abstract first, conclusion second to last, references last; any
    reference titles the model produced are replaced by the canonical one.
    """
    final = [t for t in titles if not is_references_title(t)]

    if not final or not is_abstract_title(final[0]):
        final.insert(0, ABSTRACT_TITLE)

    conclusion = CONCLUSION_TITLE
    for i, title in enumerate(final):
        if is_conclusion_title(title):
            conclusion = final.pop(i)
            break
    final.append(conclusion)
    final.append(REFERENCES_TITLE)
    return final


def _strip_leading_heading(content: str, title: str) -> str:
    """Drop a leading Markdown heading that merely repeats *title*."""
    match = re.match(r"\s*#{1,6}\s*(.+?)\s*\n", content)
    if match and match.group(1).strip().strip("*").lower() == title.strip().lower():
        return content[match.end():].lstrip()
    return content


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class AcademicWriter:
    """Per-step LLM flows for academic works."""

    TOPIC_PROMPT = _TOPIC_PROMPT
    FICHA_PROMPT = _FICHA_PROMPT
    FICHA_RETRY_PROMPT = _FICHA_RETRY_PROMPT
    INDEX_PROMPT = _INDEX_PROMPT
    INDEX_RETRY_PROMPT = _INDEX_RETRY_PROMPT
    INTRODUCTION_PROMPT = _INTRODUCTION_PROMPT
    SECTION_PROMPT = _SECTION_PROMPT
    CONCLUSION_PROMPT = _CONCLUSION_PROMPT
    BIBLIOGRAPHY_PROMPT = _BIBLIOGRAPHY_PROMPT

    def __init__(self, llm: Optional[LLMService] = None) -> None:
        self.llm = llm or LLMService()

    def _messages(self, prompt: str, target_language: str) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": _SYSTEM_PROMPT.format(language=language_name(target_language))},
            {"role": "user", "content": prompt},
        ]

    # ------------------------------------------------------------------
    # Research flows
    # ------------------------------------------------------------------

    async def detect_topic(
        self,
        text_query: str,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> str:
        """Reduce a free-text theme or question to a concise search phrase."""
        prompt = self.TOPIC_PROMPT.format(
            text_query=text_query[:2000],
            language=language_name(target_language),
        )
        parsed = await self.llm.complete_json(self._messages(prompt, target_language), max_tokens=100)

        topic = parsed.get("detected_topic") if isinstance(parsed, dict) else None
        topic = empty_to_none(topic)
        if topic is None:
            raise LLMResponseFormatError("LLM did not return a detected_topic")
        return topic.strip("\"'")

    async def create_ficha(
        self,
        page: PageContent,
        custom_prompt: Optional[str] = None,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> FichaLeitura:
        """
        Build a reading note for one scraped page.

        Never raises: without an API key, or when the LLM fails, the note
        falls back to an excerpt of the page text.
        """
        fallback = self._fallback_ficha(page)
        if not self.llm.configured:
            logger.warning("create_ficha: LLM not configured, using fallback for %s", page.url)
            return fallback

        content = page.content[:PAGE_CONTENT_CHARS]
        language = language_name(target_language)
        prompt = self.FICHA_PROMPT.format(
            title=page.title,
            url=page.url,
            author=page.author or "unknown",
            published_at=page.published_at or "unknown",
            content=content,
            custom_prompt=f"\nAdditional instructions: {custom_prompt}\n" if custom_prompt else "",
            language=language,
        )
        retry_prompt = self.FICHA_RETRY_PROMPT.format(content=content[:4000], language=language)

        try:
            parsed = await self.llm.complete_json(
                self._messages(prompt, target_language),
                retry_messages=self._messages(retry_prompt, target_language),
            )
        except LLMServiceError as exc:
            logger.warning("create_ficha: LLM failed for %s - %s", page.url, exc)
            return fallback

        if not isinstance(parsed, dict):
            logger.warning("create_ficha: unexpected JSON type %s for %s", type(parsed).__name__, page.url)
            return fallback

        return FichaLeitura(
            url=page.url,
            title=page.title,
            author=empty_to_none(parsed.get("author")) or empty_to_none(page.author),
            publication_year=(
                empty_to_none(parsed.get("publication_year"))
                or extract_year(page.published_at)
                or UNDATED
            ),
            keywords=clean_string_list(parsed.get("keywords")),
            summary=empty_to_none(parsed.get("summary")) or fallback.summary,
            relevant_quotes=clean_string_list(parsed.get("relevant_quotes")),
            notes=empty_to_none(parsed.get("notes")),
            images=page.images,
        )

    @staticmethod
    def _fallback_ficha(page: PageContent) -> FichaLeitura:
        return FichaLeitura(
            url=page.url,
            title=page.title,
            author=empty_to_none(page.author),
            publication_year=extract_year(page.published_at) or UNDATED,
            keywords=[],
            summary=excerpt(page.content, settings.FICHA_FALLBACK_CHARS),
            relevant_quotes=[],
            notes=None,
            images=page.images,
        )

    # ------------------------------------------------------------------
    # Writing flows
    # ------------------------------------------------------------------

    async def generate_index(
        self,
        main_topic: str,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
        num_sections: int = 5,
    ) -> List[str]:
        """Propose section titles, normalised by ``normalize_index``."""
        language = language_name(target_language)
        prompt = self.INDEX_PROMPT.format(
            main_topic=main_topic, language=language, num_sections=num_sections
        )
        retry_prompt = self.INDEX_RETRY_PROMPT.format(main_topic=main_topic, language=language)

        parsed = await self.llm.complete_json(
            self._messages(prompt, target_language),
            retry_messages=self._messages(retry_prompt, target_language),
            max_tokens=600,
        )

        raw = parsed.get("generated_index") if isinstance(parsed, dict) else parsed
        titles = clean_string_list(raw if isinstance(raw, list) else None)
        if len(titles) < 3:
            raise LLMResponseFormatError("LLM did not produce a valid index structure")

        index = normalize_index(titles)
        logger.info("generate_index: %d titles for %r", len(index), main_topic)
        return index

    async def generate_introduction(
        self,
        main_topic: str,
        generated_index: Optional[List[str]] = None,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> str:
        index_block = ""
        if generated_index:
            index_block = "\nThe work has the following sections:\n" + "\n".join(
                f"- {title}" for title in generated_index
            ) + "\n"
        prompt = self.INTRODUCTION_PROMPT.format(
            main_topic=main_topic,
            language=language_name(target_language),
            index_block=index_block,
        )
        content = await self.llm.complete(self._messages(prompt, target_language))
        return _strip_leading_heading(content, "Introdução")

    async def generate_section(
        self,
        section_title: str,
        main_topic: str,
        fichas: Sequence[FichaLeitura] = (),
        completed_sections: Sequence[WorkSection] = (),
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
        citation_style: str = settings.DEFAULT_CITATION_STYLE,
        word_count_target: int = 500,
    ) -> str:
        """
        Write one development section from the reading notes.

        Without notes the model is told to rely on general knowledge and to
        avoid fabricated citations.
        """
        if fichas:
            sources_block = "Base the text on these sources:\n" + format_fichas(fichas)
        else:
            sources_block = (
                "No sources were collected. Write from general academic knowledge "
                "and do not invent citations."
            )

        if completed_sections:
            previous_block = "Previous sections (excerpts):\n" + "\n".join(
                f"- {s.title}: {excerpt(s.content, SECTION_EXCERPT_CHARS)}"
                for s in completed_sections
            )
        else:
            previous_block = "This is the first section written."

        prompt = self.SECTION_PROMPT.format(
            section_title=section_title,
            main_topic=main_topic,
            language=language_name(target_language),
            word_count=word_count_target,
            sources_block=sources_block,
            previous_block=previous_block,
            citation_style=citation_style,
        )
        content = await self.llm.complete(
            self._messages(prompt, target_language),
            max_tokens=max(settings.LLM_MAX_TOKENS, word_count_target * 3),
        )
        if not isinstance(content, str):
            raise LLMResponseFormatError("Section content is not text")
        return _strip_leading_heading(content, section_title)

    async def generate_conclusion(
        self,
        main_topic: str,
        introduction_content: Optional[str],
        developed_sections: Sequence[WorkSection],
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> str:
        if not developed_sections:
            raise ValueError("developed_sections must not be empty")

        sections = "\n".join(
            f"- {s.title}: {excerpt(s.content, CONCLUSION_EXCERPT_CHARS)}"
            for s in developed_sections
        )
        prompt = self.CONCLUSION_PROMPT.format(
            main_topic=main_topic,
            language=language_name(target_language),
            introduction=excerpt(introduction_content or "(not available)", 1500),
            sections=sections,
        )
        content = await self.llm.complete(self._messages(prompt, target_language))
        return _strip_leading_heading(content, CONCLUSION_TITLE)

    async def generate_bibliography(
        self,
        fichas: Sequence[FichaLeitura],
        citation_style: str = settings.DEFAULT_CITATION_STYLE,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> str:
        if not fichas:
            return EMPTY_BIBLIOGRAPHY

        sources = "\n".join(
            f"- title: {f.title}; author: {f.author or 'unknown'}; "
            f"year: {f.publication_year or UNDATED}; url: {f.url}"
            for f in fichas
        )
        prompt = self.BIBLIOGRAPHY_PROMPT.format(
            citation_style=citation_style,
            language=language_name(target_language),
            sources=sources,
        )
        content = await self.llm.complete(
            self._messages(prompt, target_language),
            temperature=settings.LLM_JSON_TEMPERATURE,
        )
        if not content.lstrip().startswith("## "):
            content = "## Referências\n\n" + content
        return content
