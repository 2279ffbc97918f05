"""
Conversational assistant.

Routes each chat message by query type: academic questions may trigger a web
search whose scraped pages become context for a cited answer, everything else
gets a direct response.
"""
from __future__ import annotations

import dataclasses
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.config import settings
from app.models.schemas import (
    ChatHistoryMessage,
    PageContent,
    QueryType,
    SearchDecision,
    SearchResult,
)
from app.services.academic_writer import AcademicWriter, language_name
from app.services.llm_client import LLMService, LLMServiceError, build_user_content
from app.services.scraper import WebScraper
from app.utils.helpers import excerpt, strip_markdown_image_params, strip_url_params

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TITLE = "Nova Conversa"
MAX_TITLE_WORDS = 5


@dataclasses.dataclass
class ChatReply:
    """Result of ``ChatService.respond``."""

    response: str
    query_type: QueryType
    search_performed: bool = False
    detected_topic: Optional[str] = None
    sources: List[SearchResult] = dataclasses.field(default_factory=list)


# ---------------------------------------------------------------------------
# Prompt templates
# ---------------------------------------------------------------------------

_QUERY_TYPE_PROMPT = """\
Classify the user's message. The conversation language is {language}.

Message: "{query}"

Categories:
- CODING_TECHNICAL: programming, code, software errors, frameworks, APIs, \
command-line tools or other technical computing topics.
- ACADEMIC_RESEARCH: requests for detailed explanations, facts that benefit \
from research and citations, science, history, essays or reports.
- GENERAL_CONVERSATION: greetings, small talk, opinions, creative requests \
and simple general-knowledge questions.

Prefer CODING_TECHNICAL when it clearly applies.
Respond ONLY with a JSON object: {{"query_type": "...", "reasoning": "one sentence"}}\
"""

_DECIDE_SEARCH_PROMPT = """\
Decide whether answering the user's latest message needs fresh content from \
the web. The conversation language is {language}.

Latest message: "{query}"
{previous}
Answer SEARCH_NEEDED when the message asks about a new topic, needs facts or \
sources not present in the previous answers, or explicitly asks for research.
Answer NO_SEARCH_NEEDED when it is a follow-up the previous answers already \
cover, a request to rephrase or summarise, or small talk.

Respond ONLY with a JSON object: {{"decision": "SEARCH_NEEDED|NO_SEARCH_NEEDED", \
"reasoning": "one sentence"}}\
"""

_SIMPLE_SYSTEM_PROMPT = """\
You are Cognick, a helpful assistant. Answer in {language} using Markdown. \
Use fenced code blocks with a language tag for code.\
"""

_ACADEMIC_SYSTEM_PROMPT = """\
You are Cognick, an academic assistant. Answer in {language} with formal, \
well-structured Markdown prose.
Cite the sources you use in {citation_style} style and end with a short \
"Referências" list of the sources actually cited. Never invent sources.\
"""

_CONTEXT_BLOCK = """\

Use the following researched content as your primary source:
---
{context}
---\
"""

_IMAGE_BLOCK = """\

Images available from the sources (URL: caption). When one genuinely \
illustrates the answer, embed it as ![caption](URL):
{image_info}\
"""

_SESSION_TITLE_PROMPT = """\
Give this conversation a very short title (at most {max_words} words) in \
{language}, based on its first exchange.

User: "{user_message}"
Assistant: "{ai_response}"

Reply with the title only, no quotes, no punctuation at the end.\
"""


class ChatService:
    """Chat flows plus the routing logic that ties them together."""

    def __init__(
        self,
        llm: Optional[LLMService] = None,
        scraper: Optional[WebScraper] = None,
        writer: Optional[AcademicWriter] = None,
    ) -> None:
        self.llm = llm or LLMService()
        self.scraper = scraper or WebScraper()
        self.writer = writer or AcademicWriter(self.llm)

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    async def detect_query_type(
        self,
        query: str,
        user_image_provided: bool,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> Tuple[QueryType, Optional[str]]:
        if user_image_provided:
            return QueryType.IMAGE_ANALYSIS, "An image was provided."
        if not query or not query.strip():
            return QueryType.GENERAL_CONVERSATION, "Empty message."

        prompt = _QUERY_TYPE_PROMPT.format(query=query[:2000], language=language_name(target_language))
        parsed = await self.llm.complete_json([{"role": "user", "content": prompt}], max_tokens=200)
        if not isinstance(parsed, dict):
            parsed = {}

        raw_type = str(parsed.get("query_type", "")).strip().upper()
        reasoning = parsed.get("reasoning")
        try:
            query_type = QueryType(raw_type)
        except ValueError:
            logger.warning("detect_query_type: unknown type %r, using GENERAL_CONVERSATION", raw_type)
            query_type = QueryType.GENERAL_CONVERSATION

        # only the caller knows whether an image exists
        if query_type == QueryType.IMAGE_ANALYSIS:
            query_type = QueryType.GENERAL_CONVERSATION
        return query_type, str(reasoning) if reasoning else None

    async def decide_search(
        self,
        query: str,
        previous_response_1: Optional[str] = None,
        previous_response_2: Optional[str] = None,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> Tuple[SearchDecision, Optional[str]]:
        previous = ""
        for label, text in (("Previous answer", previous_response_1), ("Answer before that", previous_response_2)):
            if text:
                previous += f"{label} (excerpt): \"{excerpt(text, 1000)}\"\n"
        if not previous:
            previous = "There are no previous answers.\n"

        prompt = _DECIDE_SEARCH_PROMPT.format(
            query=query[:2000], previous=previous, language=language_name(target_language)
        )
        parsed = await self.llm.complete_json([{"role": "user", "content": prompt}], max_tokens=200)
        if not isinstance(parsed, dict):
            parsed = {}

        raw = str(parsed.get("decision", "")).strip().upper()
        reasoning = parsed.get("reasoning")
        try:
            decision = SearchDecision(raw)
        except ValueError:
            logger.warning("decide_search: unknown decision %r, using NO_SEARCH_NEEDED", raw)
            decision = SearchDecision.NO_SEARCH_NEEDED
        return decision, str(reasoning) if reasoning else None

    # ------------------------------------------------------------------
    # Responses
    # ------------------------------------------------------------------

    @staticmethod
    def _system_extras(persona: Optional[str], rules: Optional[str]) -> str:
        extra = ""
        if persona:
            extra += f"\n\nPersona to adopt:\n{persona}"
        if rules:
            extra += f"\n\nRules you must follow:\n{rules}"
        return extra

    @staticmethod
    def _history_messages(history: Sequence[ChatHistoryMessage]) -> List[Dict[str, Any]]:
        return [{"role": m.role, "content": m.content} for m in history if m.content]

    async def generate_simple_response(
        self,
        prompt: str,
        image_data_uri: Optional[str] = None,
        persona: Optional[str] = None,
        rules: Optional[str] = None,
        history: Sequence[ChatHistoryMessage] = (),
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> str:
        system = _SIMPLE_SYSTEM_PROMPT.format(language=language_name(target_language))
        messages = [{"role": "system", "content": system + self._system_extras(persona, rules)}]
        messages.extend(self._history_messages(history))
        messages.append({"role": "user", "content": build_user_content(prompt, image_data_uri)})
        return await self.llm.complete(messages)

    async def generate_academic_response(
        self,
        prompt: str,
        image_data_uri: Optional[str] = None,
        persona: Optional[str] = None,
        rules: Optional[str] = None,
        context_content: Optional[str] = None,
        image_info: Optional[str] = None,
        history: Sequence[ChatHistoryMessage] = (),
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
        citation_style: str = settings.DEFAULT_CITATION_STYLE,
    ) -> str:
        """
        Write a cited academic answer.

        *context_content* holds scraped source text and *image_info* the
        images that may be embedded.  Query strings are removed from image
        URLs in the answer.
        """
        system = _ACADEMIC_SYSTEM_PROMPT.format(
            language=language_name(target_language), citation_style=citation_style
        )
        system += self._system_extras(persona, rules)
        if context_content:
            system += _CONTEXT_BLOCK.format(context=context_content)
        if image_info:
            system += _IMAGE_BLOCK.format(image_info=image_info)

        messages = [{"role": "system", "content": system}]
        messages.extend(self._history_messages(history))
        messages.append({"role": "user", "content": build_user_content(prompt, image_data_uri)})

        response = await self.llm.complete(messages)
        return strip_markdown_image_params(response)

    async def generate_session_title(
        self,
        user_first_message: str,
        ai_first_response: str,
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
    ) -> str:
        prompt = _SESSION_TITLE_PROMPT.format(
            max_words=MAX_TITLE_WORDS,
            language=language_name(target_language),
            user_message=excerpt(user_first_message or "(image only)", 500),
            ai_response=excerpt(ai_first_response, 500),
        )
        try:
            raw = await self.llm.complete(
                [{"role": "user", "content": prompt}], max_tokens=30, temperature=0.3
            )
        except LLMServiceError as exc:
            logger.warning("generate_session_title: falling back to default - %s", exc)
            return DEFAULT_SESSION_TITLE
        return self.clean_title(raw)

    @staticmethod
    def clean_title(raw: str) -> str:
        """Keep the first line, drop quotes and markup, cap at MAX_TITLE_WORDS."""
        line = (raw or "").strip().splitlines()[0] if (raw or "").strip() else ""
        line = line.strip().strip("\"'`*#").strip()
        if line.lower().startswith("título:") or line.lower().startswith("title:"):
            line = line.split(":", 1)[1].strip().strip("\"'")
        words = line.split()[:MAX_TITLE_WORDS]
        title = " ".join(words).rstrip(".:;,")
        return title or DEFAULT_SESSION_TITLE

    # ------------------------------------------------------------------
    # Routing
    # ------------------------------------------------------------------

    async def respond(
        self,
        prompt: str,
        image_data_uri: Optional[str] = None,
        persona: Optional[str] = None,
        rules: Optional[str] = None,
        history: Sequence[ChatHistoryMessage] = (),
        target_language: str = settings.DEFAULT_TARGET_LANGUAGE,
        citation_style: str = settings.DEFAULT_CITATION_STYLE,
    ) -> ChatReply:
        """
        Answer one chat message.

        Academic questions may go through decide-search, topic detection,
        search and scraping; any failure in that chain degrades to an answer
        without researched context.  LLM failures in the final answer
        propagate as ``LLMServiceError``.
        """
        query_type, _ = await self.detect_query_type(prompt, bool(image_data_uri), target_language)
        logger.info("respond: query classified as %s", query_type.value)

        if query_type != QueryType.ACADEMIC_RESEARCH:
            response = await self.generate_simple_response(
                prompt,
                image_data_uri=image_data_uri,
                persona=persona,
                rules=rules,
                history=history,
                target_language=target_language,
            )
            return ChatReply(response=response, query_type=query_type)

        previous = [m.content for m in reversed(history) if m.role == "assistant"]
        context_content: Optional[str] = None
        image_info: Optional[str] = None
        detected_topic: Optional[str] = None
        sources: List[SearchResult] = []
        search_performed = False

        try:
            decision, reasoning = await self.decide_search(
                prompt,
                previous[0] if previous else None,
                previous[1] if len(previous) > 1 else None,
                target_language,
            )
            logger.info("respond: search decision %s (%s)", decision.value, reasoning)

            if decision == SearchDecision.SEARCH_NEEDED:
                detected_topic, pages = await self._research(prompt, target_language)
                search_performed = True
                if pages:
                    context_content = self.build_context(pages)
                    image_info = self.build_image_info(pages)
                    sources = [SearchResult(title=p.title, url=p.url) for p in pages]
        except Exception as exc:
            logger.warning("respond: research step failed, answering without context - %s", exc)

        response = await self.generate_academic_response(
            prompt,
            image_data_uri=image_data_uri,
            persona=persona,
            rules=rules,
            context_content=context_content,
            image_info=image_info,
            history=history,
            target_language=target_language,
            citation_style=citation_style,
        )
        return ChatReply(
            response=response,
            query_type=query_type,
            search_performed=search_performed,
            detected_topic=detected_topic,
            sources=sources,
        )

    async def _research(self, prompt: str, target_language: str) -> Tuple[str, List[PageContent]]:
        try:
            topic = await self.writer.detect_topic(prompt, target_language)
        except LLMServiceError as exc:
            logger.warning("respond: topic detection failed, searching the raw prompt - %s", exc)
            topic = excerpt(prompt, 100, suffix="")

        results = await self.scraper.search(topic, all_pages=False)
        pages: List[PageContent] = []
        for result in results[: settings.CHAT_MAX_SOURCES]:
            page = await self.scraper.scrape_page(result.url)
            if page.error or not page.content:
                logger.debug("respond: skipping empty source %s", result.url)
                continue
            if not page.title:
                page.title = result.title
            pages.append(page)

        logger.info("respond: %d sources scraped for %r", len(pages), topic)
        return topic, pages

    @staticmethod
    def build_context(pages: Sequence[PageContent]) -> str:
        blocks = []
        for page in pages:
            header = f"Source: {page.title} ({page.url})"
            if page.author:
                header += f" - author: {page.author}"
            blocks.append(f"{header}\n{excerpt(page.content, settings.CHAT_CONTEXT_CHARS)}")
        return "\n\n".join(blocks)

    @staticmethod
    def build_image_info(pages: Sequence[PageContent]) -> Optional[str]:
        lines = []
        for page in pages:
            for image in page.images:
                lines.append(f"- {strip_url_params(image.src)}: {image.caption or page.title}")
        return "\n".join(lines) or None
