"""
Stateless LLM flow endpoints.

Each route wraps one flow of ``AcademicWriter`` or ``ChatService`` so the
frontend can drive the steps itself.  Upstream LLM failures surface as 502
through the ``LLMServiceError`` handler in ``app.main``.

Route summary
-------------
POST /api/detect-topic
POST /api/detect-query-type
POST /api/decide-search
POST /api/generate-index
POST /api/generate-introduction
POST /api/generate-academic-section
POST /api/generate-conclusion
POST /api/generate-bibliography
POST /api/generate-session-title
POST /api/generate-academic-prose
POST /api/fichamento
"""
import logging

from fastapi import APIRouter, Depends, HTTPException, status

from app.dependencies.services import get_chat_service, get_writer
from app.models.schemas import (
    AcademicProseRequest,
    AcademicProseResponse,
    DecideSearchRequest,
    DecideSearchResponse,
    DetectQueryTypeRequest,
    DetectQueryTypeResponse,
    DetectTopicRequest,
    DetectTopicResponse,
    FichaLeitura,
    FichamentoRequest,
    GenerateBibliographyRequest,
    GenerateBibliographyResponse,
    GenerateConclusionRequest,
    GenerateConclusionResponse,
    GenerateIndexRequest,
    GenerateIndexResponse,
    GenerateIntroductionRequest,
    GenerateIntroductionResponse,
    GenerateSectionRequest,
    GenerateSectionResponse,
    GenerateSessionTitleRequest,
    GenerateSessionTitleResponse,
)
from app.services.academic_writer import AcademicWriter
from app.services.chat_service import ChatService

logger = logging.getLogger(__name__)

router = APIRouter()


# ─── Research flows ───────────────────────────────────────────────────────────

@router.post("/detect-topic", response_model=DetectTopicResponse)
async def detect_topic(
    body: DetectTopicRequest,
    writer: AcademicWriter = Depends(get_writer),
) -> DetectTopicResponse:
    topic = await writer.detect_topic(body.text_query, body.target_language)
    return DetectTopicResponse(detected_topic=topic)


@router.post("/fichamento", response_model=FichaLeitura)
async def fichamento(
    body: FichamentoRequest,
    writer: AcademicWriter = Depends(get_writer),
) -> FichaLeitura:
    """Build a reading note for already-scraped page content."""
    if not body.content.url or not body.content.title:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Page content must include url and title.",
        )
    return await writer.create_ficha(body.content, custom_prompt=body.custom_prompt)


# ─── Writing flows ────────────────────────────────────────────────────────────

@router.post("/generate-index", response_model=GenerateIndexResponse)
async def generate_index(
    body: GenerateIndexRequest,
    writer: AcademicWriter = Depends(get_writer),
) -> GenerateIndexResponse:
    index = await writer.generate_index(body.main_topic, body.target_language, body.num_sections)
    return GenerateIndexResponse(generated_index=index)


@router.post("/generate-introduction", response_model=GenerateIntroductionResponse)
async def generate_introduction(
    body: GenerateIntroductionRequest,
    writer: AcademicWriter = Depends(get_writer),
) -> GenerateIntroductionResponse:
    introduction = await writer.generate_introduction(
        body.main_topic, body.generated_index, body.target_language
    )
    return GenerateIntroductionResponse(introduction=introduction)


@router.post("/generate-academic-section", response_model=GenerateSectionResponse)
async def generate_academic_section(
    body: GenerateSectionRequest,
    writer: AcademicWriter = Depends(get_writer),
) -> GenerateSectionResponse:
    content = await writer.generate_section(
        body.section_title,
        body.main_topic,
        body.fichas,
        body.completed_sections,
        body.target_language,
        body.citation_style,
        word_count_target=body.word_count_target,
    )
    return GenerateSectionResponse(section_content=content)


@router.post("/generate-conclusion", response_model=GenerateConclusionResponse)
async def generate_conclusion(
    body: GenerateConclusionRequest,
    writer: AcademicWriter = Depends(get_writer),
) -> GenerateConclusionResponse:
    conclusion = await writer.generate_conclusion(
        body.main_topic,
        body.introduction_content,
        body.developed_sections,
        body.target_language,
    )
    return GenerateConclusionResponse(conclusion=conclusion)


@router.post("/generate-bibliography", response_model=GenerateBibliographyResponse)
async def generate_bibliography(
    body: GenerateBibliographyRequest,
    writer: AcademicWriter = Depends(get_writer),
) -> GenerateBibliographyResponse:
    bibliography = await writer.generate_bibliography(
        body.fichas, body.citation_style, body.target_language
    )
    return GenerateBibliographyResponse(bibliography=bibliography)


# ─── Chat flows ───────────────────────────────────────────────────────────────

@router.post("/detect-query-type", response_model=DetectQueryTypeResponse)
async def detect_query_type(
    body: DetectQueryTypeRequest,
    chat: ChatService = Depends(get_chat_service),
) -> DetectQueryTypeResponse:
    query_type, reasoning = await chat.detect_query_type(
        body.current_user_query, body.user_image_provided, body.target_language
    )
    return DetectQueryTypeResponse(query_type=query_type, reasoning=reasoning)


@router.post("/decide-search", response_model=DecideSearchResponse)
async def decide_search(
    body: DecideSearchRequest,
    chat: ChatService = Depends(get_chat_service),
) -> DecideSearchResponse:
    decision, reasoning = await chat.decide_search(
        body.current_user_query,
        body.previous_ai_response_1,
        body.previous_ai_response_2,
        body.target_language,
    )
    return DecideSearchResponse(decision=decision, reasoning=reasoning)


@router.post("/generate-session-title", response_model=GenerateSessionTitleResponse)
async def generate_session_title(
    body: GenerateSessionTitleRequest,
    chat: ChatService = Depends(get_chat_service),
) -> GenerateSessionTitleResponse:
    title = await chat.generate_session_title(
        body.user_first_message, body.ai_first_response, body.target_language
    )
    return GenerateSessionTitleResponse(generated_title=title)


@router.post("/generate-academic-prose", response_model=AcademicProseResponse)
async def generate_academic_prose(
    body: AcademicProseRequest,
    chat: ChatService = Depends(get_chat_service),
) -> AcademicProseResponse:
    response = await chat.generate_academic_response(
        body.prompt,
        image_data_uri=body.user_image_data_uri,
        persona=body.persona,
        rules=body.rules,
        context_content=body.context_content,
        image_info=body.image_info,
        history=body.conversation_history,
        target_language=body.target_language,
        citation_style=body.citation_style,
    )
    return AcademicProseResponse(response=response)
