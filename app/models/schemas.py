"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict, model_validator
from typing import Optional, List, Dict, Any, Literal
from datetime import datetime
from enum import Enum

from app.config import settings


# Enums
class QueryType(str, Enum):
    """How a chat message should be answered."""

    IMAGE_ANALYSIS = "IMAGE_ANALYSIS"
    CODING_TECHNICAL = "CODING_TECHNICAL"
    ACADEMIC_RESEARCH = "ACADEMIC_RESEARCH"
    GENERAL_CONVERSATION = "GENERAL_CONVERSATION"


class SearchDecision(str, Enum):
    """Whether answering a chat message needs fresh web content."""

    SEARCH_NEEDED = "SEARCH_NEEDED"
    NO_SEARCH_NEEDED = "NO_SEARCH_NEEDED"


# Scraped content
class ImageContent(BaseModel):
    src: str
    caption: str = ""


class SearchResult(BaseModel):
    """One hit from the search listing."""

    title: str
    url: str


class PageContent(BaseModel):
    """Article content scraped from a single page."""

    url: str
    title: str = ""
    content: str = ""
    images: List[ImageContent] = []
    author: str = ""
    published_at: Optional[str] = None
    error: bool = False


class FichaLeitura(BaseModel):
    """
    Reading note ("ficha de leitura") summarising one scraped source.
    These are the primary sources behind every generated section.
    """

    url: str
    title: str
    author: Optional[str] = None
    publication_year: Optional[str] = None
    keywords: List[str] = []
    summary: str
    relevant_quotes: List[str] = []
    notes: Optional[str] = None
    images: List[ImageContent] = []


class WorkSection(BaseModel):
    title: str
    content: str


class ChatHistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str


# Flow endpoint schemas
class DetectTopicRequest(BaseModel):
    text_query: str = Field(..., min_length=1)
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class DetectTopicResponse(BaseModel):
    detected_topic: str


class DetectQueryTypeRequest(BaseModel):
    current_user_query: str = ""
    user_image_provided: bool
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class DetectQueryTypeResponse(BaseModel):
    query_type: QueryType
    reasoning: Optional[str] = None


class DecideSearchRequest(BaseModel):
    current_user_query: str = Field(..., min_length=1)
    previous_ai_response_1: Optional[str] = None
    previous_ai_response_2: Optional[str] = None
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class DecideSearchResponse(BaseModel):
    decision: SearchDecision
    reasoning: Optional[str] = None


class GenerateIndexRequest(BaseModel):
    main_topic: str = Field(..., min_length=1)
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE
    num_sections: int = Field(5, ge=1, le=20)


class GenerateIndexResponse(BaseModel):
    generated_index: List[str]


class GenerateIntroductionRequest(BaseModel):
    main_topic: str = Field(..., min_length=1)
    generated_index: Optional[List[str]] = None
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class GenerateIntroductionResponse(BaseModel):
    introduction: str


class GenerateSectionRequest(BaseModel):
    section_title: str = Field(..., min_length=1)
    main_topic: str = Field(..., min_length=1)
    fichas: List[FichaLeitura] = []
    completed_sections: List[WorkSection] = []
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE
    citation_style: str = settings.DEFAULT_CITATION_STYLE
    word_count_target: int = Field(500, ge=50, le=5000)


class GenerateSectionResponse(BaseModel):
    section_content: str


class GenerateConclusionRequest(BaseModel):
    main_topic: str = Field(..., min_length=1)
    introduction_content: Optional[str] = None
    developed_sections: List[WorkSection] = Field(..., min_length=1)
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class GenerateConclusionResponse(BaseModel):
    conclusion: str


class GenerateBibliographyRequest(BaseModel):
    fichas: List[FichaLeitura]
    citation_style: str = settings.DEFAULT_CITATION_STYLE
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class GenerateBibliographyResponse(BaseModel):
    bibliography: str


class GenerateSessionTitleRequest(BaseModel):
    user_first_message: str = ""
    ai_first_response: str
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class GenerateSessionTitleResponse(BaseModel):
    generated_title: str


class AcademicProseRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    user_image_data_uri: Optional[str] = None
    persona: Optional[str] = None
    rules: Optional[str] = None
    context_content: Optional[str] = None
    image_info: Optional[str] = None
    conversation_history: List[ChatHistoryMessage] = []
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE
    citation_style: str = settings.DEFAULT_CITATION_STYLE


class AcademicProseResponse(BaseModel):
    response: str


class FichamentoRequest(BaseModel):
    content: PageContent
    custom_prompt: Optional[str] = None


class ScrapeRequest(BaseModel):
    """Either ``query`` (search listing) or ``url`` (single page)."""

    query: Optional[str] = None
    url: Optional[str] = None
    all_pages: bool = False


class DocxExportRequest(BaseModel):
    markdown_content: Any = None


# Academic work schemas
class WorkCreateRequest(BaseModel):
    theme: str = Field("", max_length=2000)
    title: Optional[str] = Field(None, max_length=500)
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE
    citation_style: str = settings.DEFAULT_CITATION_STYLE


class WorkUpdateRequest(BaseModel):
    theme: Optional[str] = Field(None, max_length=2000)
    title: Optional[str] = Field(None, max_length=500)
    target_language: Optional[str] = None
    citation_style: Optional[str] = None


class WorkSummaryResponse(BaseModel):
    """Compact work listing entry."""

    id: int
    title: str
    theme: str
    status: str
    ficha_count: int = 0
    section_count: int = 0
    created_at: datetime
    updated_at: datetime


class WorkResponse(BaseModel):
    """Full academic work, including generated content."""

    id: int
    title: str
    theme: str
    status: str
    detected_topic: Optional[str] = None
    target_language: str
    citation_style: str
    generated_index: List[str] = []
    fichas: List[FichaLeitura] = []
    sections: List[WorkSection] = []
    full_text: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class WorkRunResponse(BaseModel):
    """Response for starting a background pipeline run."""

    work_id: int
    mode: str
    status: str
    phase: str


class PipelineStatusResponse(BaseModel):
    """Snapshot of a background pipeline run."""

    phase: str
    mode: Optional[str] = None
    research_progress: float = 0.0
    writing_progress: float = 0.0
    current_article: int = 0
    total_articles: int = 0
    current_section: Optional[str] = None
    sections_completed: int = 0
    total_sections: int = 0
    fichas_count: int = 0
    detected_topic: Optional[str] = None
    fichas: List[FichaLeitura] = []
    generated_index: List[str] = []
    sections: List[WorkSection] = []
    full_text: Optional[str] = None
    log: List[str] = []
    errors: List[str] = []
    elapsed_seconds: Optional[float] = None


# Chat schemas
class ChatSessionCreateRequest(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    persona: Optional[str] = None
    rules: Optional[str] = None
    target_language: str = settings.DEFAULT_TARGET_LANGUAGE


class ChatMessageResponse(BaseModel):
    id: int
    role: str
    content: str
    query_type: Optional[str] = None
    metadata_json: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class ChatSessionResponse(BaseModel):
    id: int
    title: str
    persona: Optional[str] = None
    rules: Optional[str] = None
    target_language: str
    message_count: int = 0
    created_at: datetime
    updated_at: datetime


class ChatSessionDetailResponse(ChatSessionResponse):
    messages: List[ChatMessageResponse] = []


class ChatMessageRequest(BaseModel):
    content: str = ""
    user_image_data_uri: Optional[str] = None

    @model_validator(mode="after")
    def _require_text_or_image(self) -> "ChatMessageRequest":
        if not self.content.strip() and not self.user_image_data_uri:
            raise ValueError("Provide message content or an image.")
        return self


class ChatReplyResponse(BaseModel):
    session_id: int
    session_title: str
    user_message: ChatMessageResponse
    assistant_message: ChatMessageResponse
    query_type: QueryType
    search_performed: bool = False
    detected_topic: Optional[str] = None
    sources: List[SearchResult] = []


# Health Check
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    llm: str
    timestamp: datetime
