"""Database and schema models for Cognick."""
from app.models.database_models import (
    User,
    AcademicWork,
    ChatSession,
    ChatMessage,
    WorkStatus,
    MessageRole,
)
from app.models.schemas import (
    FichaLeitura,
    PageContent,
    SearchResult,
    WorkSection,
    QueryType,
    SearchDecision,
    WorkResponse,
    PipelineStatusResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "User",
    "AcademicWork",
    "ChatSession",
    "ChatMessage",
    "WorkStatus",
    "MessageRole",
    # Pydantic schemas
    "FichaLeitura",
    "PageContent",
    "SearchResult",
    "WorkSection",
    "QueryType",
    "SearchDecision",
    "WorkResponse",
    "PipelineStatusResponse",
    "HealthCheckResponse",
]
