"""
SQLAlchemy ORM models for the Cognick database.
Academic works and chat sessions are stored per user.
"""
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    DateTime,
    ForeignKey,
    JSON,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import enum

from app.database import Base


# Enums
class WorkStatus(str, enum.Enum):
    """Lifecycle of an academic work as seen by the last pipeline run."""

    DRAFT = "draft"
    RESEARCHED = "researched"
    COMPLETED = "completed"
    FAILED = "failed"


class MessageRole(str, enum.Enum):
    USER = "user"
    ASSISTANT = "assistant"


# Models
class User(Base):
    """User account (synced from the frontend's auth provider)."""

    __tablename__ = "users"

    id = Column(String(255), primary_key=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    name = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    works = relationship("AcademicWork", back_populates="user", cascade="all, delete-orphan")
    chat_sessions = relationship("ChatSession", back_populates="user", cascade="all, delete-orphan")


class AcademicWork(Base):
    """An academic document: its theme, research notes and generated text."""

    __tablename__ = "academic_works"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    theme = Column(Text, nullable=False, default="")
    title = Column(String(500), nullable=False, default="")
    detected_topic = Column(String(500), nullable=True)
    target_language = Column(String(20), nullable=False, default="pt-BR")
    citation_style = Column(String(20), nullable=False, default="APA")
    status = Column(String(20), nullable=False, default=WorkStatus.DRAFT.value)

    # Accumulated pipeline state
    generated_index = Column(JSON, nullable=True)  # List[str]
    fichas = Column(JSON, nullable=True)  # List[FichaLeitura dict]
    sections = Column(JSON, nullable=True)  # List[{"title", "content"}]
    full_text = Column(Text, nullable=True)  # Assembled Markdown

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    user = relationship("User", back_populates="works")


class ChatSession(Base):
    """A conversation with the assistant."""

    __tablename__ = "chat_sessions"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(String(255), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    title = Column(String(255), nullable=False, default="Nova Conversa")
    persona = Column(Text, nullable=True)
    rules = Column(Text, nullable=True)
    target_language = Column(String(20), nullable=False, default="pt-BR")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    user = relationship("User", back_populates="chat_sessions")
    messages = relationship(
        "ChatMessage",
        back_populates="session",
        cascade="all, delete-orphan",
        order_by="ChatMessage.id",
    )


class ChatMessage(Base):
    """One message in a chat session."""

    __tablename__ = "chat_messages"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(Integer, ForeignKey("chat_sessions.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String(20), nullable=False)
    content = Column(Text, nullable=False, default="")
    query_type = Column(String(50), nullable=True)  # assistant messages only
    metadata_json = Column(JSON, nullable=True)  # sources, detected topic, etc.
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    # Relationships
    session = relationship("ChatSession", back_populates="messages")
