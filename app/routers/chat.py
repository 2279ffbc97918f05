"""
Chat session endpoints.

Route summary
-------------
POST   /api/chat/sessions                         - create session
GET    /api/chat/sessions                         - list user's sessions
GET    /api/chat/sessions/{session_id}            - session with messages
DELETE /api/chat/sessions/{session_id}            - delete session
POST   /api/chat/sessions/{session_id}/messages   - send a message, get the reply
"""
import logging
from datetime import datetime, timezone
from typing import Dict, List

from fastapi import APIRouter, Depends, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.dependencies.auth import get_authorized_session, get_current_user_id, get_or_create_user
from app.dependencies.services import get_chat_service
from app.models.database_models import ChatMessage, ChatSession, MessageRole, User
from app.models.schemas import (
    ChatHistoryMessage,
    ChatMessageRequest,
    ChatMessageResponse,
    ChatReplyResponse,
    ChatSessionCreateRequest,
    ChatSessionDetailResponse,
    ChatSessionResponse,
)
from app.services.chat_service import DEFAULT_SESSION_TITLE, ChatService

logger = logging.getLogger(__name__)

router = APIRouter()


def _session_response(session: ChatSession, message_count: int = 0) -> ChatSessionResponse:
    return ChatSessionResponse(
        id=session.id,
        title=session.title,
        persona=session.persona,
        rules=session.rules,
        target_language=session.target_language,
        message_count=message_count,
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


async def _load_messages(db: AsyncSession, session_id: int) -> List[ChatMessage]:
    result = await db.execute(
        select(ChatMessage).where(ChatMessage.session_id == session_id).order_by(ChatMessage.id)
    )
    return list(result.scalars().all())


@router.post("/sessions", response_model=ChatSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    body: ChatSessionCreateRequest,
    user: User = Depends(get_or_create_user),
    db: AsyncSession = Depends(get_db),
) -> ChatSessionResponse:
    session = ChatSession(
        user_id=user.id,
        title=(body.title or "").strip() or DEFAULT_SESSION_TITLE,
        persona=body.persona,
        rules=body.rules,
        target_language=body.target_language,
    )
    db.add(session)
    await db.flush()
    await db.refresh(session)

    logger.info("Created chat session id=%d for user=%s", session.id, user.id)
    return _session_response(session)


@router.get("/sessions", response_model=List[ChatSessionResponse])
async def list_sessions(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
) -> List[ChatSessionResponse]:
    """List the user's chat sessions, most recently active first."""
    result = await db.execute(
        select(ChatSession)
        .where(ChatSession.user_id == user_id)
        .order_by(ChatSession.updated_at.desc(), ChatSession.id.desc())
    )
    sessions = result.scalars().all()

    # Batch-fetch message counts
    session_ids = [s.id for s in sessions]
    counts: Dict[int, int] = {}
    if session_ids:
        count_result = await db.execute(
            select(ChatMessage.session_id, func.count(ChatMessage.id).label("cnt"))
            .where(ChatMessage.session_id.in_(session_ids))
            .group_by(ChatMessage.session_id)
        )
        counts = {row.session_id: row.cnt for row in count_result}

    return [_session_response(s, counts.get(s.id, 0)) for s in sessions]


@router.get("/sessions/{session_id}", response_model=ChatSessionDetailResponse)
async def get_session(
    session: ChatSession = Depends(get_authorized_session),
    db: AsyncSession = Depends(get_db),
) -> ChatSessionDetailResponse:
    messages = await _load_messages(db, session.id)
    base = _session_response(session, len(messages))
    return ChatSessionDetailResponse(
        **base.model_dump(),
        messages=[ChatMessageResponse.model_validate(m) for m in messages],
    )


@router.delete(
    "/sessions/{session_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    response_model=None,
)
async def delete_session(
    session: ChatSession = Depends(get_authorized_session),
    db: AsyncSession = Depends(get_db),
) -> None:
    await db.delete(session)
    await db.flush()
    logger.info("Deleted chat session id=%d", session.id)


@router.post("/sessions/{session_id}/messages", response_model=ChatReplyResponse)
async def send_message(
    body: ChatMessageRequest,
    session: ChatSession = Depends(get_authorized_session),
    chat: ChatService = Depends(get_chat_service),
    db: AsyncSession = Depends(get_db),
) -> ChatReplyResponse:
    """
    Store the user's message, answer it and store the reply.

    The last CHAT_HISTORY_LIMIT messages are sent as conversation history.
    After the first exchange a default-titled session gets a generated title.
    """
    previous = await _load_messages(db, session.id)
    history = [
        ChatHistoryMessage(role=m.role, content=m.content)
        for m in previous[-settings.CHAT_HISTORY_LIMIT:]
        if m.role in (MessageRole.USER.value, MessageRole.ASSISTANT.value)
    ]
    content = body.content.strip()

    user_message = ChatMessage(
        session_id=session.id,
        role=MessageRole.USER.value,
        content=content,
        metadata_json={"has_image": True} if body.user_image_data_uri else None,
    )
    db.add(user_message)
    await db.flush()

    reply = await chat.respond(
        content,
        image_data_uri=body.user_image_data_uri,
        persona=session.persona,
        rules=session.rules,
        history=history,
        target_language=session.target_language,
    )

    assistant_message = ChatMessage(
        session_id=session.id,
        role=MessageRole.ASSISTANT.value,
        content=reply.response,
        query_type=reply.query_type.value,
        metadata_json={
            "search_performed": reply.search_performed,
            "detected_topic": reply.detected_topic,
            "sources": [s.model_dump() for s in reply.sources],
        },
    )
    db.add(assistant_message)

    if not previous and session.title == DEFAULT_SESSION_TITLE:
        session.title = await chat.generate_session_title(
            content, reply.response, session.target_language
        )
    session.updated_at = datetime.now(timezone.utc)

    await db.flush()
    await db.refresh(user_message)
    await db.refresh(assistant_message)
    await db.refresh(session)

    logger.info(
        "Chat session %d: %s reply (search=%s, %d sources)",
        session.id,
        reply.query_type.value,
        reply.search_performed,
        len(reply.sources),
    )
    return ChatReplyResponse(
        session_id=session.id,
        session_title=session.title,
        user_message=ChatMessageResponse.model_validate(user_message),
        assistant_message=ChatMessageResponse.model_validate(assistant_message),
        query_type=reply.query_type,
        search_performed=reply.search_performed,
        detected_topic=reply.detected_topic,
        sources=reply.sources,
    )
