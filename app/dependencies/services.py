"""
Service providers for FastAPI routes.

Routes receive their services through ``Depends`` so tests can swap them
with ``app.dependency_overrides``.
"""
from __future__ import annotations

from functools import lru_cache

from app.services.academic_writer import AcademicWriter
from app.services.chat_service import ChatService
from app.services.llm_client import LLMService
from app.services.scraper import WebScraper


@lru_cache
def get_llm_service() -> LLMService:
    return LLMService()


def get_scraper() -> WebScraper:
    return WebScraper()


def get_writer() -> AcademicWriter:
    return AcademicWriter(get_llm_service())


def get_chat_service() -> ChatService:
    llm = get_llm_service()
    return ChatService(llm=llm, scraper=WebScraper(), writer=AcademicWriter(llm))
