"""
LLM provider access.

Talks to any OpenAI-compatible ``/chat/completions`` endpoint (Groq by
default).  Every generation flow in the app goes through ``LLMService`` so
concurrency, timeouts and JSON repair live in one place.

Public API
----------
LLMService.complete(messages, ...)       -> str
LLMService.complete_json(messages, ...)  -> Any
LLMService.check_health()                -> bool
build_user_content(text, image_data_uri) -> str | list
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Union

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

Message = Dict[str, Any]


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class LLMServiceError(Exception):
    """The provider could not produce a completion."""


class LLMResponseFormatError(LLMServiceError):
    """The provider answered, but not in the expected structure."""


# ---------------------------------------------------------------------------
# Message helpers
# ---------------------------------------------------------------------------

def build_user_content(
    text: str,
    image_data_uri: Optional[str] = None,
) -> Union[str, List[Dict[str, Any]]]:
    """
    Build the ``content`` of a user message.

    Plain text stays a string; with an image attached the multimodal list
    form is returned so the vision model can see it.
    """
    if not image_data_uri:
        return text
    parts: List[Dict[str, Any]] = []
    if text:
        parts.append({"type": "text", "text": text})
    parts.append({"type": "image_url", "image_url": {"url": image_data_uri}})
    return parts


def _has_image(messages: List[Message]) -> bool:
    for message in messages:
        content = message.get("content")
        if isinstance(content, list) and any(
            isinstance(part, dict) and part.get("type") == "image_url" for part in content
        ):
            return True
    return False


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class LLMService:
    """
    Chat-completions client.

    Limits concurrency to MAX_CONCURRENT simultaneous calls.
    Retries JSON parsing up to MAX_JSON_RETRIES times.
    """

    MAX_CONCURRENT: int = 4
    MAX_JSON_RETRIES: int = 2

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        vision_model: Optional[str] = None,
        timeout: Optional[float] = None,
    ) -> None:
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.api_key = settings.LLM_API_KEY if api_key is None else api_key
        self.model = model or settings.LLM_MODEL
        self.vision_model = vision_model or settings.LLM_VISION_MODEL
        self.timeout_seconds = float(timeout or settings.LLM_TIMEOUT)
        self.timeout = httpx.Timeout(self.timeout_seconds, connect=10.0)
        self._semaphore = asyncio.Semaphore(self.MAX_CONCURRENT)

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Core caller
    # ------------------------------------------------------------------

    async def complete(
        self,
        messages: List[Message],
        *,
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        json_mode: bool = False,
    ) -> str:
        """
        POST to ``/chat/completions`` and return the first choice's text.

        Raises ``LLMServiceError`` on a missing key, timeout, connection
        failure, non-200 response or empty completion.
        """
        if not self.configured:
            raise LLMServiceError("LLM_API_KEY is not configured")

        if model is None:
            model = self.vision_model if _has_image(messages) else self.model

        payload: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": settings.LLM_TEMPERATURE if temperature is None else temperature,
            "max_tokens": max_tokens or settings.LLM_MAX_TOKENS,
        }
        if json_mode:
            payload["response_format"] = {"type": "json_object"}

        async with self._semaphore:
            try:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await client.post(
                        f"{self.base_url}/chat/completions",
                        headers=self._headers(),
                        json=payload,
                    )
            except httpx.TimeoutException as exc:
                logger.error("complete: request timed out after %.0f s", self.timeout_seconds)
                raise LLMServiceError(
                    f"LLM request timed out after {self.timeout_seconds:.0f}s"
                ) from exc
            except httpx.HTTPError as exc:
                logger.error("complete: connection error - %s", exc)
                raise LLMServiceError(f"LLM connection error: {exc}") from exc

        if resp.status_code != 200:
            logger.error(
                "complete: provider returned HTTP %d: %s",
                resp.status_code,
                resp.text[:300],
            )
            raise LLMServiceError(f"LLM provider returned HTTP {resp.status_code}")

        try:
            content = resp.json()["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise LLMServiceError("LLM provider returned a malformed completion") from exc

        if not content or not str(content).strip():
            raise LLMServiceError("LLM provider returned an empty completion")

        return str(content).strip()

    async def complete_json(
        self,
        messages: List[Message],
        *,
        retry_messages: Optional[List[Message]] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
    ) -> Any:
        """
        Call the LLM in JSON mode and parse the response.

        On a parse failure the call is repeated (with *retry_messages* when
        given) up to MAX_JSON_RETRIES times.  Transport errors propagate
        immediately; retrying a timeout would most likely time out again.
        """
        attempts = [messages] + [retry_messages or messages] * (self.MAX_JSON_RETRIES - 1)

        for attempt, current in enumerate(attempts, start=1):
            response_text = await self.complete(
                current,
                model=model,
                temperature=settings.LLM_JSON_TEMPERATURE,
                max_tokens=max_tokens,
                json_mode=True,
            )

            success, parsed = self.parse_json_robust(response_text)
            if success:
                if attempt > 1:
                    logger.info("complete_json: JSON parsed successfully on attempt %d", attempt)
                return parsed

            if attempt < self.MAX_JSON_RETRIES:
                logger.warning(
                    "complete_json: JSON parse failed on attempt %d/%d, retrying",
                    attempt,
                    self.MAX_JSON_RETRIES,
                )

        logger.error("complete_json: all %d JSON parse attempts failed", self.MAX_JSON_RETRIES)
        raise LLMResponseFormatError("LLM response could not be parsed as JSON")

    async def check_health(self) -> bool:
        """Return True when the provider answers ``GET /models`` with 200."""
        if not self.configured:
            return False
        try:
            async with httpx.AsyncClient(timeout=httpx.Timeout(5.0)) as client:
                resp = await client.get(f"{self.base_url}/models", headers=self._headers())
            return resp.status_code == 200
        except httpx.HTTPError as exc:
            logger.warning("check_health: provider unreachable - %s", exc)
            return False

    # ------------------------------------------------------------------
    # Robust JSON parsing
    # ------------------------------------------------------------------

    @classmethod
    def parse_json_robust(cls, response: str) -> Tuple[bool, Any]:
        """
        Try multiple strategies to parse JSON from potentially messy LLM output.

        Handles:
        - Markdown code fences (```json ... ```)
        - Trailing commas before ] or }
        - Python-style True / False / None
        - Surrounding prose (finds the first balanced [...] or {...} block)
        - Missing closing bracket

        Returns ``(success, parsed_value)``.
        """
        if not response:
            return False, None

        text = response.strip()

        ok, val = cls._try_json(text)
        if ok:
            return True, val

        stripped = cls._strip_code_fences(text)
        if stripped != text:
            ok, val = cls._try_json(stripped)
            if ok:
                return True, val
            text = stripped

        fixed = cls._fix_json_issues(text)
        ok, val = cls._try_json(fixed)
        if ok:
            return True, val

        for bracket_pair in (("{", "}"), ("[", "]")):
            fragment = cls._extract_json_structure(text, *bracket_pair)
            if fragment:
                ok, val = cls._try_json(fragment)
                if ok:
                    return True, val
                ok, val = cls._try_json(cls._fix_json_issues(fragment))
                if ok:
                    return True, val

        for suffix in ("]", "}", "}]", "]}"):
            ok, val = cls._try_json(fixed + suffix)
            if ok:
                logger.debug("parse_json_robust: recovered with suffix %r", suffix)
                return True, val

        logger.warning("parse_json_robust: all strategies failed. Preview: %s", response[:400])
        return False, None

    @staticmethod
    def _try_json(text: str) -> Tuple[bool, Any]:
        try:
            return True, json.loads(text)
        except (json.JSONDecodeError, ValueError):
            return False, None

    @staticmethod
    def _strip_code_fences(text: str) -> str:
        text = re.sub(r"^```(?:json|javascript|text)?\s*\n?", "", text, flags=re.IGNORECASE)
        text = re.sub(r"\n?```\s*$", "", text)
        return text.strip()

    @staticmethod
    def _fix_json_issues(text: str) -> str:
        """Repair the most common JSON mangling patterns from LLMs."""
        text = re.sub(r",(\s*[}\]])", r"\1", text)
        text = re.sub(r"\bTrue\b", "true", text)
        text = re.sub(r"\bFalse\b", "false", text)
        text = re.sub(r"\bNone\b", "null", text)
        return text.strip()

    @staticmethod
    def _extract_json_structure(text: str, open_b: str, close_b: str) -> str:
        """
        Find the first complete balanced open_b ... close_b structure in *text*.
        Returns the matched fragment, or empty string if not found.
        """
        start = text.find(open_b)
        if start == -1:
            return ""

        depth = 0
        in_string = False
        escape_next = False

        for i, ch in enumerate(text[start:], start=start):
            if escape_next:
                escape_next = False
                continue
            if ch == "\\" and in_string:
                escape_next = True
                continue
            if ch == '"':
                in_string = not in_string
                continue
            if in_string:
                continue
            if ch == open_b:
                depth += 1
            elif ch == close_b:
                depth -= 1
                if depth == 0:
                    return text[start : i + 1]
        return ""
