"""
Common utility functions and helpers.
"""
from typing import Iterable, List, Optional
import re

_REFERENCES_RE = re.compile(r"refer[êe]ncias|bibliografia|references|bibliography", re.IGNORECASE)
_ABSTRACT_RE = re.compile(r"resumo|abstract", re.IGNORECASE)
_CONCLUSION_RE = re.compile(r"conclus[ãa]o|considera[çc][õo]es finais|conclusion", re.IGNORECASE)
_INTRODUCTION_RE = re.compile(r"introdu[çc][ãa]o|introduction", re.IGNORECASE)
_YEAR_RE = re.compile(r"\b(1[5-9]\d{2}|2\d{3})\b")
_MD_IMAGE_RE = re.compile(r"(!\[[^\]]*\]\()([^)\s?#]+)[?#][^)\s]*(\s+\"[^\"]*\")?\)")


def excerpt(text: str, length: int, suffix: str = "...") -> str:
    """
    Return the first *length* characters of *text*, plus *suffix* when
    anything was cut off.

    Args:
        text: Source text
        length: Number of characters to keep
        suffix: Marker appended when the text was truncated

    Returns:
        The excerpt
    """
    text = text or ""
    if len(text) <= length:
        return text
    return text[:length] + suffix


def strip_url_params(url: str) -> str:
    """Drop the query string and fragment from *url*."""
    return re.split(r"[?#]", url, maxsplit=1)[0]


def strip_markdown_image_params(markdown: str) -> str:
    """
    Remove query strings from the URLs of Markdown images.

    Resized-image parameters appended by CDNs break some renderers, so
    ``![a](https://x/img.png?w=300)`` becomes ``![a](https://x/img.png)``.
    """
    return _MD_IMAGE_RE.sub(lambda m: f"{m.group(1)}{m.group(2)}{m.group(3) or ''})", markdown)


def extract_year(value: Optional[str]) -> Optional[str]:
    """
    Extract a four-digit year from a date-like string.

    Args:
        value: e.g. ``"2023-05-10T12:00:00Z"`` or ``"maio de 2021"``

    Returns:
        The year as a string, or None if none is found
    """
    if not value:
        return None
    match = _YEAR_RE.search(value)
    return match.group(1) if match else None


def is_references_title(title: str) -> bool:
    return bool(_REFERENCES_RE.search(title))


def is_abstract_title(title: str) -> bool:
    return bool(_ABSTRACT_RE.search(title))


def is_conclusion_title(title: str) -> bool:
    return bool(_CONCLUSION_RE.search(title))


def classify_section_title(title: str) -> str:
    """
    Decide which generator writes a section, based on its title.

    Returns:
        One of ``"introduction"``, ``"conclusion"``, ``"bibliography"``
        or ``"development"``
    """
    if _INTRODUCTION_RE.search(title):
        return "introduction"
    if is_conclusion_title(title):
        return "conclusion"
    if is_references_title(title):
        return "bibliography"
    return "development"


def clean_string_list(values: Optional[Iterable]) -> List[str]:
    """Coerce an LLM-provided list into non-empty, stripped strings."""
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    cleaned = []
    for value in values:
        if value is None:
            continue
        text = str(value).strip()
        if text:
            cleaned.append(text)
    return cleaned


def empty_to_none(value) -> Optional[str]:
    """Return a stripped string, or None for empty / missing values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
