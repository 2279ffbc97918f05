"""
Web search and article scraping.

Fetches the configured site's search listing and article pages with httpx
and parses them with BeautifulSoup.  Selectors and URL templates come from
settings so another content site can be targeted without code changes.

The scraper never raises to callers: a failed search returns whatever was
collected so far, a failed page returns ``PageContent(error=True)``.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import quote_plus, urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from app.config import settings
from app.models.schemas import ImageContent, PageContent, SearchResult

logger = logging.getLogger(__name__)

ARTICLE_PARAGRAPH_SELECTORS = (
    ".main-content article p, .main-content .content p, article .content p, article p"
)
# fallback paragraphs inside these are page chrome, not article text
EXCLUDED_TAGS = frozenset({"header", "nav", "footer", "script", "style"})
EXCLUDED_CLASSES = frozenset({"sidebar", "footer", "ad-unit"})
ARTICLE_IMAGE_SELECTORS = (
    ".main-content article img, .main-content .content img, article .content img, article img"
)
AUTHOR_SELECTORS = (
    ".author-article--b__info__name",
    ".autor, .author, .author-name",
    "[rel=author]",
)


class WebScraper:
    """Search listing + article page scraper for a single content site."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        max_pages: Optional[int] = None,
    ) -> None:
        self.base_url = (base_url or settings.SCRAPER_BASE_URL).rstrip("/")
        self.timeout = httpx.Timeout(float(timeout or settings.SCRAPER_TIMEOUT))
        self.max_pages = max_pages or settings.SCRAPER_MAX_PAGES
        self.headers = {
            "User-Agent": settings.SCRAPER_USER_AGENT,
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
            "Accept-Language": "pt-BR,pt;q=0.9,en-US;q=0.8,en;q=0.7",
        }

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search_url(self, query: str, page: int = 1) -> str:
        template = settings.SCRAPER_SEARCH_PATH if page == 1 else settings.SCRAPER_PAGE_PATH
        return self.base_url + template.format(query=quote_plus(query), page=page)

    async def search(self, query: str, all_pages: bool = False) -> List[SearchResult]:
        """
        Return search hits for *query*, de-duplicated by URL.

        Crawls up to ``max_pages`` listing pages when *all_pages* is set,
        stopping early at the first page that adds nothing new.
        """
        results: List[SearchResult] = []
        seen_urls = set()
        last_page = self.max_pages if all_pages else 1

        async with httpx.AsyncClient(
            timeout=self.timeout, headers=self.headers, follow_redirects=True
        ) as client:
            for page in range(1, last_page + 1):
                url = self.search_url(query, page)
                try:
                    resp = await client.get(url)
                    resp.raise_for_status()
                except httpx.HTTPError as exc:
                    logger.warning("search: page %d for %r failed - %s", page, query, exc)
                    break

                page_results = self.parse_search_results(resp.text)
                new_results = [r for r in page_results if r.url not in seen_urls]
                if not new_results:
                    logger.debug("search: page %d for %r had no new results", page, query)
                    break

                for result in new_results:
                    seen_urls.add(result.url)
                    results.append(result)

        logger.info("search: %d results for %r", len(results), query)
        return results

    def parse_search_results(self, html: str) -> List[SearchResult]:
        soup = BeautifulSoup(html, "html.parser")
        results: List[SearchResult] = []
        seen = set()

        for link in soup.select(settings.SCRAPER_RESULT_SELECTOR):
            href = (link.get("href") or "").strip()
            if not href:
                continue

            title_el = link.select_one(settings.SCRAPER_RESULT_TITLE_SELECTOR)
            title = title_el.get_text(" ", strip=True) if title_el else ""
            if not title:
                title = (link.get("title") or "").strip()
            if not title:
                continue

            url = urljoin(self.base_url + "/", href)
            if url in seen:
                continue
            seen.add(url)
            results.append(SearchResult(title=title, url=url))

        return results

    # ------------------------------------------------------------------
    # Article pages
    # ------------------------------------------------------------------

    async def scrape_page(self, url: str) -> PageContent:
        """Fetch and parse one article page; never raises."""
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, headers=self.headers, follow_redirects=True
            ) as client:
                resp = await client.get(url)
                resp.raise_for_status()
            return self.parse_page(url, resp.text)
        except Exception as exc:
            logger.warning("scrape_page: %s failed - %s", url, exc)
            return PageContent(url=url, error=True)

    def parse_page(self, url: str, html: str) -> PageContent:
        soup = BeautifulSoup(html, "html.parser")

        h1 = soup.find("h1")
        title = h1.get_text(" ", strip=True) if h1 else ""

        json_ld = self._json_ld_objects(soup)

        return PageContent(
            url=url,
            title=title,
            content=self._extract_paragraphs(soup),
            images=self._extract_images(soup, url),
            author=self._extract_author(soup, json_ld),
            published_at=self._extract_published_at(soup, json_ld),
        )

    def _extract_paragraphs(self, soup: BeautifulSoup) -> str:
        paragraphs = [p.get_text(" ", strip=True) for p in soup.select(ARTICLE_PARAGRAPH_SELECTORS)]
        paragraphs = [p for p in paragraphs if p]

        if not paragraphs:
            for p in soup.find_all("p"):
                if self._inside_excluded(p):
                    continue
                text = p.get_text(" ", strip=True)
                if text:
                    paragraphs.append(text)

        return "\n\n".join(paragraphs)

    @staticmethod
    def _inside_excluded(element: Tag) -> bool:
        for parent in element.parents:
            if not isinstance(parent, Tag):
                continue
            if parent.name in EXCLUDED_TAGS:
                return True
            if EXCLUDED_CLASSES.intersection(parent.get("class") or []):
                return True
        return False

    def _extract_images(self, soup: BeautifulSoup, page_url: str) -> List[ImageContent]:
        images: List[ImageContent] = []
        seen = set()

        def add(img: Tag, caption: str) -> None:
            src = (img.get("src") or img.get("data-src") or "").strip()
            if not src or src.startswith("data:image/svg"):
                return
            src = urljoin(page_url, src)
            if src in seen:
                return
            seen.add(src)
            images.append(ImageContent(src=src, caption=caption))

        for figure in soup.find_all("figure"):
            img = figure.find("img")
            if img is None:
                continue
            figcaption = figure.find("figcaption")
            caption = figcaption.get_text(" ", strip=True) if figcaption else ""
            add(img, caption or (img.get("alt") or "").strip())

        for img in soup.select(ARTICLE_IMAGE_SELECTORS):
            add(img, (img.get("alt") or "").strip())

        return images

    @staticmethod
    def _json_ld_objects(soup: BeautifulSoup) -> List[Dict[str, Any]]:
        objects: List[Dict[str, Any]] = []
        for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
            try:
                data = json.loads(script.string or "")
            except (json.JSONDecodeError, TypeError):
                continue
            candidates = data if isinstance(data, list) else [data]
            for item in candidates:
                if not isinstance(item, dict):
                    continue
                objects.append(item)
                graph = item.get("@graph")
                if isinstance(graph, list):
                    objects.extend(g for g in graph if isinstance(g, dict))
        return objects

    @staticmethod
    def _extract_author(soup: BeautifulSoup, json_ld: List[Dict[str, Any]]) -> str:
        for selector in AUTHOR_SELECTORS:
            el = soup.select_one(selector)
            if el:
                text = el.get_text(" ", strip=True)
                if text:
                    return text

        for item in json_ld:
            author = item.get("author")
            if isinstance(author, list) and author:
                author = author[0]
            if isinstance(author, dict) and author.get("name"):
                return str(author["name"]).strip()
            if isinstance(author, str) and author.strip():
                return author.strip()
        return ""

    @staticmethod
    def _extract_published_at(
        soup: BeautifulSoup, json_ld: List[Dict[str, Any]]
    ) -> Optional[str]:
        meta = soup.find("meta", attrs={"property": "article:published_time"})
        if meta and meta.get("content"):
            return meta["content"].strip()

        for item in json_ld:
            if item.get("datePublished"):
                return str(item["datePublished"]).strip()
        return None
