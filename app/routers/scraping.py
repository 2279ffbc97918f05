"""
Scraping endpoint.

``{"query": ..., "all_pages": bool}`` returns search results,
``{"url": ...}`` returns the scraped page.
"""
import logging
from typing import List, Union

from fastapi import APIRouter, Depends, HTTPException, status

from app.dependencies.services import get_scraper
from app.models.schemas import PageContent, ScrapeRequest, SearchResult
from app.services.scraper import WebScraper

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/scrape", response_model=Union[List[SearchResult], PageContent])
async def scrape(
    body: ScrapeRequest,
    scraper: WebScraper = Depends(get_scraper),
) -> Union[List[SearchResult], PageContent]:
    if body.query and body.query.strip():
        return await scraper.search(body.query.strip(), all_pages=body.all_pages)

    if body.url and body.url.strip():
        url = body.url.strip()
        if not url.startswith(("http://", "https://")):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="url must be an absolute http(s) URL.",
            )
        return await scraper.scrape_page(url)

    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail="Provide either 'query' or 'url'.",
    )
