"""
Markdown -> DOCX export endpoint.
"""
import logging

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import Response

from app.config import settings
from app.models.schemas import DocxExportRequest
from app.services.docx_export import DOCX_MEDIA_TYPE, markdown_to_docx

logger = logging.getLogger(__name__)

router = APIRouter()


def docx_response(content: bytes, filename: str = settings.DOCX_FILENAME) -> Response:
    return Response(
        content=content,
        media_type=DOCX_MEDIA_TYPE,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/generate-docx")
async def generate_docx(body: DocxExportRequest) -> Response:
    """Return the Markdown content as a .docx attachment."""
    if not isinstance(body.markdown_content, str) or not body.markdown_content.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Markdown content is missing or invalid.",
        )

    content = await markdown_to_docx(body.markdown_content)
    logger.info("Generated DOCX (%d bytes)", len(content))
    return docx_response(content)
