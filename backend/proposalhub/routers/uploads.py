from __future__ import annotations

import httpx
from fastapi import APIRouter, Body, File, Form, HTTPException, Request, UploadFile

from ..observability.logging import get_logger
from ..services import proposals_repo, s3_assets
from ..services.documents import DocumentError, pdf_page_texts
from ..services.images import ImageProcessingError, crop_to_logo, fetch_image_bytes
from .deps import current_tenant

router = APIRouter(tags=["uploads"])

log = get_logger("uploads")

MAX_IMAGE_BYTES = 10 * 1024 * 1024
MAX_PDF_BYTES = 50 * 1024 * 1024


# Upload handlers are plain functions so FastAPI runs them in its threadpool;
# they read the spooled upload synchronously.


@router.post("/upload")
def upload_image(request: Request, file: UploadFile = File(...)):
    current_tenant(request)
    ext = s3_assets.file_extension(file.filename)
    if ext not in s3_assets.IMAGE_EXTENSIONS:
        raise HTTPException(
            status_code=400, detail=f"File type not allowed; use one of {', '.join(s3_assets.IMAGE_EXTENSIONS)}"
        )
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(data) > MAX_IMAGE_BYTES:
        raise HTTPException(status_code=400, detail="File is too large")

    stored = s3_assets.store_bytes(
        key=s3_assets.make_logo_key(ext), data=data, content_type=s3_assets.content_type_for(ext, file.content_type)
    )
    log.info("image_uploaded", key=stored["key"], size=len(data))
    return stored


@router.post("/crop-image")
def crop_image(request: Request, body: dict = Body(default_factory=dict)):
    current_tenant(request)
    image_url = str(body.get("imageUrl") or "").strip()
    crop = body.get("crop")
    if not image_url or not isinstance(crop, dict):
        raise HTTPException(status_code=400, detail="imageUrl and crop are required")

    try:
        png = crop_to_logo(fetch_image_bytes(image_url), crop)
    except ImageProcessingError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    except httpx.HTTPError as e:
        raise HTTPException(status_code=400, detail="Could not fetch image") from e

    return s3_assets.store_bytes(key=s3_assets.make_logo_key("png"), data=png, content_type="image/png")


@router.post("/upload-pdf")
def upload_pdf(
    request: Request,
    file: UploadFile = File(...),
    proposalId: str | None = Form(None),
):
    ctx = current_tenant(request)
    proposal_id = (proposalId or "").strip() or None
    if proposal_id:
        proposal = proposals_repo.get_proposal(proposal_id)
        if not proposal or proposal.get("ownerOrganizationId") != ctx.organization_id:
            raise HTTPException(status_code=404, detail="Proposal not found")

    if s3_assets.file_extension(file.filename) != "pdf" and (file.content_type or "") != "application/pdf":
        raise HTTPException(status_code=400, detail="Only PDF files are allowed")
    data = file.file.read()
    if not data:
        raise HTTPException(status_code=400, detail="File is empty")
    if len(data) > MAX_PDF_BYTES:
        raise HTTPException(status_code=400, detail="File is too large")

    try:
        pages = pdf_page_texts(data)
    except DocumentError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e

    stored = s3_assets.store_bytes(
        key=s3_assets.make_proposal_document_key(proposal_id=proposal_id), data=data, content_type="application/pdf"
    )
    log.info("pdf_uploaded", key=stored["key"], pages=len(pages), proposal_id=proposal_id)
    return {
        **stored,
        "pageCount": len(pages),
        "pages": [{"page": i + 1, "text": text} for i, text in enumerate(pages)],
    }
