from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, File, Form, HTTPException, Request, UploadFile
from starlette.responses import Response

from ..ai.content import analyze_opportunity
from ..auth.tenant import TenantContext
from ..observability.logging import get_logger
from ..services import opportunities_repo, s3_assets
from ..services.documents import DocumentError, text_from_bytes, text_from_url
from .deps import current_tenant, upstream_errors

router = APIRouter(tags=["opportunities"])

log = get_logger("opportunities")

MAX_FILE_BYTES = 25 * 1024 * 1024


def _opportunity_for(ctx: TenantContext, opportunity_id: str) -> dict[str, Any]:
    opp = opportunities_repo.get_opportunity(opportunity_id)
    if not opp or opp.get("organizationId") != ctx.organization_id:
        raise HTTPException(status_code=404, detail="Opportunity not found")
    return opp


def _list(request: Request):
    ctx = current_tenant(request)
    return opportunities_repo.list_opportunities_for_organization(ctx.organization_id)


def _create(
    request: Request,
    method: str,
    url: str | None,
    file: UploadFile | None,
    title: str | None,
):
    ctx = current_tenant(request)
    method = (method or "").strip().lower()

    if method == "url":
        u = (url or "").strip()
        if not u:
            raise HTTPException(status_code=400, detail="url is required")
        try:
            text = text_from_url(u)
        except DocumentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if not text:
            raise HTTPException(status_code=400, detail="No text could be extracted from the page")
        with upstream_errors():
            extracted = analyze_opportunity(text, source_name=u)
        return opportunities_repo.create_opportunity(
            organization_id=ctx.organization_id,
            created_by=ctx.contact_id,
            source="url",
            extracted=extracted,
            source_url=u,
        )

    if method == "file":
        if file is None:
            raise HTTPException(status_code=400, detail="file is required")
        data = file.file.read()
        if not data:
            raise HTTPException(status_code=400, detail="File is empty")
        if len(data) > MAX_FILE_BYTES:
            raise HTTPException(status_code=400, detail="File is too large")
        file_name = file.filename or "document"
        try:
            text = text_from_bytes(data, content_type=file.content_type, file_name=file_name)
        except DocumentError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e

        key = s3_assets.make_opportunity_file_key(organization_id=ctx.organization_id, file_name=file_name)
        content_type = s3_assets.content_type_for(s3_assets.file_extension(file_name), file.content_type)
        stored = s3_assets.store_bytes(key=key, data=data, content_type=content_type)
        with upstream_errors():
            extracted = analyze_opportunity(text, source_name=file_name) if text else {"title": file_name}
        return opportunities_repo.create_opportunity(
            organization_id=ctx.organization_id,
            created_by=ctx.contact_id,
            source="file",
            extracted=extracted,
            source_file={"key": stored["key"], "url": stored["url"], "fileName": file_name, "size": len(data)},
        )

    if method == "manual":
        if not (title or "").strip():
            raise HTTPException(status_code=400, detail="title is required")
        return opportunities_repo.create_opportunity(
            organization_id=ctx.organization_id,
            created_by=ctx.contact_id,
            source="manual",
            extracted={"title": title.strip()},
        )

    raise HTTPException(status_code=400, detail="method must be one of url, file, manual")


@router.get("/opportunities")
def list_opportunities(request: Request):
    return _list(request)


@router.post("/opportunities", status_code=201)
def create_opportunity(
    request: Request,
    method: str = Form("manual"),
    url: str | None = Form(None),
    title: str | None = Form(None),
    file: UploadFile | None = File(default=None),
):
    return _create(request, method, url, file, title)


@router.get("/rfps")
def list_rfps(request: Request):
    return _list(request)


@router.post("/rfps", status_code=201)
def create_rfp(
    request: Request,
    method: str = Form("manual"),
    url: str | None = Form(None),
    title: str | None = Form(None),
    file: UploadFile | None = File(default=None),
):
    return _create(request, method, url, file, title)


@router.get("/opportunities/{opportunity_id}")
def get_opportunity(request: Request, opportunity_id: str):
    ctx = current_tenant(request)
    return _opportunity_for(ctx, opportunity_id)


@router.patch("/opportunities/{opportunity_id}")
def patch_opportunity(request: Request, opportunity_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    existing = _opportunity_for(ctx, opportunity_id)
    try:
        return opportunities_repo.update_opportunity(opportunity_id, existing, body)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@router.delete("/opportunities/{opportunity_id}", status_code=204)
def delete_opportunity(request: Request, opportunity_id: str):
    ctx = current_tenant(request)
    existing = _opportunity_for(ctx, opportunity_id)
    opportunities_repo.delete_opportunity(opportunity_id)
    source_key = (existing.get("sourceFile") or {}).get("key")
    if source_key:
        s3_assets.delete_object(key=str(source_key))
    return Response(status_code=204)
