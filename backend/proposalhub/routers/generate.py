from __future__ import annotations

from fastapi import APIRouter, Body, HTTPException, Request

from ..ai import content as ai_content
from ..integrations import logos
from ..observability.logging import get_logger
from ..services import s3_assets
from .deps import current_tenant, require_fields, upstream_errors

router = APIRouter(tags=["ai"])

log = get_logger("generate")


@router.post("/generate")
def generate(request: Request, body: dict = Body(default_factory=dict)):
    current_tenant(request)
    kind = str(body.get("type") or "chat").strip().lower()
    if kind not in ai_content.GENERATE_TYPES:
        raise HTTPException(status_code=400, detail="Invalid type specified")
    require_fields(body, "message")
    message = str(body.get("message"))
    section = str(body.get("section") or "").strip()
    context = body.get("context")

    with upstream_errors():
        if kind == "organization":
            return {"organizationInfo": ai_content.extract_organization_info(message)}
        if kind == "contact":
            return {"contactInfo": ai_content.extract_contact_info(message)}
        if kind == "draft":
            return {"content": ai_content.generate_draft(message, section or "proposal")}
        if kind == "improve":
            if not section:
                raise HTTPException(status_code=400, detail="section is required for improve")
            return ai_content.generate_section_content(message, section)
        return {"content": ai_content.process_chat(message, str(context) if context else None)}


@router.post("/logo-search")
def logo_search(request: Request, body: dict = Body(default_factory=dict)):
    current_tenant(request)
    require_fields(body, "query")
    query = str(body.get("query")).strip()
    found = logos.find_logo(query, str(body.get("domain") or "").strip() or None)
    if found is None:
        raise HTTPException(status_code=404, detail="No logo found")

    stored = s3_assets.store_bytes(
        key=s3_assets.make_logo_key(found.ext), data=found.data, content_type=s3_assets.content_type_for(found.ext)
    )
    log.info("logo_found", query=query, provider=found.provider, key=stored["key"])
    return {"url": stored["url"], "provider": found.provider, "key": stored["key"]}
