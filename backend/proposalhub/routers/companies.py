from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, HTTPException, Request
from starlette.responses import Response

from ..auth.tenant import TenantContext
from ..services import companies_repo
from .deps import current_tenant, require_fields

router = APIRouter(tags=["companies"])


def _company_for(ctx: TenantContext, company_id: str) -> dict[str, Any]:
    company = companies_repo.get_company(company_id)
    if not company or company.get("ownerOrganizationId") != ctx.organization_id:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


def _client_for(ctx: TenantContext, client_id: str) -> dict[str, Any]:
    client = companies_repo.get_client(client_id)
    if not client:
        raise HTTPException(status_code=404, detail="Client not found")
    company = companies_repo.get_company(str(client.get("companyId") or ""))
    if not company or company.get("ownerOrganizationId") != ctx.organization_id:
        raise HTTPException(status_code=404, detail="Client not found")
    return client


# --- companies ---


@router.get("/companies")
def list_companies(request: Request):
    ctx = current_tenant(request)
    return companies_repo.list_companies(ctx.organization_id)


@router.post("/companies", status_code=201)
def create_company(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    require_fields(body, "name")
    return companies_repo.create_company(body, owner_organization_id=ctx.organization_id)


@router.get("/companies/search")
def search_companies(request: Request, q: str = ""):
    ctx = current_tenant(request)
    if not q.strip():
        return []
    return companies_repo.search_companies(q, owner_organization_id=ctx.organization_id)


@router.get("/companies/{company_id}")
def get_company(request: Request, company_id: str):
    ctx = current_tenant(request)
    return _company_for(ctx, company_id)


@router.patch("/companies/{company_id}")
def patch_company(request: Request, company_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    existing = _company_for(ctx, company_id)
    if "name" in body and not str(body.get("name") or "").strip():
        raise HTTPException(status_code=400, detail="name cannot be empty")
    return companies_repo.update_company(company_id, existing, body)


@router.delete("/companies/{company_id}", status_code=204)
def delete_company(request: Request, company_id: str):
    ctx = current_tenant(request)
    _company_for(ctx, company_id)
    companies_repo.delete_company_cascade(company_id)
    return Response(status_code=204)


# --- clients ---


@router.get("/clients")
def list_clients(request: Request, companyId: str = ""):
    ctx = current_tenant(request)
    if not companyId.strip():
        raise HTTPException(status_code=400, detail="companyId is required")
    _company_for(ctx, companyId.strip())
    return companies_repo.list_clients_for_company(companyId.strip())


@router.post("/clients", status_code=201)
def create_client(request: Request, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    require_fields(body, "name", "companyId")
    company_id = str(body.get("companyId")).strip()
    _company_for(ctx, company_id)
    return companies_repo.create_client(body, company_id=company_id)


@router.get("/clients/search")
def search_clients(request: Request, q: str = "", companyId: str = ""):
    ctx = current_tenant(request)
    if not companyId.strip():
        raise HTTPException(status_code=400, detail="companyId is required")
    _company_for(ctx, companyId.strip())
    if not q.strip():
        return []
    return companies_repo.search_clients(q, company_id=companyId.strip())


@router.get("/clients/{client_id}")
def get_client(request: Request, client_id: str):
    ctx = current_tenant(request)
    return _client_for(ctx, client_id)


@router.patch("/clients/{client_id}")
def patch_client(request: Request, client_id: str, body: dict = Body(default_factory=dict)):
    ctx = current_tenant(request)
    existing = _client_for(ctx, client_id)
    if "name" in body and not str(body.get("name") or "").strip():
        raise HTTPException(status_code=400, detail="name cannot be empty")
    return companies_repo.update_client(client_id, existing, body)


@router.delete("/clients/{client_id}", status_code=204)
def delete_client(request: Request, client_id: str):
    ctx = current_tenant(request)
    existing = _client_for(ctx, client_id)
    companies_repo.delete_client(existing)
    return Response(status_code=204)
