from __future__ import annotations

from fastapi import APIRouter

from ..settings import settings

router = APIRouter()


@router.get("/", tags=["health"])
def root():
    return {
        "status": "ok",
        "message": "ProposalHub API",
        "environment": settings.normalized_environment,
        "dynamodb": "configured" if settings.ddb_table_name else "missing",
    }


@router.get("/health", tags=["health"])
def health():
    return {"status": "ok"}
