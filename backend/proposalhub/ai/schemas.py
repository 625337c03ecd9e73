from __future__ import annotations

from pydantic import BaseModel, Field


class OrganizationInfoAI(BaseModel):
    name: str | None = None
    website: str | None = None
    sector: str | None = None
    size: str | None = None
    background: str | None = None
    primaryColor: str | None = None
    secondaryColor: str | None = None


class ContactInfoAI(BaseModel):
    name: str | None = None
    email: str | None = None
    linkedIn: str | None = None
    phone: str | None = None
    role: str | None = None
    background: str | None = None


class CredentialsAI(BaseModel):
    degrees: list[str] = Field(default_factory=list)
    pastRoles: list[str] = Field(default_factory=list)
    certifications: list[str] = Field(default_factory=list)


class ProfileCleanupAI(BaseModel):
    """Scraped profile text normalized into the contact's enrichment fields."""

    background: str = ""
    title: str = ""
    skills: list[str] = Field(default_factory=list)
    credentials: CredentialsAI = Field(default_factory=CredentialsAI)


class OpportunitySectionAI(BaseModel):
    title: str = ""
    content: str = ""


class OpportunityAnalysisAI(BaseModel):
    title: str = ""
    summary: str = ""
    issuer: str = ""
    dueDate: str = ""
    budget: str = ""
    requirements: list[str] = Field(default_factory=list)
    evaluationCriteria: list[str] = Field(default_factory=list)
    sections: list[OpportunitySectionAI] = Field(default_factory=list)


class AnalyzedSectionAI(BaseModel):
    id: str = ""
    title: str = ""
    content: str = ""
    confidence: float = 0.0
    sourceSection: str | None = None
    mergeType: str | None = None


class PotentialSectionAI(BaseModel):
    sectionId: str = ""
    relevance: float = 0.0


class UnmatchedContentAI(BaseModel):
    content: str = ""
    potentialSections: list[PotentialSectionAI] = Field(default_factory=list)


class DocumentAnalysisAI(BaseModel):
    """Document content sorted into a proposal's existing sections."""

    sections: list[AnalyzedSectionAI] = Field(default_factory=list)
    unmatched: list[UnmatchedContentAI] = Field(default_factory=list)
