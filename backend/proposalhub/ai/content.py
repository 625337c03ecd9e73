from __future__ import annotations

import re
from typing import Any

from ..settings import settings
from .client import call_json, call_text
from .schemas import (
    ContactInfoAI,
    DocumentAnalysisAI,
    OpportunityAnalysisAI,
    OrganizationInfoAI,
    ProfileCleanupAI,
)

GENERATE_TYPES = ("chat", "draft", "improve", "organization", "contact")

_FORMAT_RULES = (
    "IMPORTANT:\n"
    "- Format your response in Markdown\n"
    "- Use appropriate markdown syntax for headings (##, ###), lists (-, *), emphasis (**bold**, *italic*), etc.\n"
    "- Do not include any meta-commentary about the changes\n"
    "- Do not include section titles or headers\n"
    "- Do not include any explanatory text at the end\n"
    "- Focus purely on the content itself\n"
    "- Be specific and avoid generic or placeholder content\n"
    "- Base your content only on the provided context and information"
)


def clean_generated(content: str, section_title: str | None = None) -> str:
    """Strip the wrappers models like to add around section content."""
    out = str(content or "")
    if section_title:
        out = re.sub(rf"^#+ .*{re.escape(section_title)}.*$", "", out, flags=re.IGNORECASE | re.MULTILINE)
    out = out.strip()
    out = re.sub(r"^(?:revised|updated|improved|new)\s+", "", out, flags=re.IGNORECASE)
    out = re.sub(r"\n-{3,}\n[\s\S]*$", "", out)
    m = re.match(r"^```(?:markdown)?\n([\s\S]*)\n```$", out.strip())
    if m:
        out = m.group(1)
    return out.strip()


def generate_section_content(message: str, section: str) -> dict[str, Any]:
    out, meta = call_text(
        purpose="generate_content",
        messages=[
            {
                "role": "system",
                "content": (
                    "You are a proposal writing expert. The user wants to generate content for the "
                    f"{section} section of their proposal.\n{_FORMAT_RULES}"
                ),
            },
            {"role": "user", "content": message},
        ],
        min_chars=settings.ai_min_content_chars,
    )
    return {"content": clean_generated(out, section), "modelUsed": meta.model}


def _context_from(section_id: str | None, sections: list[dict[str, Any]]) -> str:
    parts = []
    for s in sections or []:
        content = s.get("content")
        if s.get("id") == section_id or not isinstance(content, str) or not content.strip():
            continue
        parts.append(f"{s.get('title') or 'Untitled'}:\n{content}")
    return "\n\n".join(parts)


def generate_improvement(
    section: dict[str, Any],
    context_sections: list[dict[str, Any]] | None = None,
    instructions: str | None = None,
) -> dict[str, Any]:
    """Improve (or write from scratch) one section using the other sections as context."""
    title = str(section.get("title") or "section")
    current = section.get("content") if isinstance(section.get("content"), str) else ""
    context = _context_from(section.get("id"), context_sections or [])

    if current.strip():
        message = f"Please improve the following {title.lower()} section.\n\nCurrent content:\n{current}\n\n"
        system = "Improve the provided content while maintaining its core message and adding value."
    else:
        message = (
            f"Please generate content for the {title.lower()} section based on the following context and requirements:\n\n"
            "Requirements:\n"
            "- The content should be specific and detailed\n"
            "- Avoid generic or placeholder content\n"
            "- Focus on creating value-driven, persuasive content\n"
            "- Ensure the content aligns with the overall proposal narrative\n\n"
        )
        system = "Generate specific, valuable content based on the provided context and requirements."
    if instructions:
        message += f"Additional instructions:\n{instructions}\n\n"
    if context:
        message += f"Context from other sections:\n{context}"

    out, meta = call_text(
        purpose="improve_section",
        messages=[
            {"role": "system", "content": f"You are a proposal writing expert. {system}\n\n{_FORMAT_RULES}"},
            {"role": "user", "content": message},
        ],
        min_chars=settings.ai_min_content_chars,
    )
    return {
        "content": clean_generated(out, title),
        "modelUsed": meta.model,
        "context": [context] if context else None,
    }


def generate_draft(message: str, section: str) -> str:
    out, _ = call_text(
        purpose="generate_content",
        messages=[
            {
                "role": "system",
                "content": (
                    f"You are a professional proposal writer. You will draft content for the {section} section of a proposal.\n"
                    "- Write in a professional, clear, and engaging style\n"
                    "- Do not include the section title in the content\n"
                    "- Format the content in Markdown\n"
                    "- Do not include any meta-commentary or notes about the content\n"
                    "- Focus on being concise but comprehensive"
                ),
            },
            {"role": "user", "content": message},
        ],
    )
    return out.strip()


def process_chat(message: str, context: str | None = None) -> str:
    system = (
        "You are a helpful proposal writing assistant. Help users draft and improve their proposals "
        "by providing suggestions and guidance."
    )
    messages = [{"role": "system", "content": system}]
    if context:
        messages.append({"role": "system", "content": f"Proposal context:\n{context}"})
    messages.append({"role": "user", "content": message})
    out, _ = call_text(purpose="chat", messages=messages, temperature=0.6)
    return out


def extract_organization_info(message: str) -> dict[str, Any]:
    parsed, _ = call_json(
        purpose="extract",
        response_model=OrganizationInfoAI,
        messages=[
            {
                "role": "system",
                "content": (
                    "You are a business research expert. Extract and summarize key information about organizations. "
                    "Return JSON with the fields: name, website, sector, size, background, primaryColor, secondaryColor. "
                    "Keep the background concise but informative. For colors, return hex codes matching the "
                    "organization's brand identity, or null for both when unsure."
                ),
            },
            {"role": "user", "content": message},
        ],
    )
    return parsed.model_dump()


def extract_contact_info(message: str) -> dict[str, Any]:
    parsed, _ = call_json(
        purpose="extract",
        response_model=ContactInfoAI,
        messages=[
            {
                "role": "system",
                "content": (
                    "You are a professional networking expert. Extract and summarize key information about "
                    "professionals. Return JSON with the fields: name, email, linkedIn, phone, role, background. "
                    "Keep the background concise but informative."
                ),
            },
            {"role": "user", "content": message},
        ],
    )
    return parsed.model_dump()


def cleanup_profile(scraped: dict[str, Any]) -> dict[str, Any]:
    """Turn raw scraped profile text into background/title/skills/credentials."""
    lines = []
    for key in ("name", "headline", "about", "location"):
        if scraped.get(key):
            lines.append(f"{key}: {scraped[key]}")
    for key in ("experience", "education", "certifications", "skills"):
        items = scraped.get(key) or []
        if items:
            lines.append(f"{key}:\n" + "\n".join(f"- {x}" for x in items))

    parsed, _ = call_json(
        purpose="profile_cleanup",
        response_model=ProfileCleanupAI,
        messages=[
            {
                "role": "system",
                "content": (
                    "You clean up scraped professional profiles. Return JSON with: background (a concise third-person "
                    "professional summary), title (current job title), skills (list of short skill names), and "
                    "credentials {degrees, pastRoles, certifications} as lists of strings. Use only the given text."
                ),
            },
            {"role": "user", "content": "\n\n".join(lines) or "(empty profile)"},
        ],
    )
    return parsed.model_dump()


def analyze_opportunity(text: str, *, source_name: str) -> dict[str, Any]:
    parsed, _ = call_json(
        purpose="document_analysis",
        response_model=OpportunityAnalysisAI,
        messages=[
            {
                "role": "system",
                "content": (
                    "You analyze requests for proposals and business opportunities. Return JSON with: title, summary, "
                    "issuer, dueDate, budget, requirements (list), evaluationCriteria (list) and sections "
                    "(list of {title, content}) describing the document's main parts. Use empty values when unknown."
                ),
            },
            {"role": "user", "content": f"Source: {source_name}\n\n{text}"},
        ],
        max_tokens=2500,
        max_prompt_chars=120_000,
    )
    out = parsed.model_dump()
    if not out.get("title"):
        out["title"] = source_name[:300]
    return out


def analyze_document_sections(content: str, sections: list[dict[str, Any]], *, document_type: str) -> dict[str, Any]:
    """Match a document's content to the proposal's sections; content that fits none is returned as unmatched."""
    outline = "\n".join(f"- {s.get('id')}: {s.get('title') or 'Untitled'}" for s in sections)
    parsed, _ = call_json(
        purpose="document_analysis",
        response_model=DocumentAnalysisAI,
        messages=[
            {
                "role": "system",
                "content": (
                    "You map existing documents onto proposal sections. Return JSON with: sections (list of "
                    "{id, title, content, confidence, sourceSection, mergeType}) using only the section ids given, "
                    "where confidence is between 0 and 1 and mergeType is direct, partial or enhancement; and "
                    "unmatched (list of {content, potentialSections: [{sectionId, relevance}]}) for content that "
                    "fits no section. Keep the document's wording and format content as Markdown."
                ),
            },
            {
                "role": "user",
                "content": f"Proposal sections:\n{outline}\n\nDocument ({document_type}):\n{content}",
            },
        ],
        max_tokens=4000,
        max_prompt_chars=120_000,
    )
    known = {str(s.get("id")) for s in sections}
    out = parsed.model_dump()
    out["sections"] = [s for s in out["sections"] if s["id"] in known]
    for u in out["unmatched"]:
        u["potentialSections"] = [p for p in u["potentialSections"] if p["sectionId"] in known]
    return out
