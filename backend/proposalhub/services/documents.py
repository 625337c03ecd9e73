from __future__ import annotations

import io
import re

import httpx
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ..observability.logging import get_logger

log = get_logger("documents")

MAX_FETCH_BYTES = 20 * 1024 * 1024


class DocumentError(ValueError):
    pass


def pdf_page_texts(pdf_bytes: bytes) -> list[str]:
    """Text of each page, in order; pages without extractable text yield ""."""
    try:
        reader = PdfReader(io.BytesIO(pdf_bytes))
    except PdfReadError as e:
        raise DocumentError("File is not a readable PDF") from e

    out: list[str] = []
    for i, page in enumerate(reader.pages):
        try:
            out.append((page.extract_text() or "").strip())
        except Exception:
            log.warning("pdf_page_text_failed", page=i + 1)
            out.append("")
    return out


def pdf_text(pdf_bytes: bytes) -> str:
    return "\n".join(p for p in pdf_page_texts(pdf_bytes) if p).strip()


def html_to_text(html: str) -> str:
    text = (
        html.replace("<br>", "\n")
        .replace("<br/>", "\n")
        .replace("<br />", "\n")
        .replace("</p>", "\n")
    )
    text = re.sub(r"<script[\s\S]*?</script>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<style[\s\S]*?</style>", " ", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    return re.sub(r"\s+", " ", text).strip()


def text_from_bytes(data: bytes, *, content_type: str | None, file_name: str | None = None) -> str:
    ct = (content_type or "").split(";")[0].strip().lower()
    name = (file_name or "").lower()
    if ct == "application/pdf" or name.endswith(".pdf"):
        return pdf_text(data)
    decoded = data.decode("utf-8", errors="ignore")
    if ct == "text/html" or name.endswith((".html", ".htm")):
        return html_to_text(decoded)
    if ct.startswith("text/") or name.endswith((".txt", ".md", ".markdown", ".csv")):
        return decoded.strip()
    raise DocumentError("Unsupported file type; upload a PDF, HTML or text file")


def _http_client(timeout: float) -> httpx.Client:
    return httpx.Client(follow_redirects=True, timeout=timeout)


def text_from_url(url: str, *, timeout: float = 30.0) -> str:
    """Fetch a page or document and return its text.

    Raises DocumentError for non-http(s) URLs, fetch failures (transport errors
    and non-2xx responses) and bodies over MAX_FETCH_BYTES; the size limit is
    enforced while streaming.
    """
    u = str(url or "").strip()
    if not u.lower().startswith(("http://", "https://")):
        raise DocumentError("url must be an http(s) URL")
    try:
        with _http_client(timeout) as client, client.stream("GET", u) as r:
            r.raise_for_status()
            ct = r.headers.get("content-type") or "text/html"
            buf = bytearray()
            for chunk in r.iter_bytes():
                buf.extend(chunk)
                if len(buf) > MAX_FETCH_BYTES:
                    raise DocumentError("Document is too large")
    except httpx.HTTPError as e:
        log.info("document_fetch_failed", url=u, error=str(e)[:300])
        raise DocumentError("Could not fetch url") from e
    return text_from_bytes(bytes(buf), content_type=ct, file_name=u.split("?")[0])
