from __future__ import annotations

from io import BytesIO
from pathlib import Path

from bs4 import BeautifulSoup
from docx import Document as DocxDocument
from pypdf import PdfReader

MAX_UPLOAD_BYTES = 10 * 1024 * 1024

_TEXT_TYPES = {
    "text/plain": "TXT",
    "text/markdown": "MARKDOWN",
    "application/json": "JSON",
}
_TEXT_EXTENSIONS = {".txt": "TXT", ".md": "MARKDOWN", ".markdown": "MARKDOWN", ".json": "JSON"}

PDF_TYPES = {"application/pdf"}
HTML_TYPES = {"text/html", "application/xhtml+xml"}
DOCX_TYPES = {
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/msword",
}


class UnsupportedFileType(ValueError):
    pass


def html_to_text(html: str) -> str:
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    return " ".join(soup.get_text(separator=" ").split())


def extract_text_from_upload(
    *,
    filename: str,
    content_type: str | None,
    raw: bytes,
) -> tuple[str, str]:
    """
    Returns (document_type, extracted_text) where document_type is one of
    TXT, MARKDOWN, JSON, HTML, PDF, DOCX.
    Raises UnsupportedFileType for unknown formats and ValueError for
    files that cannot be parsed or contain no text.
    """
    ext = Path(filename or "").suffix.lower()
    ctype = (content_type or "").split(";")[0].strip().lower()

    if ctype in _TEXT_TYPES or ext in _TEXT_EXTENSIONS:
        text = raw.decode("utf-8", errors="ignore").strip()
        if not text:
            raise ValueError("Uploaded text file is empty.")
        return (_TEXT_EXTENSIONS.get(ext) or _TEXT_TYPES[ctype], text)

    if ctype in HTML_TYPES or ext in {".html", ".htm"}:
        text = html_to_text(raw.decode("utf-8", errors="ignore"))
        if not text:
            raise ValueError("HTML file contains no text.")
        return ("HTML", text)

    if ctype in PDF_TYPES or ext == ".pdf":
        try:
            reader = PdfReader(BytesIO(raw))
            parts = [(page.extract_text() or "").strip() for page in reader.pages]
            text = "\n\n".join(p for p in parts if p).strip()
        except Exception as exc:
            raise ValueError(f"Could not parse PDF: {exc}") from exc
        if not text:
            raise ValueError("PDF contains no extractable text.")
        return ("PDF", text)

    if ctype in DOCX_TYPES or ext == ".docx":
        try:
            doc = DocxDocument(BytesIO(raw))
            lines = [p.text.strip() for p in doc.paragraphs if p.text and p.text.strip()]
            text = "\n".join(lines).strip()
        except Exception as exc:
            raise ValueError(f"Could not parse DOCX: {exc}") from exc
        if not text:
            raise ValueError("DOCX contains no extractable text.")
        return ("DOCX", text)

    raise UnsupportedFileType(
        f"Unsupported file type: {content_type or '(unknown)'}; supported: txt, md, json, html, pdf, docx."
    )
