"""Document to text conversion for job descriptions and CVs."""
from typing import Optional

import fitz
import structlog

from errors import ExtractionFailed, UnsupportedType

logger = structlog.get_logger(__name__)

PDF = "application/pdf"
PLAIN_TEXT = "text/plain"
SUPPORTED_TYPES = (PDF, PLAIN_TEXT)


def normalize_content_type(content_type: Optional[str]) -> str:
    """'text/plain; charset=utf-8' -> 'text/plain'."""
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def is_supported(content_type: Optional[str]) -> bool:
    return normalize_content_type(content_type) in SUPPORTED_TYPES


def _pdf_text(content: bytes) -> str:
    with fitz.open(stream=content, filetype="pdf") as doc:
        return "\n".join(page.get_text() for page in doc)


def extract_text(content: bytes, content_type: Optional[str], filename: Optional[str] = None) -> str:
    """Extract text from a PDF or plain-text document.

    PDF text is trimmed; plain text is returned as decoded. Parser errors are
    wrapped in ExtractionFailed, which keeps the original error on ``cause``.
    """
    media_type = normalize_content_type(content_type)

    if media_type == PDF:
        try:
            return _pdf_text(content).strip()
        except Exception as exc:
            logger.warning("PDF parsing failed", filename=filename, error=str(exc))
            raise ExtractionFailed(filename, cause=exc) from exc

    if media_type == PLAIN_TEXT:
        try:
            return content.decode("utf-8")
        except UnicodeDecodeError as exc:
            logger.warning("Text file is not valid UTF-8", filename=filename)
            raise ExtractionFailed(filename, cause=exc) from exc

    raise UnsupportedType(content_type)
