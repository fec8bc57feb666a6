from unittest.mock import patch

import fitz
import pytest

from errors import ExtractionFailed, UnsupportedType
from extraction import extract_text, is_supported, normalize_content_type


def make_pdf(*pages: str) -> bytes:
    doc = fitz.open()
    for text in pages:
        page = doc.new_page()
        page.insert_text((72, 72), text)
    data = doc.tobytes()
    doc.close()
    return data


@pytest.mark.parametrize(
    "content_type, expected",
    [
        ("application/pdf", True),
        ("text/plain", True),
        ("text/plain; charset=utf-8", True),
        ("Application/PDF", True),
        ("application/vnd.openxmlformats-officedocument.wordprocessingml.document", False),
        ("image/png", False),
        (None, False),
    ],
)
def test_is_supported(content_type, expected):
    assert is_supported(content_type) is expected


def test_normalize_content_type_drops_parameters():
    assert normalize_content_type("text/plain; charset=utf-8") == "text/plain"
    assert normalize_content_type(None) == ""


def test_plain_text_is_decoded_as_utf8():
    content = "Senior Python engineer\nFastAPI, SQLAlchemy, café".encode("utf-8")

    assert extract_text(content, "text/plain", "cv.txt") == "Senior Python engineer\nFastAPI, SQLAlchemy, café"


def test_pdf_text_is_extracted_and_trimmed():
    pdf = make_pdf("Backend Developer", "Five years of Python")

    text = extract_text(pdf, "application/pdf", "cv.pdf")

    assert "Backend Developer" in text
    assert "Five years of Python" in text
    assert text == text.strip()


def test_extraction_is_idempotent():
    pdf = make_pdf("Data Engineer with Spark experience")

    assert extract_text(pdf, "application/pdf") == extract_text(pdf, "application/pdf")


def test_pdf_parser_errors_are_wrapped_in_extraction_failed():
    parser_error = RuntimeError("cannot find startxref")
    with patch("extraction._pdf_text", side_effect=parser_error):
        with pytest.raises(ExtractionFailed) as exc_info:
            extract_text(b"%PDF-1.4 truncated", "application/pdf", "broken.pdf")

    assert exc_info.value.filename == "broken.pdf"
    assert exc_info.value.cause is parser_error
    assert exc_info.value.message == "Failed to extract text from broken.pdf"


def test_invalid_utf8_text_is_wrapped_in_extraction_failed():
    with pytest.raises(ExtractionFailed) as exc_info:
        extract_text(b"\xff\xfe\xfa not utf-8", "text/plain", "latin.txt")

    assert isinstance(exc_info.value.cause, UnicodeDecodeError)


def test_unsupported_type_is_rejected():
    with pytest.raises(UnsupportedType) as exc_info:
        extract_text(b"PK\x03\x04", "application/zip", "cv.zip")

    assert exc_info.value.status_code == 400
    assert "Only PDF and TXT files are allowed" in exc_info.value.message
