import io

import pytest
from docx import Document as DocxDocument

from docchat.errors import ExtractionFailed, UnsupportedFormat
from docchat.services.extract import extract_text


def _docx_bytes() -> bytes:
    doc = DocxDocument()
    doc.add_paragraph("Master services agreement")
    doc.add_paragraph("")
    doc.add_paragraph("The supplier delivers monthly reports.")
    table = doc.add_table(rows=1, cols=2)
    table.rows[0].cells[0].text = "Fee"
    table.rows[0].cells[1].text = "100 EUR"
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


async def test_plain_utf8_text():
    assert await extract_text("notes.txt", "Grüße aus Köln".encode("utf-8")) == "Grüße aus Köln"


async def test_utf8_bom_is_dropped():
    assert await extract_text("notes.txt", b"\xef\xbb\xbfhello") == "hello"


async def test_non_utf8_text_is_decoded():
    raw = ("Invoice total for the consulting work delivered in March. " * 20 + "Caf\xe9").encode("cp1252")
    text = await extract_text("invoice.txt", raw)
    assert text.startswith("Invoice total for the consulting work")


async def test_docx_paragraphs_and_tables():
    text = await extract_text("agreement.docx", _docx_bytes())
    assert text == "Master services agreement\n\nThe supplier delivers monthly reports.\n\nFee | 100 EUR"


@pytest.mark.parametrize("name", ["broken.pdf", "broken.docx"])
async def test_corrupt_files_fail_extraction(name):
    with pytest.raises(ExtractionFailed):
        await extract_text(name, b"this is not really a document")


async def test_unknown_format_is_rejected():
    with pytest.raises(UnsupportedFormat):
        await extract_text("archive.zip", b"PK\x03\x04")
