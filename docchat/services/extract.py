
import asyncio
import io
from pdfminer.high_level import extract_text as pdf_extract
from docx import Document as DocxDocument
import chardet
import structlog

from ..errors import ExtractionFailed, UnsupportedFormat
from ..models import DocumentFormat
from .validation import detect_format

logger = structlog.get_logger(logger_name=__name__)

SECTION_SEPARATOR = "\n\n"

def _join_sections(sections) -> str:
    return SECTION_SEPARATOR.join(s.strip() for s in sections if s and s.strip())

def _pdf_text(content: bytes) -> str:
    # pdfminer separates pages with form feeds
    with io.BytesIO(content) as buf:
        return _join_sections(pdf_extract(buf).split("\f"))

def _docx_text(content: bytes) -> str:
    with io.BytesIO(content) as buf:
        doc = DocxDocument(buf)
        sections = [p.text for p in doc.paragraphs]
        for table in doc.tables:
            for row in table.rows:
                sections.append(" | ".join(cell.text.strip() for cell in row.cells))
    return _join_sections(sections)

def _plain_text(content: bytes) -> str:
    try:
        return content.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass
    enc = chardet.detect(content).get("encoding")
    if not enc:
        raise ExtractionFailed("Text file is not valid UTF-8 and its encoding could not be detected")
    logger.info("text_encoding_detected", encoding=enc)
    try:
        return content.decode(enc)
    except (UnicodeDecodeError, LookupError) as e:
        raise ExtractionFailed(f"Could not decode text file as {enc}: {e}") from e

async def extract_text(filename: str, content: bytes) -> str:
    """Return the document body as text.

    Unknown or unparseable formats raise instead of producing placeholder text.
    """
    fmt = detect_format(filename)
    if fmt is DocumentFormat.TXT:
        return _plain_text(content)
    if fmt is DocumentFormat.UNSUPPORTED:
        raise UnsupportedFormat(f"No text extractor for {filename}")

    parser = _pdf_text if fmt is DocumentFormat.PDF else _docx_text
    try:
        return await asyncio.to_thread(parser, content)
    except Exception as e:
        logger.warning("text_extraction_failed", filename=filename, format=fmt.value, error=str(e))
        raise ExtractionFailed(f"Failed to extract text from {fmt.value} file {filename}: {e}") from e
