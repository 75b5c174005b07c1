from typing import Iterable
from ..errors import EmptyFile, FileTooLarge, UnsupportedFormat
from ..models import DocumentFormat

DEFAULT_ALLOWED = frozenset({"pdf", "docx", "txt"})
DEFAULT_MAX_SIZE = 10 * 1024 * 1024


def file_extension(file_name: str) -> str:
    name = (file_name or "").strip().lower()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[-1]


def detect_format(file_name: str) -> DocumentFormat:
    try:
        return DocumentFormat(file_extension(file_name))
    except ValueError:
        return DocumentFormat.UNSUPPORTED


class FileValidator:
    """Upload policy check. Pure: it never touches storage or the database."""

    def __init__(self, max_size: int = DEFAULT_MAX_SIZE, allowed: Iterable[str] = DEFAULT_ALLOWED) -> None:
        self.max_size = max_size
        self.allowed = frozenset(a.lower() for a in allowed)

    def validate(self, file_name: str, size_bytes: int) -> DocumentFormat:
        ext = file_extension(file_name)
        fmt = detect_format(file_name)
        if ext not in self.allowed or fmt is DocumentFormat.UNSUPPORTED:
            raise UnsupportedFormat(f"Unsupported file type: {ext or '<none>'} ({file_name})")
        if size_bytes <= 0:
            raise EmptyFile(f"{file_name} is empty")
        if size_bytes > self.max_size:
            limit_mb = self.max_size / (1024 * 1024)
            raise FileTooLarge(
                f"{file_name} is {size_bytes} bytes, limit is {self.max_size}",
                user_message=f"The file is too large. Maximum size is {limit_mb:g} MB.",
            )
        return fmt
