"""Error types for ingestion and chat. Each carries a ``kind`` and a user-facing message."""

from enum import Enum
from typing import List, Optional


class ErrorKind(str, Enum):
    UNSUPPORTED_FORMAT = "UnsupportedFormat"
    FILE_TOO_LARGE = "FileTooLarge"
    EMPTY_FILE = "EmptyFile"
    EXTRACTION_FAILED = "ExtractionFailed"
    EMPTY_CONTENT = "EmptyContent"
    EMBEDDING_SERVICE = "EmbeddingServiceError"
    VECTOR_STORE = "VectorStoreError"
    GENERATION_FAILED = "GenerationFailed"
    STORAGE = "StorageError"
    DOCUMENT_NOT_READY = "DocumentNotReady"
    NOT_FOUND = "NotFound"
    CONFLICT = "Conflict"
    TIMEOUT = "Timeout"
    INTERNAL = "Internal"


VALIDATION_KINDS = frozenset({
    ErrorKind.UNSUPPORTED_FORMAT,
    ErrorKind.FILE_TOO_LARGE,
    ErrorKind.EMPTY_FILE,
})


class DocChatError(Exception):
    kind: ErrorKind = ErrorKind.INTERNAL
    default_user_message = "Something went wrong while handling the document."

    def __init__(self, message: str = "", user_message: Optional[str] = None) -> None:
        self.message = message or self.default_user_message
        self.user_message = user_message or self.default_user_message
        # Set by the ingestion pipeline once the failure is written to the record.
        self.recorded = False
        super().__init__(self.message)

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.message}"


class UnsupportedFormat(DocChatError):
    kind = ErrorKind.UNSUPPORTED_FORMAT
    default_user_message = "This file type is not supported. Upload a PDF, DOCX or TXT file."


class FileTooLarge(DocChatError):
    kind = ErrorKind.FILE_TOO_LARGE
    default_user_message = "The file is too large to process."


class EmptyFile(DocChatError):
    kind = ErrorKind.EMPTY_FILE
    default_user_message = "The file is empty."


class ExtractionFailed(DocChatError):
    kind = ErrorKind.EXTRACTION_FAILED
    default_user_message = "Text could not be extracted from this file. Check that it is not corrupted or scanned."


class EmptyContent(DocChatError):
    kind = ErrorKind.EMPTY_CONTENT
    default_user_message = "The document does not contain enough text to analyse."


class EmbeddingServiceError(DocChatError):
    kind = ErrorKind.EMBEDDING_SERVICE
    default_user_message = "The embedding service is unavailable. Please retry later."


class VectorStoreError(DocChatError):
    kind = ErrorKind.VECTOR_STORE
    default_user_message = "The search index is unavailable. Please retry later."

    def __init__(
        self,
        message: str = "",
        user_message: Optional[str] = None,
        failed_batches: Optional[List[int]] = None,
    ) -> None:
        super().__init__(message, user_message)
        self.failed_batches = list(failed_batches or [])


class GenerationFailed(DocChatError):
    kind = ErrorKind.GENERATION_FAILED
    default_user_message = "The assistant could not generate an answer. Please retry later."


class StorageError(DocChatError):
    kind = ErrorKind.STORAGE
    default_user_message = "The file could not be read from storage."


class DocumentNotReady(DocChatError):
    kind = ErrorKind.DOCUMENT_NOT_READY
    default_user_message = "The document is still being processed. Please wait until processing is complete."


class DocumentNotFound(DocChatError):
    kind = ErrorKind.NOT_FOUND
    default_user_message = "Document not found or you don't have access to it."


class IngestionInProgress(DocChatError):
    kind = ErrorKind.CONFLICT
    default_user_message = "The document is already being processed."


class IngestionTimeout(DocChatError):
    kind = ErrorKind.TIMEOUT
    default_user_message = "Processing took too long and was stopped. Please retry."


class ProcessingFailed(DocChatError):
    kind = ErrorKind.INTERNAL
    default_user_message = "Processing failed because of an unexpected error. Please retry."
