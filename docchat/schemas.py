
from datetime import datetime
from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Literal, Optional
from uuid import UUID

class DocumentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    owner_id: str
    name: str
    size_bytes: int
    format: str
    status: str
    chunk_count: int
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

class DocumentStatusOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    status: str
    chunk_count: int
    error_message: Optional[str] = None

class DocumentList(BaseModel):
    documents: List[DocumentOut]

ReviewStatus = Literal["draft", "review", "approved", "archived"]

class DocumentMetadataIn(BaseModel):
    model_config = ConfigDict(extra="allow")

    category: Optional[str] = None
    tags: Optional[List[str]] = None
    description: Optional[str] = None
    author: Optional[str] = None
    status: Optional[ReviewStatus] = None

class MetadataUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    category: Optional[str] = None
    tags: Optional[List[str]] = None
    description: Optional[str] = None
    author: Optional[str] = None
    status: Optional[ReviewStatus] = None

class MetadataSearchRequest(BaseModel):
    metadata: DocumentMetadataIn
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)

class AdvancedSearchRequest(BaseModel):
    query: Optional[str] = Field(None, max_length=100)
    file_type: Optional[str] = None
    min_size: Optional[int] = Field(None, ge=0)
    max_size: Optional[int] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    status: Optional[ReviewStatus] = None
    limit: int = Field(20, ge=1, le=100)
    offset: int = Field(0, ge=0)

class SearchResults(BaseModel):
    results: List[DocumentOut]
    total: int
    has_more: bool

class UploadResultOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    file_name: str
    success: bool
    document: Optional[DocumentOut] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

class BatchUploadOut(BaseModel):
    results: List[UploadResultOut]
    uploaded: int
    failed: int

class FileDetailsOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    document_id: UUID
    name: str
    file_path: str
    public_url: str
    size_bytes: int

class HistoryMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str

class ChatRequest(BaseModel):
    message: str = Field(min_length=1)
    chat_history: Optional[List[HistoryMessage]] = None

class ChatResponse(BaseModel):
    response: str
    chunks_used: int
    is_fallback: bool = False
    model: str = "unknown"

class ChatTurnOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    document_id: UUID
    user_message: str
    assistant_response: str
    metadata: Dict[str, Any] = Field(default_factory=dict, validation_alias=AliasChoices("meta", "metadata"))
    created_at: Optional[datetime] = None

class ChatHistory(BaseModel):
    chat_history: List[ChatTurnOut]

class ErrorResponse(BaseModel):
    error: str
    detail: str
