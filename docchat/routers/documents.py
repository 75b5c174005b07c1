from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, File, Query, UploadFile

from ..container import Services
from ..schemas import (
    AdvancedSearchRequest,
    BatchUploadOut,
    DocumentList,
    DocumentOut,
    DocumentStatusOut,
    ErrorResponse,
    FileDetailsOut,
    MetadataSearchRequest,
    MetadataUpdate,
    SearchResults,
    UploadResultOut,
)
from ..services.records import SearchPage
from .deps import current_owner, get_services

router = APIRouter(tags=["documents"], responses={404: {"model": ErrorResponse}})

@router.post("/documents/upload", response_model=DocumentOut, status_code=202)
async def upload_document(
    file: UploadFile = File(...),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    content = await file.read()
    doc = await services.documents.upload(owner_id, file.filename or "", content)
    return DocumentOut.model_validate(doc)

@router.post("/documents/upload/batch", response_model=BatchUploadOut, status_code=202)
async def upload_documents(
    files: List[UploadFile] = File(...),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    payload = [(f.filename or "", await f.read()) for f in files]
    results = await services.documents.upload_many(owner_id, payload)
    failed = sum(1 for r in results if not r.success)
    return BatchUploadOut(
        results=[UploadResultOut.model_validate(r) for r in results],
        uploaded=len(results) - failed,
        failed=failed,
    )

@router.get("/documents", response_model=DocumentList)
async def list_documents(owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    docs = await services.documents.list_documents(owner_id)
    return DocumentList(documents=[DocumentOut.model_validate(d) for d in docs])

def search_results(page: SearchPage) -> SearchResults:
    return SearchResults(
        results=[DocumentOut.model_validate(d) for d in page.results],
        total=page.total,
        has_more=page.has_more,
    )

@router.get("/documents/search", response_model=SearchResults)
async def search_documents(
    query: str = Query(..., min_length=1, max_length=100),
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    return search_results(await services.documents.search(owner_id, query, limit=limit, offset=offset))

@router.post("/documents/search/metadata", response_model=SearchResults)
async def search_by_metadata(
    body: MetadataSearchRequest,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    metadata = body.metadata.model_dump(exclude_none=True)
    page = await services.documents.search_by_metadata(owner_id, metadata, limit=body.limit, offset=body.offset)
    return search_results(page)

@router.post("/documents/search/advanced", response_model=SearchResults)
async def advanced_search(
    body: AdvancedSearchRequest,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    return search_results(await services.documents.advanced_search(owner_id, **body.model_dump()))

@router.get("/documents/recent", response_model=DocumentList)
async def recent_documents(
    days: int = Query(7, ge=1, le=365),
    limit: int = Query(10, ge=1, le=100),
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    docs = await services.documents.recent(owner_id, days=days, limit=limit)
    return DocumentList(documents=[DocumentOut.model_validate(d) for d in docs])

@router.get("/documents/{document_id}", response_model=DocumentOut)
async def get_document(document_id: UUID, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    return DocumentOut.model_validate(await services.documents.get(document_id, owner_id))

@router.get("/documents/{document_id}/status", response_model=DocumentStatusOut)
async def get_status(document_id: UUID, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    return DocumentStatusOut.model_validate(await services.documents.get_status(document_id, owner_id))

@router.get("/documents/{document_id}/file", response_model=FileDetailsOut)
async def get_file_details(document_id: UUID, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    return FileDetailsOut.model_validate(await services.documents.file_details(document_id, owner_id))

@router.patch("/documents/{document_id}/metadata", response_model=DocumentOut)
async def update_metadata(
    document_id: UUID,
    body: MetadataUpdate,
    owner_id: str = Depends(current_owner),
    services: Services = Depends(get_services),
):
    doc = await services.documents.update_metadata(document_id, owner_id, body.model_dump(exclude_unset=True))
    return DocumentOut.model_validate(doc)

@router.post("/documents/{document_id}/retry", response_model=DocumentStatusOut, status_code=202)
async def retry_document(document_id: UUID, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    doc = await services.documents.retry(document_id, owner_id)
    return DocumentStatusOut.model_validate(doc)

@router.delete("/documents/{document_id}", status_code=204)
async def delete_document(document_id: UUID, owner_id: str = Depends(current_owner), services: Services = Depends(get_services)):
    await services.documents.delete(document_id, owner_id)
