from fastapi import APIRouter, Depends, HTTPException, UploadFile, File, Form, Query, status
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session
from typing import List, Optional
import logging

from ..database import get_db
from ..auth import get_current_user
from ..exceptions import PracticeError
from ..models.enums import DocumentStatus, DocumentType
from ..models.schemas import (
    DocumentResponse, DocumentUpdate, DocumentStatusUpdate, DocumentVersionResponse, StorageStats,
    DocumentSearch, SearchResponse, SearchStats
)
from ..services.document_service import document_service
from ..services.search_service import search_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/documents", tags=["Documents"])

def _parse_tags(tags: Optional[str]) -> List[str]:
    return [tag.strip() for tag in (tags or "").split(",") if tag.strip()]

@router.post("/upload", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_document(
    file: UploadFile = File(...),
    document_type: DocumentType = Form(DocumentType.OTHER),
    case_id: Optional[int] = Form(None),
    client_id: Optional[int] = Form(None),
    category: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    tags: Optional[str] = Form(None),
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Upload a document, extract its text and index its metadata."""
    try:
        file_content = await file.read()
        return await document_service.upload(
            db,
            current_user,
            filename=file.filename,
            file_content=file_content,
            content_type=file.content_type,
            document_type=document_type,
            case_id=case_id,
            client_id=client_id,
            category=category,
            description=description,
            tags=_parse_tags(tags),
        )

    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error uploading document {file.filename}: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Document upload failed"
        )

@router.get("", response_model=List[DocumentResponse])
def list_documents(
    case_id: Optional[int] = None,
    client_id: Optional[int] = None,
    document_type: Optional[DocumentType] = None,
    status_filter: Optional[DocumentStatus] = Query(None, alias="status"),
    latest_only: bool = True,
    skip: int = 0,
    limit: int = 100,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return document_service.list_documents(
        db, current_user.firm_id, case_id=case_id, client_id=client_id, document_type=document_type,
        status=status_filter, latest_only=latest_only, skip=skip, limit=limit
    )

@router.get("/stats", response_model=StorageStats)
def storage_stats(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return document_service.storage_stats(db, current_user.firm_id)

@router.post("/search", response_model=SearchResponse)
def search_documents(
    search_request: DocumentSearch,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Keyword search over the firm's latest documents."""
    try:
        filters = search_request.model_dump(exclude={"query", "limit"})
        return search_service.search(db, current_user, search_request.query, filters=filters,
                                     limit=search_request.limit)
    except (HTTPException, PracticeError):
        raise
    except Exception as e:
        logger.error(f"Error searching documents: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Search failed"
        )

@router.get("/search/suggestions", response_model=List[str])
def search_suggestions(
    prefix: str = Query(..., min_length=1),
    limit: int = Query(10, ge=1, le=50),
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return search_service.suggestions(db, current_user.firm_id, prefix, limit=limit)

@router.get("/search/stats", response_model=SearchStats)
def search_stats(
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return search_service.search_stats(db, current_user.firm_id)

@router.get("/{document_id}", response_model=DocumentResponse)
def get_document(
    document_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return document_service.get_document(db, current_user.firm_id, document_id)

@router.put("/{document_id}", response_model=DocumentResponse)
def update_document(
    document_id: int,
    update: DocumentUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return document_service.update_document(
        db, current_user.firm_id, document_id, update.model_dump(exclude_unset=True)
    )

@router.post("/{document_id}/status", response_model=DocumentResponse)
def update_document_status(
    document_id: int,
    update: DocumentStatusUpdate,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return document_service.update_status(db, current_user, document_id, update.status)

@router.post("/{document_id}/versions", response_model=DocumentResponse, status_code=status.HTTP_201_CREATED)
async def upload_new_version(
    document_id: int,
    file: UploadFile = File(...),
    changes: Optional[str] = Form(None),
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    file_content = await file.read()
    return await document_service.upload_new_version(
        db, current_user, document_id, filename=file.filename, file_content=file_content,
        content_type=file.content_type, changes=changes
    )

@router.get("/{document_id}/versions", response_model=List[DocumentVersionResponse])
def document_versions(
    document_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    return document_service.versions(db, current_user.firm_id, document_id)

@router.get("/{document_id}/download")
def download_document(
    document_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    path, original_name, mime_type = document_service.download(db, current_user.firm_id, document_id)
    return FileResponse(path, filename=original_name, media_type=mime_type or "application/octet-stream")

@router.delete("/{document_id}")
def delete_document(
    document_id: int,
    current_user = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    document_service.delete_document(db, current_user.firm_id, document_id)
    return {"message": "Document deleted successfully"}
