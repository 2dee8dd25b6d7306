import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..config import settings
from ..exceptions import NotFoundError, PayloadTooLargeError, TransitionError, ValidationError
from ..models.database import Case, Client, Document, DocumentVersion, User
from ..models.enums import DocumentStatus, DocumentType
from .document_processor import document_processor

logger = logging.getLogger(__name__)

STATUS_FLOW = [
    DocumentStatus.DRAFT.value,
    DocumentStatus.REVIEW.value,
    DocumentStatus.APPROVED.value,
    DocumentStatus.SIGNED.value,
    DocumentStatus.FILED.value,
]


def can_change_status(current: str, target: str) -> bool:
    if current == target:
        return False
    if target == DocumentStatus.ARCHIVED.value:
        return current != DocumentStatus.ARCHIVED.value
    if current == DocumentStatus.REVIEW.value and target == DocumentStatus.DRAFT.value:
        return True
    if current in STATUS_FLOW and target in STATUS_FLOW:
        return STATUS_FLOW.index(target) == STATUS_FLOW.index(current) + 1
    return False


class DocumentService:
    """Stored documents, their versions and extracted content."""

    def _check_links(self, db: Session, firm_id: int, case_id: Optional[int], client_id: Optional[int]):
        if case_id is not None and db.query(Case).filter(Case.id == case_id, Case.firm_id == firm_id).first() is None:
            raise NotFoundError("Case not found")
        if client_id is not None and db.query(Client).filter(
                Client.id == client_id, Client.firm_id == firm_id).first() is None:
            raise NotFoundError("Client not found")

    async def _store(self, firm_id: int, filename: str, content_type: Optional[str],
                     file_content: bytes) -> Dict[str, Any]:
        max_size = settings.max_upload_size_mb * 1024 * 1024
        if len(file_content) > max_size:
            raise PayloadTooLargeError(f"File exceeds the {settings.max_upload_size_mb} MB upload limit")
        if not file_content:
            raise ValidationError("Uploaded file is empty")

        file_format, mime_type = document_processor.detect_file_format(filename, content_type)
        if file_format is None:
            raise ValidationError(f"Unsupported file format: {filename}")

        file_path, stored_name = await document_processor.save_file(file_content, filename, firm_id)
        text, ocr_status = await document_processor.extract_text(file_path, file_format)

        return {
            "filename": stored_name,
            "original_name": filename,
            "path": str(file_path),
            "size": len(file_content),
            "mime_type": mime_type,
            "file_format": file_format,
            "extracted_text": text,
            "ocr_status": ocr_status,
            "extracted_metadata": document_processor.extract_metadata(text, file_format, len(file_content)),
            "content_hash": document_processor.content_hash(file_content),
        }

    async def upload(
        self,
        db: Session,
        user: User,
        filename: str,
        file_content: bytes,
        content_type: Optional[str] = None,
        document_type: DocumentType = DocumentType.OTHER,
        case_id: Optional[int] = None,
        client_id: Optional[int] = None,
        category: Optional[str] = None,
        description: Optional[str] = None,
        tags: Optional[List[str]] = None,
    ) -> Document:
        self._check_links(db, user.firm_id, case_id, client_id)
        stored = await self._store(user.firm_id, filename, content_type, file_content)

        try:
            document = Document(
                firm_id=user.firm_id,
                document_type=DocumentType(document_type).value,
                status=DocumentStatus.DRAFT.value,
                category=category,
                description=description,
                tags=tags or [],
                version=1,
                is_latest=True,
                case_id=case_id,
                client_id=client_id,
                uploaded_by_id=user.id,
                **stored
            )
            db.add(document)
            db.flush()
            db.add(DocumentVersion(document_id=document.id, version=1, changes="Initial upload",
                                   created_by_id=user.id))
            db.commit()
            db.refresh(document)
            logger.info(f"Uploaded document {document.id} '{filename}' ({document.file_format}) "
                        f"to firm {user.firm_id}")
            return document

        except Exception as e:
            logger.error(f"Error saving document {filename}: {str(e)}")
            db.rollback()
            document_processor.delete_file(stored["path"])
            raise

    async def upload_new_version(
        self,
        db: Session,
        user: User,
        document_id: int,
        filename: str,
        file_content: bytes,
        content_type: Optional[str] = None,
        changes: Optional[str] = None,
    ) -> Document:
        current = self.get_document(db, user.firm_id, document_id)
        root_id = current.parent_id or current.id
        family = self._family(db, user.firm_id, root_id)
        latest = max(family, key=lambda doc: doc.version)

        stored = await self._store(user.firm_id, filename, content_type, file_content)
        try:
            for doc in family:
                doc.is_latest = False

            document = Document(
                firm_id=user.firm_id,
                document_type=latest.document_type,
                status=DocumentStatus.DRAFT.value,
                category=latest.category,
                description=latest.description,
                tags=list(latest.tags or []),
                version=latest.version + 1,
                parent_id=root_id,
                is_latest=True,
                case_id=latest.case_id,
                client_id=latest.client_id,
                uploaded_by_id=user.id,
                **stored
            )
            db.add(document)
            db.add(DocumentVersion(document_id=root_id, version=document.version,
                                   changes=changes or f"Uploaded {filename}", created_by_id=user.id))
            db.commit()
            db.refresh(document)
            logger.info(f"Uploaded version {document.version} of document {root_id}")
            return document

        except Exception as e:
            logger.error(f"Error saving new version of document {document_id}: {str(e)}")
            db.rollback()
            document_processor.delete_file(stored["path"])
            raise

    def _family(self, db: Session, firm_id: int, root_id: int) -> List[Document]:
        return db.query(Document).filter(
            Document.firm_id == firm_id,
            (Document.id == root_id) | (Document.parent_id == root_id)
        ).order_by(Document.version).all()

    def get_document(self, db: Session, firm_id: int, document_id: int) -> Document:
        document = db.query(Document).filter(Document.id == document_id, Document.firm_id == firm_id).first()
        if document is None:
            raise NotFoundError("Document not found")
        return document

    def list_documents(
        self,
        db: Session,
        firm_id: int,
        case_id: Optional[int] = None,
        client_id: Optional[int] = None,
        document_type: Optional[DocumentType] = None,
        status: Optional[DocumentStatus] = None,
        latest_only: bool = True,
        skip: int = 0,
        limit: int = 100,
    ) -> List[Document]:
        query = db.query(Document).filter(Document.firm_id == firm_id)
        if case_id is not None:
            query = query.filter(Document.case_id == case_id)
        if client_id is not None:
            query = query.filter(Document.client_id == client_id)
        if document_type:
            query = query.filter(Document.document_type == document_type.value)
        if status:
            query = query.filter(Document.status == status.value)
        if latest_only:
            query = query.filter(Document.is_latest.is_(True))
        return query.order_by(Document.id.desc()).offset(skip).limit(limit).all()

    def versions(self, db: Session, firm_id: int, document_id: int) -> List[DocumentVersion]:
        document = self.get_document(db, firm_id, document_id)
        root_id = document.parent_id or document.id
        return db.query(DocumentVersion).filter(DocumentVersion.document_id == root_id).order_by(
            DocumentVersion.version
        ).all()

    def update_document(self, db: Session, firm_id: int, document_id: int, data: Dict[str, Any]) -> Document:
        document = self.get_document(db, firm_id, document_id)
        for key, value in data.items():
            if key == "document_type" and value is not None:
                value = DocumentType(value).value
            setattr(document, key, value)
        db.commit()
        db.refresh(document)
        logger.info(f"Updated document {document_id}")
        return document

    def update_status(self, db: Session, user: User, document_id: int, target: DocumentStatus) -> Document:
        document = self.get_document(db, user.firm_id, document_id)
        target_value = DocumentStatus(target).value
        if not can_change_status(document.status, target_value):
            raise TransitionError(
                f"Cannot change document status from {document.status} to {target_value}",
                errors=[f"Invalid document status transition from {document.status} to {target_value}"]
            )
        previous = document.status
        document.status = target_value
        db.commit()
        db.refresh(document)
        logger.info(f"Document {document_id} status {previous} -> {target_value} by {user.username}")
        return document

    def download(self, db: Session, firm_id: int, document_id: int) -> Tuple[str, str, Optional[str]]:
        document = self.get_document(db, firm_id, document_id)
        if not Path(document.path).exists():
            logger.error(f"Stored file missing for document {document_id}: {document.path}")
            raise NotFoundError("Document file not found")
        return document.path, document.original_name, document.mime_type

    def delete_document(self, db: Session, firm_id: int, document_id: int):
        """Delete a document together with all of its versions."""
        document = self.get_document(db, firm_id, document_id)
        root_id = document.parent_id or document.id
        family = self._family(db, firm_id, root_id)

        db.query(DocumentVersion).filter(DocumentVersion.document_id == root_id).delete(synchronize_session=False)
        for doc in family:
            doc.parent_id = None
        db.flush()
        for doc in family:
            db.delete(doc)
        db.commit()

        for doc in family:
            document_processor.delete_file(doc.path)
        logger.info(f"Deleted document {root_id} with {len(family)} versions")

    def storage_stats(self, db: Session, firm_id: int) -> Dict[str, Any]:
        base = db.query(Document).filter(Document.firm_id == firm_id)

        def grouped(column):
            rows = db.query(column, func.count(Document.id)).filter(Document.firm_id == firm_id).group_by(column).all()
            return {key: count for key, count in rows}

        return {
            "total_documents": base.count(),
            "total_size": int(db.query(func.coalesce(func.sum(Document.size), 0)).filter(
                Document.firm_id == firm_id).scalar()),
            "by_type": grouped(Document.document_type),
            "by_status": grouped(Document.status),
            "by_format": grouped(Document.file_format),
            "ocr_processed": base.filter(Document.ocr_status == "completed").count(),
        }


document_service = DocumentService()
