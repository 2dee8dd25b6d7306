import hashlib
import logging
import mimetypes
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import aiofiles
import pytesseract
from fastapi.concurrency import run_in_threadpool
from PIL import Image

from langchain_community.document_loaders import (
    Docx2txtLoader,
    PyPDFLoader,
    TextLoader,
    UnstructuredRTFLoader
)
from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..config import settings
from .text_analysis import detect_language, extract_entities, top_keywords, word_count

logger = logging.getLogger(__name__)

IMAGE_FORMATS = {"png", "jpg", "jpeg", "tif", "tiff"}


class LangChainDocumentProcessor:
    SUPPORTED_FORMATS = {
        'pdf': 'application/pdf',
        'docx': 'application/vnd.openxmlformats-officedocument.wordprocessingml.document',
        'txt': 'text/plain',
        'md': 'text/markdown',
        'rtf': 'application/rtf',
        'png': 'image/png',
        'jpg': 'image/jpeg',
        'jpeg': 'image/jpeg',
        'tif': 'image/tiff',
        'tiff': 'image/tiff',
    }

    def __init__(self):
        self.storage_path = Path(settings.document_storage_path)
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.text_splitter = RecursiveCharacterTextSplitter(
            chunk_size=settings.max_chunk_size,
            chunk_overlap=settings.chunk_overlap,
            length_function=len,
            separators=["\n\n", "\n", "。", ".", " ", ""]
        )
        if settings.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = settings.tesseract_cmd

    def detect_file_format(self, filename: str, content_type: Optional[str] = None) -> Tuple[Optional[str], Optional[str]]:
        """Return (format, mime type) from the extension, falling back to the declared type."""
        file_ext = Path(filename or "").suffix.lower().lstrip('.')
        if file_ext in self.SUPPORTED_FORMATS:
            guessed, _ = mimetypes.guess_type(filename)
            return file_ext, guessed or self.SUPPORTED_FORMATS[file_ext]

        mime_type = content_type or mimetypes.guess_type(filename or "")[0]
        for format_name, format_mime in self.SUPPORTED_FORMATS.items():
            if mime_type == format_mime:
                return format_name, mime_type
        return None, mime_type

    @staticmethod
    def content_hash(file_content: bytes) -> str:
        return hashlib.sha256(file_content).hexdigest()

    async def save_file(self, file_content: bytes, filename: str, firm_id: int) -> Tuple[Path, str]:
        firm_dir = self.storage_path / f"firm_{firm_id}"
        firm_dir.mkdir(parents=True, exist_ok=True)

        unique_filename = f"{uuid.uuid4().hex}{Path(filename).suffix.lower()}"
        file_path = firm_dir / unique_filename

        async with aiofiles.open(file_path, 'wb') as f:
            await f.write(file_content)

        logger.info(f"Stored {filename} as {file_path}")
        return file_path, unique_filename

    async def read_file(self, file_path: str) -> bytes:
        async with aiofiles.open(file_path, 'rb') as f:
            return await f.read()

    def _loader(self, file_path: Path, file_format: str):
        if file_format == 'pdf':
            return PyPDFLoader(str(file_path))
        if file_format == 'docx':
            return Docx2txtLoader(str(file_path))
        if file_format in ('txt', 'md'):
            return TextLoader(str(file_path), encoding='utf-8')
        if file_format == 'rtf':
            return UnstructuredRTFLoader(str(file_path))
        raise ValueError(f"Unsupported format for LangChain extraction: {file_format}")

    async def extract_text(self, file_path: Path, file_format: str) -> Tuple[Optional[str], str]:
        """Return (text, ocr_status). Extraction failures are logged, never raised."""
        return await run_in_threadpool(self._extract_text_sync, file_path, file_format)

    def _extract_text_sync(self, file_path: Path, file_format: str) -> Tuple[Optional[str], str]:
        if file_format in IMAGE_FORMATS:
            if not settings.ocr_enabled:
                logger.info(f"OCR disabled, skipping {file_path.name}")
                return None, "skipped"
            try:
                with Image.open(file_path) as image:
                    text = pytesseract.image_to_string(image, lang=settings.ocr_languages)
                logger.info(f"OCR extracted {len(text)} characters from {file_path.name}")
                return text.strip(), "completed"
            except Exception as e:
                logger.error(f"OCR failed for {file_path.name}: {str(e)}")
                return None, "failed"

        try:
            documents = self._loader(file_path, file_format).load()
            content = "\n\n".join([doc.page_content for doc in documents])
            logger.info(f"Extracted content using LangChain {file_format} loader")
            return content.strip(), "not_required"
        except Exception as e:
            logger.error(f"Error extracting content from {file_format} with LangChain: {str(e)}")
            return None, "not_required"

    def extract_metadata(self, text: Optional[str], file_format: str, file_size: int) -> Dict[str, Any]:
        metadata: Dict[str, Any] = {"file_format": file_format, "file_size": file_size}
        if not text:
            metadata.update(word_count=0, character_count=0, language="unknown",
                            keywords=[], entities={}, chunk_count=0)
            return metadata

        metadata.update(
            word_count=word_count(text),
            character_count=len(text),
            language=detect_language(text),
            keywords=top_keywords(text, 10),
            entities=extract_entities(text),
            chunk_count=len(self.text_splitter.split_text(text)),
        )
        return metadata

    def delete_file(self, file_path: str):
        path_obj = Path(file_path)
        if path_obj.exists():
            path_obj.unlink()
            logger.info(f"Deleted document file: {file_path}")
        else:
            logger.warning(f"File not found for deletion: {file_path}")


document_processor = LangChainDocumentProcessor()
