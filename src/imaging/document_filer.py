"""Filing of ingested PDFs into the content store and catalog.

Bytes are always written to the content store before the catalog row is
inserted. If the insert fails, the blob that was just written is deleted
again and the error propagates; blobs left behind by a crash between the
two steps are removed later by :func:`sweep_orphaned_blobs`.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from sqlalchemy.orm import Session

from src.database.connection import get_db_session
from src.imaging.barcode_detector import BarcodeDetector, HttpBarcodeDetector
from src.imaging.classifier import Classification, ClassificationEngine
from src.imaging.errors import NotFoundError, StorageError
from src.imaging.storage import LocalContentStore, generate_storage_path
from src.models.bucket import Bucket
from src.models.document import Document
from src.models.document_type import DocumentType
from src.models.unindexed_item import SOURCE_EMAIL, SOURCE_SFTP, UnindexedItem

logger = logging.getLogger(__name__)

REASON_NO_BARCODES = "No barcodes detected in document"
REASON_NO_MATCH = "No barcode matched configured patterns"


@dataclass
class FilingResult:
    indexed: bool
    record_id: int
    bucket_id: int
    storage_path: str
    detected_barcodes: List[str] = field(default_factory=list)
    classification: Optional[Classification] = None
    reason: Optional[str] = None


class DocumentFiler:
    """Detects, classifies and files PDFs, or parks them in the unindexed queue."""

    def __init__(self, store: Optional[LocalContentStore] = None, detector: Optional[BarcodeDetector] = None):
        self.store = store or LocalContentStore()
        self.detector = detector or HttpBarcodeDetector()

    async def process(self, pdf_bytes: bytes, filename: str, bucket_id: int, source_config_id: Optional[int],
                      source_type: str = SOURCE_EMAIL,
                      engine: Optional[ClassificationEngine] = None) -> FilingResult:
        """Run detection and classification for one PDF and file the outcome."""
        barcodes = await self.detector.detect(pdf_bytes, filename)

        if engine is None:
            with get_db_session() as db:
                engine = ClassificationEngine.from_catalog(db)

        classification = engine.classify(barcodes)
        return self.file(pdf_bytes, filename, bucket_id, barcodes, classification, source_config_id, source_type)

    def file(self, pdf_bytes: bytes, filename: str, bucket_id: int, barcodes: List[str],
             classification: Optional[Classification], source_config_id: Optional[int],
             source_type: str = SOURCE_EMAIL) -> FilingResult:
        if classification is not None and classification.document_type_id is not None:
            return self._file_document(pdf_bytes, filename, classification, barcodes)

        if classification is not None:
            reason = f'Document type "{classification.document_type_name}" not found in configuration'
            logger.warning(f"{filename}: {reason}")
        elif barcodes:
            reason = REASON_NO_MATCH
        else:
            reason = REASON_NO_BARCODES

        return self._queue(pdf_bytes, filename, bucket_id, barcodes, reason, source_config_id, source_type,
                           classification)

    def _file_document(self, pdf_bytes: bytes, filename: str, classification: Classification,
                       barcodes: List[str]) -> FilingResult:
        def build(storage_path: str) -> Document:
            return Document(
                bucket_id=classification.bucket_id,
                document_type_id=classification.document_type_id,
                detail_line_id=classification.detail_line_id,
                bill_number=classification.bill_number or "",
                storage_path=storage_path,
                original_filename=filename or "",
                file_size=len(pdf_bytes),
            )

        storage_path, record_id = self._write_then_insert(
            classification.bucket_id, generate_storage_path(filename), pdf_bytes, build
        )
        logger.info(f"Filed {filename} as {classification.document_type_name} "
                    f"for detail line {classification.detail_line_id} (document {record_id})")
        return FilingResult(
            indexed=True,
            record_id=record_id,
            bucket_id=classification.bucket_id,
            storage_path=storage_path,
            detected_barcodes=list(barcodes),
            classification=classification,
        )

    def _queue(self, pdf_bytes: bytes, filename: str, bucket_id: int, barcodes: List[str], reason: str,
               source_config_id: Optional[int], source_type: str,
               classification: Optional[Classification] = None) -> FilingResult:
        def build(storage_path: str) -> UnindexedItem:
            return UnindexedItem(
                bucket_id=bucket_id,
                storage_path=storage_path,
                original_filename=filename or "",
                file_size=len(pdf_bytes),
                detected_barcodes=list(barcodes),
                reason=reason,
                source_type=source_type,
                source_email_config_id=source_config_id if source_type == SOURCE_EMAIL else None,
                source_sftp_config_id=source_config_id if source_type == SOURCE_SFTP else None,
            )

        storage_path, record_id = self._write_then_insert(
            bucket_id, generate_storage_path(filename), pdf_bytes, build
        )
        logger.info(f"Queued {filename} for manual indexing (item {record_id}): {reason}")
        return FilingResult(
            indexed=False,
            record_id=record_id,
            bucket_id=bucket_id,
            storage_path=storage_path,
            detected_barcodes=list(barcodes),
            classification=classification,
            reason=reason,
        )

    def _write_then_insert(self, bucket_id: int, storage_path: str, data: bytes,
                           build: Callable[[str], object]):
        stored_path = self.store.put(bucket_id, storage_path, data)
        try:
            with get_db_session() as db:
                row = build(stored_path)
                db.add(row)
                db.flush()
                record_id = row.id
        except Exception:
            logger.error(f"Catalog insert failed for bucket {bucket_id}/{stored_path}, removing stored blob")
            try:
                self.store.delete(bucket_id, stored_path)
            except StorageError as e:
                logger.error(f"Could not remove orphaned blob {bucket_id}/{stored_path}: {e}")
            raise
        return stored_path, record_id

    def store_document(self, pdf_bytes: bytes, filename: str, bucket_id: int, document_type_id: int,
                       detail_line_id: str, bill_number: Optional[str] = None,
                       storage_path: Optional[str] = None, uploaded_by: Optional[str] = None) -> dict:
        """File a document whose index values are already known (direct upload)."""
        if not detail_line_id:
            raise ValueError("detail_line_id is required")

        with get_db_session() as db:
            bucket = db.query(Bucket).filter(Bucket.id == bucket_id).first()
            if not bucket:
                raise NotFoundError(f"Bucket not found: {bucket_id}")
            document_type = db.query(DocumentType).filter(DocumentType.id == document_type_id).first()
            if not document_type:
                raise NotFoundError(f"Document type not found: {document_type_id}")
            bucket_url = bucket.url
            type_name = document_type.name

        target_path = storage_path or f"{type_name}/{detail_line_id}_{int(time.time() * 1000)}.pdf"

        def build(stored_path: str) -> Document:
            return Document(
                bucket_id=bucket_id,
                document_type_id=document_type_id,
                detail_line_id=detail_line_id,
                bill_number=bill_number or "",
                storage_path=stored_path,
                original_filename=filename or "",
                file_size=len(pdf_bytes),
                uploaded_by=uploaded_by,
            )

        stored_path, record_id = self._write_then_insert(bucket_id, target_path, pdf_bytes, build)
        logger.info(f"Stored uploaded document {record_id} for detail line {detail_line_id}")
        return {
            "document_id": record_id,
            "storage_path": stored_path,
            "document_url": f"{bucket_url.rstrip('/')}/{stored_path}",
            "document_type_name": type_name,
            "detail_line_id": detail_line_id,
            "bill_number": bill_number or "",
        }


def find_document(db: Session, bucket_id: int, document_type_id: int, detail_line_id: str) -> dict:
    """Return the newest document filed under the given key, with its URL."""
    bucket = db.query(Bucket).filter(Bucket.id == bucket_id).first()
    if not bucket:
        raise NotFoundError(f"Bucket not found: {bucket_id}")

    document = (
        db.query(Document)
        .filter(
            Document.bucket_id == bucket_id,
            Document.document_type_id == document_type_id,
            Document.detail_line_id == detail_line_id,
        )
        .order_by(Document.created_at.desc(), Document.id.desc())
        .first()
    )
    if not document:
        raise NotFoundError(f"Document not found for detail line {detail_line_id}")

    return {
        **document.dict(),
        "document_url": bucket.document_url(document.storage_path),
        "bucket_name": bucket.name,
    }


def sweep_orphaned_blobs(store: LocalContentStore, grace_seconds: int, dry_run: bool = False) -> List[str]:
    """Delete blobs no document or queue item references, once older than ``grace_seconds``."""
    with get_db_session() as db:
        referenced = {(bucket_id, path) for bucket_id, path in db.query(Document.bucket_id, Document.storage_path)}
        referenced.update(
            (bucket_id, path) for bucket_id, path in db.query(UnindexedItem.bucket_id, UnindexedItem.storage_path)
        )

    cutoff = time.time() - grace_seconds
    removed = []
    for bucket_id, storage_path, mtime in list(store.iter_blobs()):
        if (bucket_id, storage_path) in referenced or mtime > cutoff:
            continue
        if not dry_run:
            store.delete(bucket_id, storage_path)
        removed.append(f"{bucket_id}/{storage_path}")

    logger.info(f"Orphan sweep {'found' if dry_run else 'removed'} {len(removed)} blob(s)")
    return removed
