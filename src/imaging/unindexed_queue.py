"""Manual resolution of the unindexed queue.

Items move ``pending -> indexed`` or ``pending -> discarded`` and never
again. Each transition is claimed with a conditional UPDATE on
``status = 'pending'``, so when two operators resolve the same item only
one UPDATE matches and only one Document is created.
"""

import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy.orm import Session

from src.imaging.errors import NotFoundError, QueueConflictError, StorageError
from src.imaging.storage import LocalContentStore
from src.models.document import Document
from src.models.document_type import DocumentType
from src.models.unindexed_item import (
    STATUS_DISCARDED,
    STATUS_INDEXED,
    STATUS_PENDING,
    UnindexedItem,
)

logger = logging.getLogger(__name__)

QUEUE_STATUSES = (STATUS_PENDING, STATUS_INDEXED, STATUS_DISCARDED)


class UnindexedQueueManager:
    """Lists and resolves documents that could not be classified automatically."""

    def __init__(self, store: Optional[LocalContentStore] = None):
        self.store = store or LocalContentStore()

    def list_items(self, db: Session, bucket_id: Optional[int] = None, status: Optional[str] = STATUS_PENDING,
                   limit: int = 200) -> List[UnindexedItem]:
        query = db.query(UnindexedItem)
        if bucket_id is not None:
            query = query.filter(UnindexedItem.bucket_id == bucket_id)
        if status:
            if status not in QUEUE_STATUSES:
                raise ValueError(f"Unknown queue status: {status}")
            query = query.filter(UnindexedItem.status == status)
        return query.order_by(UnindexedItem.created_at.desc(), UnindexedItem.id.desc()).limit(limit).all()

    def _get_pending(self, db: Session, item_id: int) -> UnindexedItem:
        item = db.query(UnindexedItem).filter(UnindexedItem.id == item_id).first()
        if not item:
            raise NotFoundError(f"Unindexed item not found: {item_id}")
        if item.status != STATUS_PENDING:
            raise QueueConflictError(f"Unindexed item {item_id} is already {item.status}")
        return item

    def _claim(self, db: Session, item_id: int, values: dict):
        claimed = (
            db.query(UnindexedItem)
            .filter(UnindexedItem.id == item_id, UnindexedItem.status == STATUS_PENDING)
            .update(values, synchronize_session=False)
        )
        if claimed != 1:
            db.rollback()
            raise QueueConflictError(f"Unindexed item {item_id} was resolved concurrently")

    def resolve(self, db: Session, item_id: int, detail_line_id: str, document_type_id: int,
                bill_number: Optional[str] = None, user: Optional[str] = None) -> Document:
        """Index a pending item: create its Document from the already stored bytes."""
        detail_line_id = (detail_line_id or "").strip()
        if not detail_line_id:
            raise ValueError("detail_line_id is required")

        item = self._get_pending(db, item_id)

        document_type = db.query(DocumentType).filter(DocumentType.id == document_type_id).first()
        if not document_type:
            raise NotFoundError(f"Document type not found: {document_type_id}")

        if not self.store.exists(item.bucket_id, item.storage_path):
            raise StorageError(f"Stored file for unindexed item {item_id} is missing: {item.storage_path}")

        now = datetime.utcnow()
        try:
            self._claim(db, item_id, {
                UnindexedItem.status: STATUS_INDEXED,
                UnindexedItem.detail_line_id: detail_line_id,
                UnindexedItem.document_type_id: document_type_id,
                UnindexedItem.bill_number: bill_number or None,
                UnindexedItem.indexed_by: user,
                UnindexedItem.indexed_at: now,
                UnindexedItem.updated_at: now,
            })

            document = Document(
                bucket_id=item.bucket_id,
                document_type_id=document_type_id,
                detail_line_id=detail_line_id,
                bill_number=bill_number or "",
                storage_path=item.storage_path,
                original_filename=item.original_filename,
                file_size=item.file_size,
                uploaded_by=user,
            )
            db.add(document)
            db.flush()

            db.query(UnindexedItem).filter(UnindexedItem.id == item_id).update(
                {UnindexedItem.document_id: document.id}, synchronize_session=False
            )
            db.commit()
        except QueueConflictError:
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(document)
        logger.info(f"Unindexed item {item_id} indexed as {document_type.name} "
                    f"for detail line {detail_line_id} (document {document.id}) by {user or 'unknown'}")
        return document

    def discard(self, db: Session, item_id: int, user: Optional[str] = None) -> UnindexedItem:
        """Discard a pending item. Its bytes stay in the store for audit."""
        item = self._get_pending(db, item_id)

        now = datetime.utcnow()
        try:
            self._claim(db, item_id, {
                UnindexedItem.status: STATUS_DISCARDED,
                UnindexedItem.indexed_by: user,
                UnindexedItem.indexed_at: now,
                UnindexedItem.updated_at: now,
            })
            db.commit()
        except QueueConflictError:
            raise
        except Exception:
            db.rollback()
            raise

        db.refresh(item)
        logger.info(f"Unindexed item {item_id} discarded by {user or 'unknown'}")
        return item
