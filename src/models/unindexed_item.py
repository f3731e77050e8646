"""Unindexed queue model."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, JSON
from sqlalchemy.sql import func
from .base import Base

STATUS_PENDING = "pending"
STATUS_INDEXED = "indexed"
STATUS_DISCARDED = "discarded"

SOURCE_EMAIL = "email"
SOURCE_SFTP = "sftp"


class UnindexedItem(Base):
    """A stored document waiting for a human to index or discard it."""

    __tablename__ = "imaging_unindexed_queue"

    id = Column(Integer, primary_key=True)
    bucket_id = Column(Integer, ForeignKey("imaging_buckets.id"), nullable=False, index=True)

    # Stored file
    storage_path = Column(String(1000), nullable=False)
    original_filename = Column(String(500), nullable=True)
    file_size = Column(Integer, default=0)

    # Detection results
    detected_barcodes = Column(JSON, nullable=False, default=list)
    reason = Column(Text, nullable=True)

    # Provenance
    source_type = Column(String(20), nullable=False, default=SOURCE_EMAIL)
    source_email_config_id = Column(Integer, ForeignKey("imaging_email_monitoring_config.id"), nullable=True)
    source_sftp_config_id = Column(Integer, nullable=True)

    # Resolution
    status = Column(String(20), nullable=False, default=STATUS_PENDING, index=True)
    detail_line_id = Column(String(255), nullable=True)
    document_type_id = Column(Integer, ForeignKey("imaging_document_types.id"), nullable=True)
    bill_number = Column(String(255), nullable=True)
    document_id = Column(Integer, ForeignKey("imaging_documents.id"), nullable=True)
    indexed_by = Column(String(255), nullable=True)
    indexed_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<UnindexedItem(filename='{self.original_filename}', status='{self.status}')>"

    def dict(self):
        return {
            'id': self.id,
            'bucket_id': self.bucket_id,
            'storage_path': self.storage_path,
            'original_filename': self.original_filename or "",
            'file_size': self.file_size or 0,
            'detected_barcodes': list(self.detected_barcodes or []),
            'reason': self.reason,
            'source_type': self.source_type,
            'source_email_config_id': self.source_email_config_id,
            'source_sftp_config_id': self.source_sftp_config_id,
            'status': self.status,
            'detail_line_id': self.detail_line_id,
            'document_type_id': self.document_type_id,
            'bill_number': self.bill_number,
            'document_id': self.document_id,
            'indexed_by': self.indexed_by,
            'indexed_at': self.indexed_at.isoformat() if self.indexed_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else "",
            'updated_at': self.updated_at.isoformat() if self.updated_at else "",
        }
