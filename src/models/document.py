"""Filed imaging document model."""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
from .base import Base


class Document(Base):
    """A classified document filed against a detail line."""

    __tablename__ = "imaging_documents"

    id = Column(Integer, primary_key=True)
    bucket_id = Column(Integer, ForeignKey("imaging_buckets.id"), nullable=False, index=True)
    document_type_id = Column(Integer, ForeignKey("imaging_document_types.id"), nullable=False, index=True)

    # Business keys
    detail_line_id = Column(String(255), nullable=False, index=True)
    bill_number = Column(String(255), nullable=True, default="")

    # File info
    storage_path = Column(String(1000), nullable=False)
    original_filename = Column(String(500), nullable=True)
    file_size = Column(Integer, default=0)
    uploaded_by = Column(String(255), nullable=True)

    created_at = Column(DateTime, default=func.now(), index=True)
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    bucket = relationship("Bucket")
    document_type = relationship("DocumentType")

    def __repr__(self):
        return f"<Document(detail_line_id='{self.detail_line_id}', storage_path='{self.storage_path}')>"

    def dict(self):
        return {
            'id': self.id,
            'bucket_id': self.bucket_id,
            'document_type_id': self.document_type_id,
            'detail_line_id': self.detail_line_id,
            'bill_number': self.bill_number or "",
            'storage_path': self.storage_path,
            'original_filename': self.original_filename or "",
            'file_size': self.file_size or 0,
            'uploaded_by': self.uploaded_by,
            'created_at': self.created_at.isoformat() if self.created_at else "",
            'updated_at': self.updated_at.isoformat() if self.updated_at else "",
        }
