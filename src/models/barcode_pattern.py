"""Barcode pattern model."""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime, ForeignKey
from sqlalchemy.sql import func
from .base import Base


class BarcodePattern(Base):
    """Rule mapping a barcode shape to a document type and detail line id.

    ``pattern_template`` holds the ``{documentType}`` and ``{detailLineId}``
    tokens joined by ``separator``. When ``fixed_document_type`` is set the
    template's type slot is ignored and the constant is used instead.
    """

    __tablename__ = "imaging_barcode_patterns"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=True)
    description = Column(Text, nullable=True)
    pattern_template = Column(String(500), nullable=False, default="{documentType}-{detailLineId}")
    separator = Column(String(20), nullable=False, default="-")
    fixed_document_type = Column(String(255), nullable=True)
    bucket_id = Column(Integer, ForeignKey("imaging_buckets.id"), nullable=False)
    priority = Column(Integer, nullable=False, default=0)  # lower wins
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<BarcodePattern(template='{self.pattern_template}', priority={self.priority})>"

    def dict(self):
        return {
            'id': self.id,
            'name': self.name or "",
            'description': self.description or "",
            'pattern_template': self.pattern_template,
            'separator': self.separator or "-",
            'fixed_document_type': self.fixed_document_type,
            'bucket_id': self.bucket_id,
            'priority': self.priority or 0,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else "",
            'updated_at': self.updated_at.isoformat() if self.updated_at else "",
        }
