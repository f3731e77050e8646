"""Imaging document type model."""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from sqlalchemy.sql import func
from .base import Base


class DocumentType(Base):
    """Classification label a document is filed under (BOL, POD, Invoice, ...)."""

    __tablename__ = "imaging_document_types"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<DocumentType(name='{self.name}', active={self.is_active})>"

    def dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description or "",
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else "",
            'updated_at': self.updated_at.isoformat() if self.updated_at else "",
        }
