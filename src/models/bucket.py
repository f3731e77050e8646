"""Imaging bucket model."""

from sqlalchemy import Column, Integer, String, Text, Boolean, DateTime
from sqlalchemy.sql import func
from .base import Base


class Bucket(Base):
    """Named content destination that documents are filed into."""

    __tablename__ = "imaging_buckets"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), unique=True, nullable=False)
    url = Column(String(1000), nullable=False)  # Base URL documents are served from
    description = Column(Text, nullable=True)
    is_active = Column(Boolean, default=True)

    # Timestamps
    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<Bucket(name='{self.name}', active={self.is_active})>"

    def document_url(self, storage_path: str) -> str:
        """Public URL of a document stored in this bucket."""
        return f"{self.url.rstrip('/')}/{storage_path}"

    def dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'description': self.description or "",
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else "",
            'updated_at': self.updated_at.isoformat() if self.updated_at else "",
        }
