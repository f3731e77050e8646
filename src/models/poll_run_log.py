"""Email polling run log model."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from .base import Base

RUN_SUCCESS = "success"
RUN_PARTIAL = "partial"
RUN_FAILURE = "failure"


class PollRunLog(Base):
    """Append-only audit row written once per polling run."""

    __tablename__ = "email_polling_logs"

    id = Column(Integer, primary_key=True)
    config_id = Column(Integer, ForeignKey("imaging_email_monitoring_config.id"), nullable=True, index=True)
    provider = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False)

    # Message counts
    emails_found = Column(Integer, default=0)
    emails_processed = Column(Integer, default=0)
    emails_failed = Column(Integer, default=0)

    # Attachment counts
    pdfs_processed = Column(Integer, default=0)
    indexed_count = Column(Integer, default=0)
    unindexed_count = Column(Integer, default=0)
    error_count = Column(Integer, default=0)

    error_message = Column(Text, nullable=True)

    started_at = Column(DateTime, nullable=True)
    finished_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now(), index=True)

    def __repr__(self):
        return f"<PollRunLog(provider='{self.provider}', status='{self.status}')>"

    def dict(self):
        return {
            'id': self.id,
            'config_id': self.config_id,
            'provider': self.provider,
            'status': self.status,
            'emails_found': self.emails_found or 0,
            'emails_processed': self.emails_processed or 0,
            'emails_failed': self.emails_failed or 0,
            'pdfs_processed': self.pdfs_processed or 0,
            'indexed_count': self.indexed_count or 0,
            'unindexed_count': self.unindexed_count or 0,
            'error_count': self.error_count or 0,
            'error_message': self.error_message,
            'started_at': self.started_at.isoformat() if self.started_at else None,
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'created_at': self.created_at.isoformat() if self.created_at else "",
        }
