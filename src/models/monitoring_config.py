"""Imaging email monitoring configuration model."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, Integer, String, Boolean, Text, DateTime, ForeignKey
from sqlalchemy.sql import func
from .base import Base

PROVIDER_OFFICE365 = "office365"
PROVIDER_GMAIL = "gmail"

ACTION_NONE = "none"
ACTION_MARK_READ = "mark_read"
ACTION_MOVE = "move"
ACTION_ARCHIVE = "archive"
ACTION_DELETE = "delete"
POST_PROCESS_ACTIONS = (ACTION_NONE, ACTION_MARK_READ, ACTION_MOVE, ACTION_ARCHIVE, ACTION_DELETE)


@dataclass(frozen=True)
class MonitoringSnapshot:
    """Detached copy of a monitoring config, safe to use outside a session."""

    id: int
    name: str
    provider: str
    tenant_id: str
    client_id: str
    client_secret: str
    monitored_email: str
    gmail_client_id: str
    gmail_client_secret: str
    gmail_refresh_token: str
    gmail_monitored_label: str
    imaging_bucket_id: Optional[int]
    polling_interval: int
    is_enabled: bool
    last_check: Optional[datetime]
    check_all_messages: bool
    post_process_action: str
    processed_folder_path: str
    post_process_action_on_failure: str
    failure_folder_path: str


class MonitoringConfig(Base):
    """Mailbox monitoring settings for one tenant."""

    __tablename__ = "imaging_email_monitoring_config"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=True)
    provider = Column(String(20), nullable=False, default=PROVIDER_OFFICE365)

    # Office365 (client credentials)
    tenant_id = Column(String(255), nullable=True)
    client_id = Column(String(255), nullable=True)
    client_secret = Column(Text, nullable=True)  # Should be encrypted in production
    monitored_email = Column(String(500), nullable=True)

    # Gmail (refresh token)
    gmail_client_id = Column(String(255), nullable=True)
    gmail_client_secret = Column(Text, nullable=True)
    gmail_refresh_token = Column(Text, nullable=True)
    gmail_monitored_label = Column(String(255), nullable=True, default="INBOX")

    # Filing
    imaging_bucket_id = Column(Integer, ForeignKey("imaging_buckets.id"), nullable=True)

    # Polling
    polling_interval = Column(Integer, nullable=False, default=5)  # minutes
    is_enabled = Column(Boolean, default=False)
    last_check = Column(DateTime, nullable=True)
    check_all_messages = Column(Boolean, default=False)

    # Post-processing
    post_process_action = Column(String(20), nullable=False, default=ACTION_MARK_READ)
    processed_folder_path = Column(String(500), nullable=False, default="Processed")
    post_process_action_on_failure = Column(String(20), nullable=False, default=ACTION_NONE)
    failure_folder_path = Column(String(500), nullable=False, default="Failed")

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    def __repr__(self):
        return f"<MonitoringConfig(provider='{self.provider}', enabled={self.is_enabled})>"

    def snapshot(self) -> MonitoringSnapshot:
        return MonitoringSnapshot(
            id=self.id,
            name=self.name or "",
            provider=self.provider or PROVIDER_OFFICE365,
            tenant_id=self.tenant_id or "",
            client_id=self.client_id or "",
            client_secret=self.client_secret or "",
            monitored_email=self.monitored_email or "",
            gmail_client_id=self.gmail_client_id or "",
            gmail_client_secret=self.gmail_client_secret or "",
            gmail_refresh_token=self.gmail_refresh_token or "",
            gmail_monitored_label=self.gmail_monitored_label or "INBOX",
            imaging_bucket_id=self.imaging_bucket_id,
            polling_interval=self.polling_interval or 5,
            is_enabled=bool(self.is_enabled),
            last_check=self.last_check,
            check_all_messages=bool(self.check_all_messages),
            post_process_action=self.post_process_action or ACTION_MARK_READ,
            processed_folder_path=self.processed_folder_path or "Processed",
            post_process_action_on_failure=self.post_process_action_on_failure or ACTION_NONE,
            failure_folder_path=self.failure_folder_path or "Failed",
        )

    def dict(self):
        """Convert to dictionary without secrets."""
        return {
            'id': self.id,
            'name': self.name or "",
            'provider': self.provider,
            'tenant_id': self.tenant_id or "",
            'client_id': self.client_id or "",
            'monitored_email': self.monitored_email or "",
            'gmail_client_id': self.gmail_client_id or "",
            'gmail_monitored_label': self.gmail_monitored_label or "INBOX",
            'imaging_bucket_id': self.imaging_bucket_id,
            'polling_interval': self.polling_interval,
            'is_enabled': bool(self.is_enabled),
            'last_check': self.last_check.isoformat() if self.last_check else None,
            'check_all_messages': bool(self.check_all_messages),
            'post_process_action': self.post_process_action,
            'processed_folder_path': self.processed_folder_path,
            'post_process_action_on_failure': self.post_process_action_on_failure,
            'failure_folder_path': self.failure_folder_path,
            'created_at': self.created_at.isoformat() if self.created_at else "",
            'updated_at': self.updated_at.isoformat() if self.updated_at else "",
        }
