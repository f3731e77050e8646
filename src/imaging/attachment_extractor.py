"""PDF attachment extraction."""

import logging
from io import BytesIO
from typing import List

import pypdf

from src.connectors.base import MessageRef, PdfAttachment, ProviderConnector, is_pdf_filename
from src.models.monitoring_config import MonitoringSnapshot

logger = logging.getLogger(__name__)


def count_pdf_pages(data: bytes) -> int:
    """Count pages in a PDF; unreadable documents count as a single page."""
    try:
        reader = pypdf.PdfReader(BytesIO(data))
        if reader.is_encrypted:
            reader.decrypt("")
        return max(len(reader.pages), 1)
    except Exception as e:
        logger.warning(f"Could not read PDF structure, assuming 1 page: {type(e).__name__}: {e}")
        return 1


class AttachmentExtractor:
    """Isolates the PDF attachments of a message.

    The orchestrator talks to this class instead of the connector so that it
    never sees provider-specific message shapes.
    """

    def __init__(self, connector: ProviderConnector):
        self.connector = connector

    async def extract(self, config: MonitoringSnapshot, token: str, message: MessageRef) -> List[PdfAttachment]:
        attachments = await self.connector.fetch_pdf_attachments(config, token, message)

        pdfs = []
        for attachment in attachments:
            if not is_pdf_filename(attachment.filename):
                continue
            if not attachment.data:
                logger.warning(f"Skipping empty attachment {attachment.filename} in message {message.id}")
                continue
            pdfs.append(attachment)

        logger.info(f"Message '{message.subject[:50]}' from {message.sender or 'unknown'}: {len(pdfs)} PDF(s)")
        return pdfs
