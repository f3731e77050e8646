"""Provider connector contract shared by all mailbox providers."""

import abc
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

import httpx

from src.config import settings
from src.imaging.errors import ConnectorError
from src.models.monitoring_config import MonitoringSnapshot

logger = logging.getLogger(__name__)


@dataclass
class MessageRef:
    """Provider message eligible for processing."""

    id: str
    subject: str = ""
    sender: str = ""
    received_at: str = ""


@dataclass
class PdfAttachment:
    """PDF attachment downloaded from a message."""

    filename: str
    data: bytes = field(repr=False)
    page_count: int = 1

    @property
    def size(self) -> int:
        return len(self.data)


def is_pdf_filename(filename: Optional[str]) -> bool:
    return bool(filename) and filename.lower().endswith(".pdf")


def cursor_bound(config: MonitoringSnapshot) -> Optional[datetime]:
    """Return the UTC lower bound for listing, or None when the cursor is ignored."""
    if config.check_all_messages or config.last_check is None:
        return None
    last_check = config.last_check
    if last_check.tzinfo is None:
        return last_check.replace(tzinfo=timezone.utc)
    return last_check.astimezone(timezone.utc)


class ProviderConnector(abc.ABC):
    """Adapter between a mail provider's REST API and the polling pipeline.

    One instance is used per polling run. It owns an ``httpx.AsyncClient``
    for the duration of an ``async with`` block; every call carries the
    configured timeout, and any transport error, timeout or non-2xx
    response surfaces as :class:`ConnectorError`.
    """

    provider: str = ""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: Optional[float] = None):
        self._timeout = timeout if timeout is not None else settings.http_timeout_seconds
        self._http = client
        self._owns_client = client is None

    async def __aenter__(self):
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=httpx.Timeout(self._timeout))
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def aclose(self):
        if self._http is not None and self._owns_client:
            await self._http.aclose()
            self._http = None

    async def _request(self, method: str, url: str, token: Optional[str] = None,
                       error_cls=ConnectorError, **kwargs) -> httpx.Response:
        if self._http is None:
            raise ConnectorError(f"{type(self).__name__} used outside of 'async with'")

        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            raise error_cls(f"{self.provider} {method} {url} failed: {type(e).__name__}: {e}") from e

        if response.is_error:
            raise error_cls(f"{self.provider} {method} {url} returned {response.status_code}: {response.text[:500]}")
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict:
        try:
            return response.json()
        except ValueError as e:
            raise ConnectorError(f"Malformed JSON from {response.request.url}: {e}") from e

    @abc.abstractmethod
    async def authenticate(self, config: MonitoringSnapshot) -> str:
        """Exchange stored credentials for a short-lived bearer token."""

    @abc.abstractmethod
    async def list_candidate_messages(self, config: MonitoringSnapshot, token: str) -> List[MessageRef]:
        """List unread messages with attachments, bounded by the cursor."""

    @abc.abstractmethod
    async def fetch_pdf_attachments(self, config: MonitoringSnapshot, token: str,
                                    message: MessageRef) -> List[PdfAttachment]:
        """Download the PDF attachments of one message."""

    @abc.abstractmethod
    async def apply_post_process(self, config: MonitoringSnapshot, token: str, message: MessageRef,
                                 action: str, folder: str) -> None:
        """Mark, move, archive or delete a consumed message."""
