"""Client for the external barcode detection service."""

import abc
import logging
from typing import List, Optional

import httpx

from src.config import settings
from src.imaging.errors import BarcodeDetectionError

logger = logging.getLogger(__name__)


class BarcodeDetector(abc.ABC):
    """Finds barcode values printed on a PDF, in detection order."""

    @abc.abstractmethod
    async def detect(self, pdf_bytes: bytes, filename: str) -> List[str]:
        ...


def normalize_barcodes(payload) -> List[str]:
    """Accept ``[...]`` or ``{"barcodes": [...]}``; keep non-empty strings in order."""
    if isinstance(payload, dict):
        payload = payload.get("barcodes", [])
    if not isinstance(payload, list):
        raise BarcodeDetectionError(f"Unexpected barcode service response: {type(payload).__name__}")
    return [value.strip() for value in payload if isinstance(value, str) and value.strip()]


class HttpBarcodeDetector(BarcodeDetector):
    """Posts the PDF to ``barcode_service_url`` and reads back the decoded values.

    With no service URL configured, detection is disabled and every document
    is reported as having no barcodes, so it ends up in the unindexed queue.
    """

    def __init__(self, service_url: Optional[str] = None, timeout: Optional[float] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.service_url = settings.barcode_service_url if service_url is None else service_url
        self.timeout = timeout if timeout is not None else settings.barcode_service_timeout_seconds
        self._client = client

    async def detect(self, pdf_bytes: bytes, filename: str) -> List[str]:
        if not self.service_url:
            logger.warning(f"Barcode service not configured; {filename} will be queued for manual indexing")
            return []

        try:
            if self._client is not None:
                response = await self._post(self._client, pdf_bytes, filename)
            else:
                async with httpx.AsyncClient(timeout=httpx.Timeout(self.timeout)) as client:
                    response = await self._post(client, pdf_bytes, filename)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPError as e:
            raise BarcodeDetectionError(f"Barcode detection failed for {filename}: {type(e).__name__}: {e}") from e
        except ValueError as e:
            raise BarcodeDetectionError(f"Barcode service returned invalid JSON for {filename}") from e

        barcodes = normalize_barcodes(payload)
        logger.info(f"Detected {len(barcodes)} barcode(s) in {filename}: {barcodes}")
        return barcodes

    async def _post(self, client: httpx.AsyncClient, pdf_bytes: bytes, filename: str) -> httpx.Response:
        return await client.post(
            self.service_url,
            files={"file": (filename, pdf_bytes, "application/pdf")},
            data={"filename": filename, "fileSize": str(len(pdf_bytes))},
        )
