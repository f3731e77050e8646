"""Tests for the barcode detection client."""

import httpx
import pytest
import respx

from src.imaging.barcode_detector import HttpBarcodeDetector, normalize_barcodes
from src.imaging.errors import BarcodeDetectionError

SERVICE = "http://barcodes.test/detect"


def test_normalize_barcodes():
    assert normalize_barcodes(["POD-1", " ", 7, " BOL-2 "]) == ["POD-1", "BOL-2"]
    assert normalize_barcodes({"barcodes": ["A-1"]}) == ["A-1"]
    assert normalize_barcodes({}) == []
    with pytest.raises(BarcodeDetectionError):
        normalize_barcodes("POD-1")


@pytest.mark.asyncio
async def test_disabled_without_service_url(pdf_bytes):
    assert await HttpBarcodeDetector(service_url="").detect(pdf_bytes, "scan.pdf") == []


@pytest.mark.asyncio
@respx.mock
async def test_detect_posts_pdf(pdf_bytes):
    route = respx.post(SERVICE).respond(200, json={"barcodes": ["POD-55501", "BOL-1"]})

    barcodes = await HttpBarcodeDetector(service_url=SERVICE).detect(pdf_bytes, "scan.pdf")

    assert barcodes == ["POD-55501", "BOL-1"]
    request = route.calls[0].request
    assert request.headers["content-type"].startswith("multipart/form-data")
    assert b'name="fileSize"' in request.content
    assert pdf_bytes in request.content


@pytest.mark.asyncio
@respx.mock
async def test_service_error_raises(pdf_bytes):
    respx.post(SERVICE).respond(500)

    with pytest.raises(BarcodeDetectionError):
        await HttpBarcodeDetector(service_url=SERVICE).detect(pdf_bytes, "scan.pdf")


@pytest.mark.asyncio
@respx.mock
async def test_invalid_json_raises(pdf_bytes):
    respx.post(SERVICE).respond(200, content=b"not json")

    with pytest.raises(BarcodeDetectionError):
        await HttpBarcodeDetector(service_url=SERVICE).detect(pdf_bytes, "scan.pdf")


@pytest.mark.asyncio
@respx.mock
async def test_timeout_raises(pdf_bytes):
    respx.post(SERVICE).mock(side_effect=httpx.ConnectTimeout)

    with pytest.raises(BarcodeDetectionError):
        await HttpBarcodeDetector(service_url=SERVICE, timeout=1.0).detect(pdf_bytes, "scan.pdf")
