"""Tests for PDF attachment extraction."""

import pytest

from src.connectors.base import PdfAttachment
from src.imaging.attachment_extractor import AttachmentExtractor, count_pdf_pages


def test_count_pdf_pages(pdf_factory):
    assert count_pdf_pages(pdf_factory(pages=3)) == 3


def test_corrupt_pdf_counts_as_one_page():
    assert count_pdf_pages(b"%PDF-1.4 this is not really a pdf") == 1
    assert count_pdf_pages(b"") == 1


@pytest.mark.asyncio
async def test_extract_filters_non_pdf_and_empty(stub_connector_cls, message_factory, pdf_bytes):
    message = message_factory("m1")
    connector = stub_connector_cls(attachments={"m1": [
        PdfAttachment(filename="scan.pdf", data=pdf_bytes),
        PdfAttachment(filename="notes.txt", data=b"hello"),
        PdfAttachment(filename="empty.pdf", data=b""),
    ]})

    pdfs = await AttachmentExtractor(connector).extract(None, "token", message)

    assert [p.filename for p in pdfs] == ["scan.pdf"]
    assert pdfs[0].size == len(pdf_bytes)
