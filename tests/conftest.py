"""Test configuration and fixtures."""

import os
import tempfile
from io import BytesIO

import pypdf
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ["IMAGING_DATABASE_URL"] = "sqlite://"
os.environ["IMAGING_STORAGE_DIR"] = os.path.join(tempfile.gettempdir(), "test_imaging_store")
os.environ["IMAGING_LOG_FILE"] = ""
os.environ["IMAGING_SCHEDULER_ENABLED"] = "false"
os.environ["IMAGING_BARCODE_SERVICE_URL"] = ""
os.environ["IMAGING_OFFICE365_AUTHORITY_URL"] = "https://login.test"
os.environ["IMAGING_OFFICE365_GRAPH_URL"] = "https://graph.test/v1.0"
os.environ["IMAGING_GMAIL_TOKEN_URL"] = "https://oauth.test/token"
os.environ["IMAGING_GMAIL_API_URL"] = "https://gmail.test/gmail/v1"

from src.connectors.base import MessageRef, PdfAttachment, ProviderConnector  # noqa: E402
from src.database import connection  # noqa: E402
from src.imaging.barcode_detector import BarcodeDetector  # noqa: E402
from src.imaging.errors import AuthenticationError, ConnectorError  # noqa: E402
from src.imaging.storage import LocalContentStore  # noqa: E402
from src.models.barcode_pattern import BarcodePattern  # noqa: E402
from src.models.bucket import Bucket  # noqa: E402
from src.models.document_type import DocumentType  # noqa: E402
from src.models.monitoring_config import MonitoringConfig  # noqa: E402


def make_pdf(pages: int = 1) -> bytes:
    """Build a blank PDF with the given number of pages."""
    writer = pypdf.PdfWriter()
    for _ in range(pages):
        writer.add_blank_page(width=612, height=792)
    buffer = BytesIO()
    writer.write(buffer)
    return buffer.getvalue()


@pytest.fixture
def pdf_bytes():
    return make_pdf()


@pytest.fixture
def db_engine(monkeypatch):
    """Fresh in-memory catalog, wired into the application's session factory."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    connection.init_database(bind=engine)
    monkeypatch.setattr(connection, "SessionLocal", sessionmaker(autocommit=False, autoflush=False, bind=engine))
    yield engine
    engine.dispose()


@pytest.fixture
def db_session(db_engine):
    db = connection.SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def store(tmp_path):
    return LocalContentStore(tmp_path / "store")


@pytest.fixture
def catalog(db_session):
    """Two buckets, the usual document types and one dynamic pattern."""
    inbox = Bucket(name="email-inbox", url="https://files.example.com/inbox/")
    archive = Bucket(name="archive", url="https://files.example.com/archive")
    db_session.add_all([inbox, archive])
    db_session.flush()

    types = {name: DocumentType(name=name) for name in ("BOL", "POD", "Invoice")}
    db_session.add_all(types.values())
    db_session.flush()

    dynamic = BarcodePattern(
        name="type-detail",
        pattern_template="{documentType}-{detailLineId}",
        separator="-",
        bucket_id=archive.id,
        priority=0,
    )
    db_session.add(dynamic)
    db_session.commit()

    return {
        "inbox_bucket_id": inbox.id,
        "archive_bucket_id": archive.id,
        "type_ids": {name: dt.id for name, dt in types.items()},
        "pattern_id": dynamic.id,
    }


@pytest.fixture
def monitoring_config(db_session, catalog):
    config = MonitoringConfig(
        name="Scans",
        provider="gmail",
        gmail_client_id="client",
        gmail_client_secret="secret",
        gmail_refresh_token="refresh",
        imaging_bucket_id=catalog["inbox_bucket_id"],
        is_enabled=True,
    )
    db_session.add(config)
    db_session.commit()
    return config


class StubDetector(BarcodeDetector):
    """Returns canned barcodes per filename; a filename mapped to an exception raises it."""

    def __init__(self, results=None):
        self.results = results or {}
        self.calls = []

    async def detect(self, pdf_bytes, filename):
        self.calls.append(filename)
        result = self.results.get(filename, [])
        if isinstance(result, Exception):
            raise result
        return list(result)


class StubConnector(ProviderConnector):
    """In-memory mailbox.

    ``attachments`` maps a message id to its PDFs, or to an exception raised
    when the message's attachments are fetched.
    """

    provider = "gmail"

    def __init__(self, messages=None, attachments=None, fail_auth=False, fail_post_process=False):
        super().__init__()
        self.messages = messages or []
        self.attachments = attachments or {}
        self.fail_auth = fail_auth
        self.fail_post_process = fail_post_process
        self.listed_with = []
        self.post_processed = []

    async def authenticate(self, config):
        if self.fail_auth:
            raise AuthenticationError("invalid_client")
        return "token"

    async def list_candidate_messages(self, config, token):
        self.listed_with.append(config.last_check)
        return list(self.messages)

    async def fetch_pdf_attachments(self, config, token, message):
        result = self.attachments.get(message.id, [])
        if isinstance(result, Exception):
            raise result
        return list(result)

    async def apply_post_process(self, config, token, message, action, folder):
        if self.fail_post_process:
            raise ConnectorError("mailbox unavailable")
        self.post_processed.append((message.id, action, folder))


@pytest.fixture
def stub_detector_cls():
    return StubDetector


@pytest.fixture
def stub_connector_cls():
    return StubConnector


@pytest.fixture
def message_factory():
    def build(message_id: str, subject: str = "Scan") -> MessageRef:
        return MessageRef(id=message_id, subject=subject, sender="scanner@example.com")
    return build


@pytest.fixture
def attachment_factory(pdf_bytes):
    def build(filename: str) -> PdfAttachment:
        return PdfAttachment(filename=filename, data=pdf_bytes)
    return build


@pytest.fixture
def pdf_factory():
    return make_pdf
