"""Tests for the Office365 and Gmail connectors."""

import base64
import json
from datetime import datetime, timezone
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
import respx

from src.connectors.base import MessageRef, cursor_bound
from src.connectors.gmail import GmailConnector
from src.connectors.office365 import Office365Connector
from src.connectors.registry import get_connector
from src.imaging.errors import AuthenticationError, ConnectorError
from src.models.monitoring_config import MonitoringConfig

GRAPH = "https://graph.test/v1.0/users/scans@example.com"
GMAIL = "https://gmail.test/gmail/v1/users/me"


def snapshot(**overrides):
    values = dict(
        id=1,
        provider="office365",
        tenant_id="tenant-1",
        client_id="client",
        client_secret="secret",
        monitored_email="scans@example.com",
        gmail_client_id="g-client",
        gmail_client_secret="g-secret",
        gmail_refresh_token="refresh",
        is_enabled=True,
    )
    values.update(overrides)
    return MonitoringConfig(**values).snapshot()


def query_of(request: httpx.Request) -> dict:
    return parse_qs(urlparse(str(request.url)).query)


def test_registry_resolves_providers():
    assert isinstance(get_connector("office365"), Office365Connector)
    assert isinstance(get_connector("gmail"), GmailConnector)
    with pytest.raises(ValueError):
        get_connector("imap")


def test_cursor_ignored_when_checking_all_messages():
    last_check = datetime(2025, 3, 1, 12, 0, 0)

    assert cursor_bound(snapshot(last_check=None)) is None
    assert cursor_bound(snapshot(last_check=last_check, check_all_messages=True)) is None
    assert cursor_bound(snapshot(last_check=last_check)) == last_check.replace(tzinfo=timezone.utc)


class TestOffice365Connector:
    @pytest.mark.asyncio
    @respx.mock
    async def test_authenticate_client_credentials(self):
        route = respx.post("https://login.test/tenant-1/oauth2/v2.0/token").respond(
            200, json={"access_token": "graph-token"}
        )

        async with Office365Connector() as connector:
            token = await connector.authenticate(snapshot())

        assert token == "graph-token"
        body = parse_qs(route.calls[0].request.content.decode())
        assert body["grant_type"] == ["client_credentials"]
        assert body["scope"] == ["https://graph.microsoft.com/.default"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_authenticate_failure(self):
        respx.post("https://login.test/tenant-1/oauth2/v2.0/token").respond(401, json={"error": "invalid_client"})

        async with Office365Connector() as connector:
            with pytest.raises(AuthenticationError):
                await connector.authenticate(snapshot())

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_applies_cursor_and_follows_next_link(self):
        next_link = f"{GRAPH}/mailFolders/Inbox/messages?$skiptoken=abc"
        first = respx.get(f"{GRAPH}/mailFolders/Inbox/messages", params={"$skiptoken": "abc"}).respond(
            200, json={"value": [{"id": "m2", "subject": "second"}, {"id": "m1"}]}
        )
        respx.get(f"{GRAPH}/mailFolders/Inbox/messages").respond(200, json={
            "value": [{
                "id": "m1",
                "subject": "Scan",
                "from": {"emailAddress": {"address": "copier@example.com"}},
                "receivedDateTime": "2025-03-01T12:30:00Z",
            }],
            "@odata.nextLink": next_link,
        })

        config = snapshot(last_check=datetime(2025, 3, 1, 12, 0, 0))
        async with Office365Connector() as connector:
            messages = await connector.list_candidate_messages(config, "t")

        assert [m.id for m in messages] == ["m1", "m2"]
        assert messages[0].sender == "copier@example.com"
        assert first.called

        initial = respx.calls[0].request
        assert initial.headers["authorization"] == "Bearer t"
        assert query_of(initial)["$filter"] == [
            "hasAttachments eq true and isRead eq false and receivedDateTime gt 2025-03-01T12:00:00Z"
        ]

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_without_cursor_when_check_all(self):
        route = respx.get(f"{GRAPH}/mailFolders/Inbox/messages").respond(200, json={"value": []})

        config = snapshot(last_check=datetime(2025, 3, 1), check_all_messages=True)
        async with Office365Connector() as connector:
            assert await connector.list_candidate_messages(config, "t") == []

        assert "receivedDateTime" not in query_of(route.calls[0].request)["$filter"][0]

    @pytest.mark.asyncio
    @respx.mock
    async def test_repeated_listing_with_same_cursor_is_stable(self):
        route = respx.get(f"{GRAPH}/mailFolders/Inbox/messages").respond(
            200, json={"value": [{"id": "m1"}, {"id": "m2"}]}
        )

        config = snapshot(last_check=datetime(2025, 3, 1, 12, 0, 0))
        async with Office365Connector() as connector:
            first = await connector.list_candidate_messages(config, "t")
            second = await connector.list_candidate_messages(config, "t")

        assert [m.id for m in first] == [m.id for m in second] == ["m1", "m2"]
        assert query_of(route.calls[0].request) == query_of(route.calls[1].request)

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_failure_raises_connector_error(self):
        respx.get(f"{GRAPH}/mailFolders/Inbox/messages").respond(503)

        async with Office365Connector() as connector:
            with pytest.raises(ConnectorError):
                await connector.list_candidate_messages(snapshot(), "t")

    @pytest.mark.asyncio
    @respx.mock
    async def test_timeout_raises_connector_error(self):
        respx.get(f"{GRAPH}/mailFolders/Inbox/messages").mock(side_effect=httpx.ReadTimeout)

        async with Office365Connector(timeout=1.0) as connector:
            with pytest.raises(ConnectorError):
                await connector.list_candidate_messages(snapshot(), "t")

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_keeps_only_pdfs(self, pdf_factory):
        pdf = pdf_factory(pages=2)
        respx.get(f"{GRAPH}/messages/m1/attachments").respond(200, json={"value": [
            {"name": "scan.PDF", "contentBytes": base64.b64encode(pdf).decode()},
            {"name": "logo.png", "contentBytes": base64.b64encode(b"png").decode()},
            {"name": "link.pdf"},
        ]})

        async with Office365Connector() as connector:
            pdfs = await connector.fetch_pdf_attachments(snapshot(), "t", MessageRef(id="m1"))

        assert [p.filename for p in pdfs] == ["scan.PDF"]
        assert pdfs[0].data == pdf
        assert pdfs[0].page_count == 2

    @pytest.mark.asyncio
    @respx.mock
    async def test_move_creates_missing_folder(self):
        patch = respx.patch(f"{GRAPH}/messages/m1").respond(200, json={})
        respx.get(f"{GRAPH}/mailFolders").respond(200, json={"value": []})
        create = respx.post(f"{GRAPH}/mailFolders").respond(201, json={"id": "folder-9", "displayName": "Processed"})
        move = respx.post(f"{GRAPH}/messages/m1/move").respond(201, json={})

        async with Office365Connector() as connector:
            await connector.apply_post_process(snapshot(), "t", MessageRef(id="m1"), "move", "Processed")

        assert json.loads(patch.calls[0].request.content) == {"isRead": True}
        assert json.loads(create.calls[0].request.content) == {"displayName": "Processed"}
        assert json.loads(move.calls[0].request.content) == {"destinationId": "folder-9"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_move_reuses_existing_folder(self):
        respx.patch(f"{GRAPH}/messages/m1").respond(200, json={})
        respx.get(f"{GRAPH}/mailFolders").respond(200, json={"value": [{"id": "f1", "displayName": "Failed"}]})
        create = respx.post(f"{GRAPH}/mailFolders")
        move = respx.post(f"{GRAPH}/messages/m1/move").respond(201, json={})

        async with Office365Connector() as connector:
            await connector.apply_post_process(snapshot(), "t", MessageRef(id="m1"), "move", "Failed")

        assert not create.called
        assert json.loads(move.calls[0].request.content) == {"destinationId": "f1"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_delete_moves_to_deleted_items(self):
        move = respx.post(f"{GRAPH}/messages/m1/move").respond(201, json={})

        async with Office365Connector() as connector:
            await connector.apply_post_process(snapshot(), "t", MessageRef(id="m1"), "delete", "")

        assert json.loads(move.calls[0].request.content) == {"destinationId": "deleteditems"}


class TestGmailConnector:
    def test_build_query(self):
        connector = GmailConnector()
        since = datetime(2025, 3, 1, 12, 0, 0)

        assert connector.build_query(snapshot(provider="gmail")) == "has:attachment is:unread in:inbox"
        assert connector.build_query(snapshot(provider="gmail", gmail_monitored_label="Scanned Docs",
                                              last_check=since)) == (
            f"has:attachment is:unread label:Scanned-Docs after:{int(since.replace(tzinfo=timezone.utc).timestamp())}"
        )

    @pytest.mark.asyncio
    @respx.mock
    async def test_authenticate_refresh_token(self):
        route = respx.post("https://oauth.test/token").respond(200, json={"access_token": "gmail-token"})

        async with GmailConnector() as connector:
            assert await connector.authenticate(snapshot(provider="gmail")) == "gmail-token"

        body = parse_qs(route.calls[0].request.content.decode())
        assert body["grant_type"] == ["refresh_token"]
        assert body["refresh_token"] == ["refresh"]

    @pytest.mark.asyncio
    async def test_authenticate_without_refresh_token(self):
        async with GmailConnector() as connector:
            with pytest.raises(AuthenticationError):
                await connector.authenticate(snapshot(provider="gmail", gmail_refresh_token=""))

    @pytest.mark.asyncio
    @respx.mock
    async def test_list_paginates_and_loads_headers(self):
        respx.get(f"{GMAIL}/messages", params={"pageToken": "p2"}).respond(
            200, json={"messages": [{"id": "b"}, {"id": "a"}]}
        )
        respx.get(f"{GMAIL}/messages").respond(200, json={"messages": [{"id": "a"}], "nextPageToken": "p2"})
        respx.get(f"{GMAIL}/messages/a").respond(200, json={"payload": {"headers": [
            {"name": "Subject", "value": "Delivery"},
            {"name": "From", "value": "driver@example.com"},
        ]}})
        respx.get(f"{GMAIL}/messages/b").respond(404)

        async with GmailConnector() as connector:
            messages = await connector.list_candidate_messages(snapshot(provider="gmail"), "t")

        assert [(m.id, m.subject) for m in messages] == [("a", "Delivery"), ("b", "")]
        assert messages[0].sender == "driver@example.com"

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_walks_nested_parts(self, pdf_bytes):
        encoded = base64.urlsafe_b64encode(pdf_bytes).decode().rstrip("=")
        respx.get(f"{GMAIL}/messages/a").respond(200, json={"payload": {"parts": [
            {"filename": "", "body": {"data": "aGVsbG8"}},
            {"parts": [
                {"filename": "pod.pdf", "body": {"attachmentId": "att-1"}},
                {"filename": "photo.jpg", "body": {"attachmentId": "att-2"}},
            ]},
            {"filename": "inline.pdf", "body": {"data": encoded}},
        ]}})
        respx.get(f"{GMAIL}/messages/a/attachments/att-1").respond(200, json={"data": encoded})

        async with GmailConnector() as connector:
            pdfs = await connector.fetch_pdf_attachments(snapshot(provider="gmail"), "t", MessageRef(id="a"))

        assert [p.filename for p in pdfs] == ["pod.pdf", "inline.pdf"]
        assert all(p.data == pdf_bytes for p in pdfs)

    @pytest.mark.asyncio
    @respx.mock
    async def test_mark_read_removes_unread_label(self):
        modify = respx.post(f"{GMAIL}/messages/a/modify").respond(200, json={})

        async with GmailConnector() as connector:
            await connector.apply_post_process(snapshot(provider="gmail"), "t", MessageRef(id="a"), "mark_read", "")

        assert json.loads(modify.calls[0].request.content) == {"removeLabelIds": ["UNREAD"]}

    @pytest.mark.asyncio
    @respx.mock
    async def test_move_creates_label(self):
        respx.get(f"{GMAIL}/labels").respond(200, json={"labels": [{"id": "INBOX", "name": "INBOX"}]})
        create = respx.post(f"{GMAIL}/labels").respond(200, json={"id": "Label_5", "name": "Processed"})
        modify = respx.post(f"{GMAIL}/messages/a/modify").respond(200, json={})

        async with GmailConnector() as connector:
            await connector.apply_post_process(snapshot(provider="gmail"), "t", MessageRef(id="a"), "move", "Processed")

        assert create.called
        assert json.loads(modify.calls[0].request.content) == {
            "addLabelIds": ["Label_5"],
            "removeLabelIds": ["INBOX", "UNREAD"],
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_delete_trashes_message(self):
        trash = respx.post(f"{GMAIL}/messages/a/trash").respond(200, json={})

        async with GmailConnector() as connector:
            await connector.apply_post_process(snapshot(provider="gmail"), "t", MessageRef(id="a"), "delete", "")

        assert trash.called
